"""Content acquisition: direct fetch, readability extraction, reader proxy, validation."""

from .content_validator import BLOCK_KEYWORDS, ContentValidation, find_block_keyword, validate_content
from .fetch_text import ContentFetcher, FetchTextResult
from .readability_extractor import READABILITY_EMPTY, ReadabilityResult, extract_readability
from .reader_proxy import ReaderProxyClient, ReaderResult, infer_title

__all__ = [
    "BLOCK_KEYWORDS",
    "ContentValidation",
    "find_block_keyword",
    "validate_content",
    "ContentFetcher",
    "FetchTextResult",
    "READABILITY_EMPTY",
    "ReadabilityResult",
    "extract_readability",
    "ReaderProxyClient",
    "ReaderResult",
    "infer_title",
]
