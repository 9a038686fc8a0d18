"""
Utils Module
通用工具函数
"""
from .logger import configure_logging, get_logger, setup_logger
from .exceptions import (
    AbortError,
    ConfigurationError,
    DiscussionItemFetchError,
    HttpStatusError,
    InvalidUrlError,
    LLMError,
    RadarError,
    StorageError,
    UnauthorizedError,
    UnsupportedSourceError,
)
from .timeout import CancellationToken, with_timeout
from .retry import is_transient_error, with_retry

__all__ = [
    "configure_logging",
    "get_logger",
    "setup_logger",
    "AbortError",
    "ConfigurationError",
    "DiscussionItemFetchError",
    "HttpStatusError",
    "InvalidUrlError",
    "LLMError",
    "RadarError",
    "StorageError",
    "UnauthorizedError",
    "UnsupportedSourceError",
    "CancellationToken",
    "with_timeout",
    "is_transient_error",
    "with_retry",
]
