"""Evidence quote checks against the source text the model actually saw."""

from __future__ import annotations

import re
from typing import Optional

from utils.text import normalize_for_match


MIN_QUOTE_CHARS = 40
MAX_QUOTE_CHARS = 240
MIN_CANDIDATE_CHARS = 20

_TERMINATORS = ".!?。！？"
_PAIN_KEYWORD = (
    r"(?:cannot|can't|unable|need|wish|alternatives?|workaround|bug|slow|expensive|problem|pain"
    r"|frustrat(?:e|ed|ing|ion)?|issue|missing|hard|difficult|too|lack"
    r"|无法|需要|希望|替代|替换|慢|贵|问题|痛点|困扰|缺少|难|太)"
)
_PAIN_WINDOW = re.compile(
    rf"[^{_TERMINATORS}\n]{{0,160}}{_PAIN_KEYWORD}[^{_TERMINATORS}\n]{{0,160}}[{_TERMINATORS}]?",
    re.IGNORECASE,
)
_FIRST_SENTENCE = re.compile(rf"[^{_TERMINATORS}\n]{{20,200}}[{_TERMINATORS}]?")


def resolve_evidence_match(source_text: str, quote: Optional[str]) -> str:
    """"exact" | "normalized" | "fail" """
    if not quote:
        return "fail"
    if quote in source_text:
        return "exact"
    normalized_quote = normalize_for_match(quote)
    if normalized_quote and normalized_quote in normalize_for_match(source_text):
        return "normalized"
    return "fail"


def pick_evidence_quote_candidate(source_text: str) -> Optional[str]:
    """
    Sentence fragment around the first pain keyword, else the leading
    sentence, else the first 120 characters.
    """
    match = _PAIN_WINDOW.search(source_text)
    if match:
        candidate = match.group(0).strip()
        if len(candidate) >= MIN_CANDIDATE_CHARS:
            return candidate

    first = _FIRST_SENTENCE.match(source_text)
    if first:
        return first.group(0).strip()

    fallback = source_text[:120].strip()
    return fallback or None


def ensure_evidence_quote(source_text: str, candidate: Optional[str]) -> Optional[str]:
    """A quote of 40..240 chars taken verbatim from the source, or None."""
    if candidate and candidate in source_text:
        trimmed = candidate.strip()
        if len(trimmed) >= MIN_QUOTE_CHARS:
            return trimmed[:MAX_QUOTE_CHARS]
    fallback = source_text.strip()
    if len(fallback) < MIN_QUOTE_CHARS:
        return None
    return fallback[:MAX_QUOTE_CHARS]
