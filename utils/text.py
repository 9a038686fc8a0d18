"""Text cleanup helpers shared by extractors, validators and evidence matching."""

from __future__ import annotations

import re
import unicodedata
from typing import Optional

from bs4 import BeautifulSoup


_TRAILING_SPACES = re.compile(r"[ \t]+\n")
_MANY_NEWLINES = re.compile(r"\n{3,}")
_MANY_SPACES = re.compile(r"[ \t]{2,}")
_WHITESPACE = re.compile(r"\s+")

_QUOTE_FOLD = str.maketrans({
    "\u201c": '"',
    "\u201d": '"',
    "\u2018": "'",
    "\u2019": "'",
    "\u00a0": " ",
})


def clean_text(value: Optional[str]) -> str:
    """Normalize extracted page text while keeping paragraph breaks."""
    text = str(value or "").replace("\u00a0", " ").replace("\r\n", "\n").replace("\r", "\n")
    text = _TRAILING_SPACES.sub("\n", text)
    text = _MANY_NEWLINES.sub("\n\n", text)
    text = _MANY_SPACES.sub(" ", text)
    return text.strip()


def truncate(value: Optional[str], max_chars: int) -> str:
    text = str(value or "")
    if max_chars <= 0:
        return ""
    return text[:max_chars]


def collapse_whitespace(value: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", str(value or "")).strip()


def normalize_for_match(value: Optional[str]) -> str:
    """NFKC, curly quotes folded to ASCII, whitespace collapsed."""
    text = unicodedata.normalize("NFKC", str(value or ""))
    return collapse_whitespace(text.translate(_QUOTE_FOLD))


def sample_text(value: Optional[str], max_chars: int = 120) -> str:
    return collapse_whitespace(value)[:max_chars]


def html_to_text(html: Optional[str]) -> str:
    """Plain text of an HTML fragment (discussion posts, comments)."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    return collapse_whitespace(soup.get_text(" "))
