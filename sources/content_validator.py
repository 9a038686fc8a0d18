"""Rejects empty, short, or block-page content before it reaches the model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


BLOCK_KEYWORDS = (
    "access denied",
    "captcha",
    "enable javascript",
    "too many requests",
    "rate limit",
    "forbidden",
    "not authorized",
    "request blocked",
    "cloudflare",
    "attention required",
    "security check",
    "service unavailable",
)


@dataclass
class ContentValidation:
    ok: bool
    reason: Optional[str] = None


def find_block_keyword(text: str) -> Optional[str]:
    lowered = text.lower()
    for keyword in BLOCK_KEYWORDS:
        if keyword in lowered:
            return keyword
    return None


def validate_content(text: Optional[str], min_len: int) -> ContentValidation:
    value = str(text or "").strip()
    if not value:
        return ContentValidation(ok=False, reason="empty")
    if len(value) < min_len:
        return ContentValidation(ok=False, reason=f"too_short_{min_len}")
    keyword = find_block_keyword(value)
    if keyword:
        return ContentValidation(ok=False, reason=f"keyword:{keyword}")
    return ContentValidation(ok=True)
