"""Deterministic need card used when the model is unavailable or its output is unusable."""

from __future__ import annotations

import re
from typing import Optional

from core import DemandCard, WtpSignal

from .evidence import ensure_evidence_quote, pick_evidence_quote_candidate


GENERIC_TRIGGER = "When encountering the described problem or workflow"
GENERIC_WORKAROUND = "manual steps or existing tools"

_STRONG_WTP = re.compile(
    r"\b(pricing|paid plan|subscribe|subscription|billing|invoice|upgrade)\b|[$€£]\s?\d+|付费|订阅|收费|价格|升级",
    re.IGNORECASE,
)
_WEAK_WTP = re.compile(r"\b(pay|cost|expensive|price|budget)\b|贵|成本", re.IGNORECASE)

_WHO_RULES = (
    (re.compile(r"\b(developers?|engineers?|programmers?|api|sdk|cli|devops)\b", re.IGNORECASE), "developers"),
    (re.compile(r"\b(designers?|ux|ui)\b", re.IGNORECASE), "designers"),
    (re.compile(r"\b(marketers?|marketing|seo|growth)\b", re.IGNORECASE), "marketers"),
    (re.compile(r"\b(sales|crm)\b", re.IGNORECASE), "sales teams"),
)

_TITLE_SENTENCE = re.compile(r"[^.!?\n]{20,120}[.!?]?")
_WHEN = re.compile(r"\bwhen\b", re.IGNORECASE)
_CJK_PAIN = re.compile(r"无法|太|慢|贵|问题|困扰|缺少")
_WORKAROUND = re.compile(r"\b(workaround|alternative|alternatives)\b[^.!\n]{0,120}", re.IGNORECASE)


def _clamp(text: str, max_chars: int) -> str:
    return text if len(text) <= max_chars else text[:max_chars].strip()


def infer_wtp_signal(source_text: str) -> WtpSignal:
    if _STRONG_WTP.search(source_text):
        return WtpSignal.STRONG
    if _WEAK_WTP.search(source_text):
        return WtpSignal.WEAK
    return WtpSignal.NONE


def infer_who(source_text: str, title: Optional[str]) -> str:
    haystack = f"{title or ''}\n{source_text}"
    for pattern, audience in _WHO_RULES:
        if pattern.search(haystack):
            return audience
    return "general user"


def infer_title(title: Optional[str], source_text: str) -> str:
    clean = (title or "").strip()
    if clean:
        return clean
    match = _TITLE_SENTENCE.match(source_text)
    if match and match.group(0).strip():
        return match.group(0).strip()
    return "Untitled"


def infer_trigger(source_text: str, evidence: Optional[str]) -> str:
    haystack = evidence or source_text
    if _WHEN.search(haystack):
        return _clamp(haystack, 160)
    if _CJK_PAIN.search(haystack):
        return _clamp(f"When {haystack}", 160)
    return GENERIC_TRIGGER


def infer_workaround(source_text: str) -> str:
    match = _WORKAROUND.search(source_text)
    if match:
        return _clamp(match.group(0).strip(), 160)
    return GENERIC_WORKAROUND


def infer_pain(title: Optional[str], evidence: Optional[str], source_text: str) -> str:
    if evidence:
        return _clamp(evidence, 180)
    if title and title.strip():
        return _clamp(title.strip(), 180)
    return _clamp(source_text[:160].strip() or "Unclear pain point", 180)


def build_fallback_need_card(
    source_text: str,
    source_url: str,
    title: Optional[str],
) -> Optional[DemandCard]:
    """
    Heuristic DEMAND card, or None when the text has no usable evidence quote.
    """
    candidate = pick_evidence_quote_candidate(source_text)
    quote = ensure_evidence_quote(source_text, candidate)
    if not quote:
        return None

    return DemandCard(
        title=_clamp(infer_title(title, source_text), 200),
        who=infer_who(source_text, title),
        pain=infer_pain(title, quote, source_text),
        trigger=infer_trigger(source_text, quote),
        workaround=infer_workaround(source_text),
        wtp_signal=infer_wtp_signal(source_text),
        evidence_quote=quote,
        source_url=source_url,
    )
