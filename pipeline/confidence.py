"""Flags need cards that look unreliable and caps their willingness-to-pay signal."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Union

from core import AnalysisMeta, DemandCard, NoDemandCard, WarningEntry, WtpSignal


GENERIC_PHRASES = (
    "manual steps",
    "consult documentation",
    "when encountering",
    "existing tools",
)
MIN_PAIN_CHARS = 15

LOW_CONFIDENCE = "LOW_CONFIDENCE"
LLM_FAILED = "LLM_FAILED"

Card = Union[DemandCard, NoDemandCard]


@dataclass
class GuardResult:
    need_card: Card
    low_confidence: bool
    reasons: List[str]


def contains_generic_phrase(value: Optional[str]) -> bool:
    lowered = str(value or "").lower()
    return any(phrase in lowered for phrase in GENERIC_PHRASES)


def downgrade_wtp(signal: WtpSignal) -> WtpSignal:
    return WtpSignal.NONE if signal == WtpSignal.NONE else WtpSignal.WEAK


def downgrade_card(card: Card) -> Card:
    if isinstance(card, DemandCard):
        return card.model_copy(update={"wtp_signal": downgrade_wtp(card.wtp_signal)})
    return card


def low_confidence_reasons(card: Card, evidence_match: str) -> List[str]:
    reasons: List[str] = []
    if evidence_match == "fail":
        reasons.append("evidence_not_substring")
    if isinstance(card, DemandCard):
        if contains_generic_phrase(card.trigger):
            reasons.append("generic_trigger")
        if contains_generic_phrase(card.workaround):
            reasons.append("generic_workaround")
        if len(card.pain) < MIN_PAIN_CHARS or ")," in card.pain:
            reasons.append("pain_fragment")
    return reasons


def apply_low_confidence_guard(
    card: Card,
    evidence_match: str,
    warnings: List[WarningEntry],
    meta: AnalysisMeta,
) -> GuardResult:
    """Append a LOW_CONFIDENCE warning and downgrade DEMAND wtp when any reason fires."""
    reasons = low_confidence_reasons(card, evidence_match)
    if not reasons:
        return GuardResult(need_card=card, low_confidence=False, reasons=[])

    reason = "|".join(reasons)
    warnings.append(WarningEntry(type=LOW_CONFIDENCE, reason=reason))
    meta.signal_reason = reason
    return GuardResult(need_card=downgrade_card(card), low_confidence=True, reasons=reasons)


def add_llm_failed_warning(warnings: List[WarningEntry]) -> None:
    warnings.append(WarningEntry(type=LOW_CONFIDENCE, reason=LLM_FAILED))
