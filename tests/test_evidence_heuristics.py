from __future__ import annotations

from core import AnalysisMeta, DemandCard, NoDemandCard, WtpSignal
from pipeline.confidence import (
    add_llm_failed_warning,
    apply_low_confidence_guard,
    downgrade_wtp,
    low_confidence_reasons,
)
from pipeline.evidence import ensure_evidence_quote, pick_evidence_quote_candidate, resolve_evidence_match
from pipeline.heuristics import (
    GENERIC_TRIGGER,
    build_fallback_need_card,
    infer_who,
    infer_wtp_signal,
)


SOURCE = (
    "Ask HN: How do you chase unpaid invoices?\n\n"
    "I run a small agency and I need a tool to chase unpaid invoices automatically because it is slow. "
    "I would pay $20 a month for it. The only alternative besides spreadsheets is hiring someone."
)


def _demand(**overrides) -> DemandCard:
    data = dict(
        title="Invoice chasing",
        who="agency owners",
        pain="Chasing unpaid invoices takes two days a month",
        trigger="At month end when invoices are overdue",
        workaround="Spreadsheets and manual emails to each client",
        wtp_signal=WtpSignal.STRONG,
        evidence_quote="I need a tool to chase unpaid invoices automatically because it is slow.",
        source_url="https://news.ycombinator.com/item?id=1",
    )
    data.update(overrides)
    return DemandCard(**data)


def test_resolve_evidence_match_levels() -> None:
    text = "He said “hello world”  twice."
    assert resolve_evidence_match(text, "hello world") == "exact"
    assert resolve_evidence_match(text, 'said "hello world" twice.') == "normalized"
    assert resolve_evidence_match(text, "goodbye") == "fail"
    assert resolve_evidence_match(text, None) == "fail"


def test_pick_candidate_prefers_pain_sentence() -> None:
    candidate = pick_evidence_quote_candidate(SOURCE)
    assert "I need a tool" in candidate
    assert candidate in SOURCE


def test_ensure_evidence_quote_bounds() -> None:
    assert ensure_evidence_quote("too short", "too short") is None
    long_text = "x" * 500
    assert len(ensure_evidence_quote(long_text, "not in text")) == 240
    quote = ensure_evidence_quote(SOURCE, "I would pay $20 a month for it.")
    assert quote in SOURCE
    assert 40 <= len(quote) <= 240


def test_infer_wtp_and_who() -> None:
    assert infer_wtp_signal("The subscription is fine") == WtpSignal.STRONG
    assert infer_wtp_signal("it is too expensive") == WtpSignal.WEAK
    assert infer_wtp_signal("nothing here") == WtpSignal.NONE
    assert infer_who("our developers hate this", None) == "developers"
    assert infer_who("a guide for building", None) == "general user"


def test_build_fallback_need_card_uses_verbatim_quote() -> None:
    card = build_fallback_need_card(SOURCE, "https://example.com/a", "Invoice chasing")

    assert isinstance(card, DemandCard)
    assert card.evidence_quote in SOURCE
    assert card.source_url == "https://example.com/a"
    assert card.title == "Invoice chasing"
    assert card.wtp_signal == WtpSignal.STRONG
    assert card.trigger == GENERIC_TRIGGER
    assert card.workaround.startswith("alternative besides spreadsheets")


def test_build_fallback_need_card_none_for_tiny_text() -> None:
    assert build_fallback_need_card("tiny", "https://example.com", None) is None


def test_guard_flags_generic_card_and_downgrades_wtp() -> None:
    warnings = []
    meta = AnalysisMeta()
    card = _demand(trigger=GENERIC_TRIGGER)

    result = apply_low_confidence_guard(card, "exact", warnings, meta)

    assert result.low_confidence
    assert result.reasons == ["generic_trigger"]
    assert result.need_card.wtp_signal == WtpSignal.WEAK
    assert warnings[0].type == "LOW_CONFIDENCE"
    assert meta.signal_reason == "generic_trigger"


def test_guard_passes_specific_card() -> None:
    warnings = []
    result = apply_low_confidence_guard(_demand(), "normalized", warnings, AnalysisMeta())
    assert not result.low_confidence
    assert warnings == []
    assert result.need_card.wtp_signal == WtpSignal.STRONG


def test_guard_reasons_for_no_demand_only_check_evidence() -> None:
    card = NoDemandCard(
        title="Release notes",
        no_demand_reason="Changelog without any user need",
        evidence_quote="Version 2.0 ships with a redesigned settings page and more.",
        source_url="https://example.com",
    )
    assert low_confidence_reasons(card, "exact") == []
    assert low_confidence_reasons(card, "fail") == ["evidence_not_substring"]


def test_downgrade_and_llm_failed_warning() -> None:
    assert downgrade_wtp(WtpSignal.MEDIUM) == WtpSignal.WEAK
    assert downgrade_wtp(WtpSignal.NONE) == WtpSignal.NONE
    warnings = []
    add_llm_failed_warning(warnings)
    assert warnings[0].model_dump()["reason"] == "LLM_FAILED"
