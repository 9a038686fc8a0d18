"""
Pipeline Module
URL 规范化 / 证据校验 / 启发式兜底 / 低置信度守卫

acquisition 与 analyze 依赖 scrapers 与 intelligence, 需要显式导入:
    from pipeline.analyze import AnalysisPipeline
"""
from .confidence import GuardResult, apply_low_confidence_guard, downgrade_wtp
from .evidence import ensure_evidence_quote, pick_evidence_quote_candidate, resolve_evidence_match
from .heuristics import build_fallback_need_card
from .url_normalize import hn_permalink, normalize_url, parse_hn_item_id

__all__ = [
    "GuardResult",
    "apply_low_confidence_guard",
    "downgrade_wtp",
    "ensure_evidence_quote",
    "pick_evidence_quote_candidate",
    "resolve_evidence_match",
    "build_fallback_need_card",
    "hn_permalink",
    "normalize_url",
    "parse_hn_item_id",
]
