"""Top demand signals and the latest visible analysis, read across analysis / action / source stores."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional, Tuple

from core import ActionType, AnalysisAction, AnalysisRecord, DemandCard, TopSignal, WtpSignal
from utils.text import truncate

from .base import ActionStore, AnalysisStore, SourceStore


DEFAULT_SIGNAL_LIMIT = 10
MAX_SIGNAL_LIMIT = 20
DEFAULT_SIGNAL_HOURS = 72
SIGNAL_WINDOWS = (24, 72, 168)
# 排序前多取一些候选, 过滤掉 NO_DEMAND / WTP=NONE 后仍够用
CANDIDATE_FACTOR = 5
MAX_CANDIDATES = 50
PAIN_SNIPPET_CHARS = 120
MANUAL_SOURCE_LABEL = "Manual"
LATEST_PAGE_SIZE = 50

WTP_WEIGHT: Dict[WtpSignal, int] = {
    WtpSignal.STRONG: 3,
    WtpSignal.MEDIUM: 2,
    WtpSignal.WEAK: 1,
    WtpSignal.NONE: 0,
}

# 卡片本身不带分项分数, 按各项 1 分计
DEFAULT_SCORES: Dict[str, float] = {
    "pain": 1.0,
    "intent": 1.0,
    "workaround": 1.0,
    "wtp": 1.0,
    "audience": 1.0,
    "risk": 1.0,
    "uncertainty": 1.0,
}


def clamp_signal_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_SIGNAL_LIMIT
    return min(MAX_SIGNAL_LIMIT, max(1, int(limit)))


def clamp_signal_hours(hours: Optional[int]) -> int:
    """只接受 24 / 72 / 168, 其余回落到 72"""
    return hours if hours in SIGNAL_WINDOWS else DEFAULT_SIGNAL_HOURS


def opportunity_score(scores: Mapping[str, float] = DEFAULT_SCORES) -> float:
    """2*pain + 2*workaround + 2*intent + audience + wtp - risk - uncertainty"""
    merged = {**DEFAULT_SCORES, **scores}
    return (
        2 * merged["pain"]
        + 2 * merged["workaround"]
        + 2 * merged["intent"]
        + merged["audience"]
        + merged["wtp"]
        - merged["risk"]
        - merged["uncertainty"]
    )


def _pain_snippet(card: DemandCard) -> str:
    for text in (card.pain, card.trigger):
        value = (text or "").strip()
        if value:
            return truncate(value, PAIN_SNIPPET_CHARS).strip()
    return ""


def _source_url(record: AnalysisRecord) -> str:
    discussion = record.meta.get("discussion") if isinstance(record.meta, dict) else None
    target = discussion.get("target_url") if isinstance(discussion, dict) else None
    return target if isinstance(target, str) and target else record.url_normalized


def _sort_key(signal: TopSignal) -> Tuple[int, int, float, float]:
    return (
        -WTP_WEIGHT.get(signal.wtp_signal, 0),
        1 if signal.low_confidence else 0,
        -signal.opportunity_score,
        -signal.updated_at.timestamp(),
    )


def build_top_signal(record: AnalysisRecord, action: Optional[AnalysisAction], source_label: str) -> Optional[TopSignal]:
    """只保留 WTP 不为 NONE 的 DEMAND 卡片"""
    card = record.need_card
    if not isinstance(card, DemandCard) or card.wtp_signal == WtpSignal.NONE:
        return None
    return TopSignal(
        id=record.id,
        updated_at=record.updated_at,
        title=card.title,
        pain_snippet=_pain_snippet(card),
        wtp_signal=card.wtp_signal,
        opportunity_score=opportunity_score(),
        low_confidence=record.low_confidence,
        source_label=source_label,
        source_url=_source_url(record),
        action=action.action if action else None,
        tags=list(action.tags) if action else [],
        note=action.note if action else None,
        action_updated_at=action.updated_at if action else None,
    )


def get_top_signals(
    analyses: AnalysisStore,
    actions: ActionStore,
    sources: SourceStore,
    *,
    limit: Optional[int] = None,
    hours: Optional[int] = None,
    show_ignored: bool = False,
    now: Optional[datetime] = None,
) -> List[TopSignal]:
    """
    时间窗口内的高价值需求信号

    排序: WTP 权重降序 -> 非低置信度优先 -> 机会分降序 -> 最近更新优先

    Args:
        limit: 返回条数, 限制在 1..20
        hours: 时间窗口 (24 / 72 / 168)
        show_ignored: 是否包含已标记 ignored 的记录
    """
    limit = clamp_signal_limit(limit)
    hours = clamp_signal_hours(hours)
    since = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)
    candidates = analyses.list_signal_candidates(since, min(limit * CANDIDATE_FACTOR, MAX_CANDIDATES))

    labels: Dict[str, str] = {}
    signals: List[TopSignal] = []
    for record in candidates:
        action = actions.get(record.id)
        if action is not None and action.action == ActionType.IGNORED and not show_ignored:
            continue
        label = MANUAL_SOURCE_LABEL
        if record.source_id:
            if record.source_id not in labels:
                source = sources.get(record.source_id)
                labels[record.source_id] = source.name if source else MANUAL_SOURCE_LABEL
            label = labels[record.source_id]
        signal = build_top_signal(record, action, label)
        if signal is not None:
            signals.append(signal)

    signals.sort(key=_sort_key)
    return signals[:limit]


def get_latest_analysis(
    analyses: AnalysisStore,
    actions: ActionStore,
) -> Optional[Tuple[AnalysisRecord, Optional[AnalysisAction]]]:
    """最近更新且未被标记 ignored 的分析记录"""
    offset = 0
    while True:
        page = analyses.list_recent(limit=LATEST_PAGE_SIZE, offset=offset)
        for record in page:
            action = actions.get(record.id)
            if action is None or action.action != ActionType.IGNORED:
                return record, action
        if len(page) < LATEST_PAGE_SIZE:
            return None
        offset += LATEST_PAGE_SIZE
