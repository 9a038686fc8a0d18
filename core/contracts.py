"""Canonical data contracts for the demand radar pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utc_iso(value: Optional[datetime] = None) -> str:
    return (value or utcnow()).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class FailReason(str, Enum):
    """Closed set of per-item failure reasons."""

    FETCH_FAILED = "FETCH_FAILED"
    READABILITY_FAILED = "READABILITY_FAILED"
    TOO_SHORT = "TOO_SHORT"
    LIKELY_JS_RENDER = "LIKELY_JS_RENDER"
    JINA_FAILED = "JINA_FAILED"
    HN_ITEM_FETCH_FAILED = "HN_ITEM_FETCH_FAILED"
    JINA_INVALID_CONTENT = "JINA_INVALID_CONTENT"
    QUOTE_NOT_FOUND = "QUOTE_NOT_FOUND"
    ITEM_TIMEBOX_EXCEEDED = "ITEM_TIMEBOX_EXCEEDED"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    NO_SOURCES_ENABLED = "NO_SOURCES_ENABLED"


class PipelineStep(str, Enum):
    FETCHED = "fetched"
    EXTRACTED = "extracted"
    ANALYZED = "analyzed"


class ExtractorUsed(str, Enum):
    READABILITY = "readability"
    READER_PROXY = "reader_proxy"
    DISCUSSION_API = "discussion_api"


class FetchMethod(str, Enum):
    DIRECT = "direct"
    READER_PROXY = "reader_proxy"
    DISCUSSION_API = "discussion_api"


class WtpSignal(str, Enum):
    """Willingness-to-pay strength, strongest first."""

    STRONG = "STRONG"
    MEDIUM = "MEDIUM"
    WEAK = "WEAK"
    NONE = "NONE"


class AnalysisStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class JobTrigger(str, Enum):
    MANUAL = "manual"
    CRON = "cron"


class ActionType(str, Enum):
    SAVED = "saved"
    IGNORED = "ignored"
    WATCHING = "watching"


# ---------------------------------------------------------------------------
# Need Card
# ---------------------------------------------------------------------------


def _required_text(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValueError("value is required")
    return text


class _CardBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    evidence_quote: str = Field(min_length=40, max_length=240)
    source_url: str
    tags: Optional[List[str]] = Field(default=None, max_length=5)

    @field_validator("title", "source_url")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        return _required_text(value)

    @field_validator("tags")
    @classmethod
    def _non_empty_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        for tag in value:
            if not str(tag or "").strip():
                raise ValueError("tags must be non-empty strings")
        return value


class DemandCard(_CardBase):
    """Need card for content that expresses a concrete user need."""

    kind: Literal["DEMAND"] = "DEMAND"
    who: str
    pain: str
    trigger: str
    workaround: str
    wtp_signal: WtpSignal

    @field_validator("who", "pain", "trigger", "workaround")
    @classmethod
    def _non_empty_fields(cls, value: str) -> str:
        return _required_text(value)


class NoDemandCard(_CardBase):
    """Need card for content without an actionable demand."""

    kind: Literal["NO_DEMAND"] = "NO_DEMAND"
    no_demand_reason: str
    wtp_signal: Literal["NONE"] = "NONE"
    who: Optional[str] = None
    pain: Optional[str] = None
    trigger: Optional[str] = None
    workaround: Optional[str] = None

    @field_validator("no_demand_reason")
    @classmethod
    def _reason_required(cls, value: str) -> str:
        return _required_text(value)


NeedCard = Annotated[Union[DemandCard, NoDemandCard], Field(discriminator="kind")]
NEED_CARD_ADAPTER: TypeAdapter = TypeAdapter(NeedCard)


def parse_need_card(payload: Any) -> Union[DemandCard, NoDemandCard]:
    """Validate a decoded JSON object against the strict need card schema."""
    return NEED_CARD_ADAPTER.validate_python(payload)


# ---------------------------------------------------------------------------
# Analysis diagnostics
# ---------------------------------------------------------------------------


class WarningEntry(BaseModel):
    """Typed warning with timestamp and free-form context keys."""

    model_config = ConfigDict(extra="allow")

    type: str
    at: str = Field(default_factory=utc_iso)


class FetchAttempt(BaseModel):
    method: str
    ok: bool
    ms: int = 0
    error: Optional[str] = None


class FetchMeta(BaseModel):
    used: Optional[FetchMethod] = None
    fallback: bool = False
    attempts: List[FetchAttempt] = Field(default_factory=list)
    direct_error: Optional[str] = None
    direct_status: Optional[int] = None


class DiscussionMeta(BaseModel):
    id: int
    kind: Literal["link", "ask", "unresolved"] = "unresolved"
    target_url: Optional[str] = None
    source: Optional[Literal["firebase", "algolia"]] = None
    attempts: List[FetchAttempt] = Field(default_factory=list)


class EvidenceMeta(BaseModel):
    match: Literal["exact", "normalized", "fail"]


class LLMMeta(BaseModel):
    model: str = ""
    prompt_version: str = ""
    elapsed_ms: int = 0
    parse_retry: bool = False
    error: Optional[str] = None


class TimingMeta(BaseModel):
    discussion_ms: int = 0
    fetch_ms: int = 0
    llm_ms: int = 0
    total_ms: int = 0


class ErrorMeta(BaseModel):
    """name is the exception class name; None when no exception was caught."""

    name: Optional[str] = None
    message: str
    code: Optional[str] = None


class AnalysisMeta(BaseModel):
    fetch: FetchMeta = Field(default_factory=FetchMeta)
    discussion: Optional[DiscussionMeta] = None
    evidence: Optional[EvidenceMeta] = None
    llm: Optional[LLMMeta] = None
    timing: TimingMeta = Field(default_factory=TimingMeta)
    error: Optional[ErrorMeta] = None
    signal_reason: Optional[str] = None


class AnalysisResult(BaseModel):
    """Outcome of analyzing one URL; never raised, always returned."""

    url: str
    url_normalized: Optional[str] = None
    step: PipelineStep = PipelineStep.FETCHED
    extractor_used: Optional[ExtractorUsed] = None
    extracted_len: int = 0
    title: Optional[str] = None
    source_text: str = ""
    need_card: Optional[NeedCard] = None
    fail_reason: Optional[FailReason] = None
    error: Optional[str] = None
    warnings: List[WarningEntry] = Field(default_factory=list)
    meta: AnalysisMeta = Field(default_factory=AnalysisMeta)
    low_confidence: bool = False

    @property
    def ok(self) -> bool:
        return self.need_card is not None


# ---------------------------------------------------------------------------
# Persistence records
# ---------------------------------------------------------------------------


class AnalysisRecordInput(BaseModel):
    """Upsert payload keyed by url_normalized."""

    url: str
    url_normalized: str
    source_id: Optional[str] = None
    status: AnalysisStatus
    step: PipelineStep
    extractor_used: Optional[ExtractorUsed] = None
    extracted_len: int = 0
    fail_reason: Optional[FailReason] = None
    content_text: Optional[str] = None
    need_card: Optional[NeedCard] = None
    warnings: List[WarningEntry] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)
    low_confidence: bool = False
    error: Optional[str] = None


class AnalysisRecord(AnalysisRecordInput):
    id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class JobRunStats(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    discussion_fallback: int = 0
    fetch_fallback: int = 0
    reader_invalid: int = 0
    timebox_exceeded: int = 0

    def rates(self) -> Dict[str, float]:
        if self.total <= 0:
            return {"fallback_rate": 0.0, "fail_rate": 0.0}
        return {
            "fallback_rate": self.fetch_fallback / self.total,
            "fail_rate": self.failed / self.total,
        }


class JobRun(BaseModel):
    id: str
    job_name: str
    trigger: JobTrigger
    status: JobStatus = JobStatus.RUNNING
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    log: Optional[str] = None
    error: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class JobLock(BaseModel):
    lock_name: str
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if not self.locked_by or self.expires_at is None:
            return False
        return self.expires_at > (now or utcnow())


class LockAcquireResult(BaseModel):
    acquired: bool
    lock: Optional[JobLock] = None
    reason: Optional[str] = None


class Source(BaseModel):
    id: str
    name: str
    type: str = "hacker_news"
    entry_url: str
    enabled: bool = True
    discover_limit: int = Field(default=20, ge=1)
    analyze_top_n: Optional[int] = None
    last_checked_at: Optional[datetime] = None


class DiscoveryResult(BaseModel):
    source_id: str
    url: str
    origin_title: Optional[str] = None
    origin_id: Optional[str] = None


MAX_TAGS = 8
MAX_TAG_LEN = 24
MAX_NOTE_LEN = 280


class AnalysisAction(BaseModel):
    """User triage decision attached to an analysis record."""

    analysis_id: str
    action: ActionType
    tags: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("analysis_id", mode="before")
    @classmethod
    def _analysis_id_required(cls, value: Any) -> str:
        return _required_text(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> List[str]:
        if not isinstance(value, (list, tuple)):
            return []
        seen: List[str] = []
        for raw in value:
            if not isinstance(raw, str):
                continue
            tag = raw.strip().lower()[:MAX_TAG_LEN]
            if tag and tag not in seen:
                seen.append(tag)
        return seen[:MAX_TAGS]

    @field_validator("note", mode="before")
    @classmethod
    def _normalize_note(cls, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        text = value.strip()
        return text[:MAX_NOTE_LEN] if text else None


class TopSignal(BaseModel):
    """Ranked DEMAND card joined with its source label and triage action."""

    id: str
    updated_at: datetime
    title: str
    pain_snippet: str = ""
    wtp_signal: WtpSignal
    opportunity_score: float
    low_confidence: bool = False
    source_label: str
    source_url: str
    action: Optional[ActionType] = None
    tags: List[str] = Field(default_factory=list)
    note: Optional[str] = None
    action_updated_at: Optional[datetime] = None


class RuntimeConfig(BaseModel):
    """Operator-tunable settings persisted alongside the data."""

    schedule_enabled: bool = False
    schedule_interval_minutes: int = Field(default=60, ge=1)
    max_content_chars: int = Field(default=12000, ge=1)
    max_per_run: int = 5
    include_comments: bool = False
    comment_max_items: int = Field(default=30, ge=0)
    cron_secret: str = ""
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def effective_max_per_run(self) -> int:
        return max(1, int(self.max_per_run or 0))
