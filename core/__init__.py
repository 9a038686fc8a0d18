"""Core contracts and shared types for the demand radar."""

from .contracts import (
    NEED_CARD_ADAPTER,
    ActionType,
    AnalysisAction,
    AnalysisMeta,
    AnalysisRecord,
    AnalysisRecordInput,
    AnalysisResult,
    AnalysisStatus,
    DemandCard,
    DiscoveryResult,
    DiscussionMeta,
    ErrorMeta,
    EvidenceMeta,
    ExtractorUsed,
    FailReason,
    FetchAttempt,
    FetchMeta,
    FetchMethod,
    JobLock,
    JobRun,
    JobRunStats,
    JobStatus,
    JobTrigger,
    LLMMeta,
    LockAcquireResult,
    NeedCard,
    NoDemandCard,
    PipelineStep,
    RuntimeConfig,
    Source,
    TimingMeta,
    TopSignal,
    WarningEntry,
    WtpSignal,
    parse_need_card,
    utc_iso,
    utcnow,
)

__all__ = [
    "NEED_CARD_ADAPTER",
    "ActionType",
    "AnalysisAction",
    "AnalysisMeta",
    "AnalysisRecord",
    "AnalysisRecordInput",
    "AnalysisResult",
    "AnalysisStatus",
    "DemandCard",
    "DiscoveryResult",
    "DiscussionMeta",
    "ErrorMeta",
    "EvidenceMeta",
    "ExtractorUsed",
    "FailReason",
    "FetchAttempt",
    "FetchMeta",
    "FetchMethod",
    "JobLock",
    "JobRun",
    "JobRunStats",
    "JobStatus",
    "JobTrigger",
    "LLMMeta",
    "LockAcquireResult",
    "NeedCard",
    "NoDemandCard",
    "PipelineStep",
    "RuntimeConfig",
    "Source",
    "TimingMeta",
    "TopSignal",
    "WarningEntry",
    "WtpSignal",
    "parse_need_card",
    "utc_iso",
    "utcnow",
]
