"""FastAPI app for on-demand URL analysis, pull runs and automation health."""

from __future__ import annotations

import json
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from fastapi import Body, FastAPI, Header, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import get_settings
from core import ActionType, AnalysisAction, AnalysisRecord, JobRun
from pipeline.url_normalize import normalize_url
from storage import get_latest_analysis, get_top_signals
from utils.exceptions import InvalidUrlError, UnauthorizedError
from utils.logger import configure_logging
from webapp.runtime import get_runtime


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """日志在进程启动时配置一次"""
    log = get_settings().log
    configure_logging(level=log.level, log_file=log.file, use_rich=log.use_rich)
    yield


app = FastAPI(title="Demand Radar API", lifespan=lifespan)


DEFAULT_JOBS_LIMIT = 20
MAX_JOBS_LIMIT = 50
JOB_LOG_COUNTERS = ("discovered", "deduped_new", "deduped_existing", "analyzed", "failed")


class AnalyzeUrlPayload(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text


class AnalysisActionPayload(BaseModel):
    analysis_id: str
    action: Optional[ActionType] = None
    tags: List[str] = []
    note: Optional[str] = None

    @field_validator("analysis_id")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text


class RuntimeConfigPayload(BaseModel):
    """完整覆盖运行时配置; 类型严格, 数值带范围"""

    model_config = ConfigDict(strict=True)

    schedule_enabled: bool
    schedule_interval_minutes: int = Field(ge=5, le=10080)
    max_content_chars: int = Field(ge=1000, le=50000)
    max_per_run: int = Field(ge=1, le=50)
    include_comments: bool
    comment_max_items: int = Field(ge=0, le=200)
    cron_secret: str = Field(min_length=16, max_length=128)


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return ", ".join(parts) or "Invalid config payload."


def _analysis_payload(record: AnalysisRecord, action: Optional[AnalysisAction]) -> Dict[str, Any]:
    payload = record.model_dump(mode="json")
    payload["action"] = action.model_dump(mode="json") if action else None
    return payload


def _check_http_url(raw: str) -> str:
    if urlsplit(raw).scheme.lower() not in ("http", "https"):
        raise HTTPException(status_code=400, detail="Only http/https URLs are supported.")
    try:
        return normalize_url(raw)
    except InvalidUrlError as exc:
        raise HTTPException(status_code=400, detail=str(exc) or "Invalid URL.") from exc


def parse_job_counters(log: Optional[str]) -> Dict[str, int]:
    """把日志里每个数据源行的计数累加起来"""
    counters = {key: 0 for key in JOB_LOG_COUNTERS}
    if not log:
        return counters
    for line in log.splitlines():
        for key in JOB_LOG_COUNTERS:
            match = re.search(rf"(?:^|\s){key}=(\d+)", line)
            if match:
                counters[key] += int(match.group(1))
    return counters


def _job_item(run: JobRun) -> Dict[str, Any]:
    payload = run.model_dump(mode="json")
    meta = payload.pop("meta", None)
    if isinstance(meta, str):
        try:
            meta = json.loads(meta)
        except ValueError:
            meta = None
    stats = meta.get("stats") if isinstance(meta, dict) else None
    payload["stats"] = parse_job_counters(run.log)
    payload["meta_stats"] = stats if isinstance(stats, dict) else None
    return payload


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


@app.post("/api/analyze-url")
async def analyze_url(payload: AnalyzeUrlPayload) -> Dict[str, Any]:
    _check_http_url(payload.url)
    runtime = get_runtime()
    record = await runtime.pipeline.analyze_and_store(
        payload.url,
        runtime.stores.analyses,
        options=runtime.analyze_options(),
    )
    return record.model_dump(mode="json")


@app.get("/api/analyses")
def list_analyses(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> Dict[str, Any]:
    rows = get_runtime().stores.analyses.list_recent(limit=limit, offset=offset)
    return {"items": [row.model_dump(mode="json") for row in rows]}


@app.get("/api/analyses/latest")
def latest_analysis() -> Optional[Dict[str, Any]]:
    stores = get_runtime().stores
    latest = get_latest_analysis(stores.analyses, stores.actions)
    if latest is None:
        return None
    return _analysis_payload(*latest)


@app.get("/api/analyses/{analysis_id}")
def get_analysis(analysis_id: str) -> Dict[str, Any]:
    runtime = get_runtime()
    record = runtime.stores.analyses.get(analysis_id)
    if record is None:
        raise HTTPException(status_code=404, detail="analysis not found")
    return _analysis_payload(record, runtime.stores.actions.get(analysis_id))


@app.get("/api/signals/top")
def top_signals(
    limit: Optional[int] = Query(default=None),
    hours: Optional[int] = Query(default=None),
    show_ignored: bool = Query(default=False),
) -> Dict[str, Any]:
    stores = get_runtime().stores
    signals = get_top_signals(
        stores.analyses,
        stores.actions,
        stores.sources,
        limit=limit,
        hours=hours,
        show_ignored=show_ignored,
    )
    return {"items": [signal.model_dump(mode="json") for signal in signals]}


@app.get("/api/config")
def read_config() -> Dict[str, Any]:
    return get_runtime().stores.config.get_or_create().model_dump(mode="json")


@app.post("/api/config")
def write_config(body: Any = Body(default=None)) -> Dict[str, Any]:
    try:
        payload = RuntimeConfigPayload.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_message(exc)) from exc
    config = get_runtime().stores.config.update(payload.model_dump())
    logger.info("runtime config updated")
    return config.model_dump(mode="json")


@app.post("/api/analysis-actions")
def save_analysis_action(payload: AnalysisActionPayload) -> Dict[str, Any]:
    store = get_runtime().stores.actions
    if payload.action is None:
        store.delete(payload.analysis_id)
        return {"analysis_id": payload.analysis_id, "action": None, "tags": [], "note": None}
    action = store.upsert(
        AnalysisAction(
            analysis_id=payload.analysis_id,
            action=payload.action,
            tags=payload.tags,
            note=payload.note,
        )
    )
    return action.model_dump(mode="json")


@app.get("/api/saved")
def list_saved(tag: Optional[str] = None) -> Dict[str, Any]:
    actions = get_runtime().stores.actions.list_saved(tag=tag)
    return {"items": [action.model_dump(mode="json") for action in actions]}


@app.post("/api/jobs/pull-now")
async def pull_now() -> Dict[str, Any]:
    outcome = await get_runtime().triggers.pull_now()
    return outcome.to_dict()


@app.api_route("/api/cron/run", methods=["GET", "POST"])
async def cron_run(x_cron_secret: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    try:
        outcome = await get_runtime().triggers.run_cron(x_cron_secret)
    except UnauthorizedError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return outcome.to_dict()


@app.post("/api/jobs/unlock")
def force_unlock(x_cron_secret: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    try:
        get_runtime().triggers.force_unlock(x_cron_secret)
    except UnauthorizedError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return {"ok": True}


@app.get("/api/jobs")
def list_jobs(
    limit: int = Query(default=DEFAULT_JOBS_LIMIT),
    offset: int = Query(default=0),
) -> Dict[str, Any]:
    limit = min(MAX_JOBS_LIMIT, max(1, limit))
    offset = max(0, offset)
    rows = get_runtime().stores.job_runs.list_recent(limit=limit, offset=offset)
    next_offset = offset + len(rows) if len(rows) == limit else None
    return {"items": [_job_item(row) for row in rows], "next_offset": next_offset}


@app.get("/api/automation/health")
def automation_health() -> Dict[str, Any]:
    return get_runtime().automation_health()
