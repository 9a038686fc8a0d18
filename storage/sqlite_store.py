"""
SQLite Stores
单文件 SQLite 持久化; 线程本地连接 + WAL, 锁的抢占在 BEGIN IMMEDIATE 事务内完成
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from core import (
    ActionType,
    AnalysisAction,
    AnalysisRecord,
    AnalysisRecordInput,
    AnalysisStatus,
    JobLock,
    JobRun,
    LockAcquireResult,
    RuntimeConfig,
    Source,
)
from utils.exceptions import StorageError

from .base import (
    ActionStore,
    AnalysisStore,
    AutomationStateStore,
    ConfigStore,
    JobRunStore,
    LockStore,
    SourceStore,
)
from .memory import new_cron_secret


logger = logging.getLogger(__name__)


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS url_analyses (
        id TEXT PRIMARY KEY,
        url TEXT NOT NULL,
        url_normalized TEXT NOT NULL UNIQUE,
        source_id TEXT,
        status TEXT NOT NULL,
        step TEXT NOT NULL,
        extractor_used TEXT,
        extracted_len INTEGER DEFAULT 0,
        fail_reason TEXT,
        content_text TEXT,
        need_card_json TEXT,
        warnings TEXT DEFAULT '[]',
        meta TEXT DEFAULT '{}',
        low_confidence INTEGER DEFAULT 0,
        error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_url_analyses_updated ON url_analyses(updated_at)",
    """
    CREATE TABLE IF NOT EXISTS job_runs (
        id TEXT PRIMARY KEY,
        job_name TEXT NOT NULL,
        trigger TEXT NOT NULL,
        status TEXT NOT NULL,
        started_at TEXT NOT NULL,
        finished_at TEXT,
        log TEXT,
        error TEXT,
        meta TEXT DEFAULT '{}'
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_job_runs_started ON job_runs(started_at)",
    """
    CREATE TABLE IF NOT EXISTS job_locks (
        lock_name TEXT PRIMARY KEY,
        locked_by TEXT,
        locked_at TEXT,
        expires_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sources (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        entry_url TEXT NOT NULL,
        enabled INTEGER DEFAULT 1,
        discover_limit INTEGER DEFAULT 20,
        analyze_top_n INTEGER,
        last_checked_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS analysis_actions (
        analysis_id TEXT PRIMARY KEY,
        action TEXT NOT NULL,
        tags TEXT DEFAULT '[]',
        note TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS automation_state (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL DEFAULT '{}',
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS runtime_config (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    """统一为 UTC 微秒精度, 保证字符串比较与时间比较一致"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _loads(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    return json.loads(value)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


class SQLiteDatabase:
    """Thread-safe SQLite connection manager with WAL mode."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._init_schema()

    def get_connection(self) -> sqlite3.Connection:
        """Get a thread-local SQLite connection."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.conn = conn
        return conn

    def _init_schema(self) -> None:
        with self.transaction() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        conn = self.get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            conn.execute("ROLLBACK")
            raise StorageError(f"SQLite write failed: {exc}") from exc
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self.get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"SQLite query failed: {exc}") from exc

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None


class SQLiteAnalysisStore(AnalysisStore):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> AnalysisRecord:
        return AnalysisRecord(
            id=row["id"],
            url=row["url"],
            url_normalized=row["url_normalized"],
            source_id=row["source_id"],
            status=row["status"],
            step=row["step"],
            extractor_used=row["extractor_used"],
            extracted_len=row["extracted_len"] or 0,
            fail_reason=row["fail_reason"],
            content_text=row["content_text"],
            need_card=_loads(row["need_card_json"], None),
            warnings=_loads(row["warnings"], []),
            meta=_loads(row["meta"], {}),
            low_confidence=bool(row["low_confidence"]),
            error=row["error"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def upsert(self, record: AnalysisRecordInput) -> AnalysisRecord:
        data = record.model_dump(mode="json")
        now = _iso(_utcnow())
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO url_analyses (
                    id, url, url_normalized, source_id, status, step, extractor_used,
                    extracted_len, fail_reason, content_text, need_card_json, warnings,
                    meta, low_confidence, error, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (url_normalized) DO UPDATE SET
                    url = excluded.url,
                    source_id = excluded.source_id,
                    status = excluded.status,
                    step = excluded.step,
                    extractor_used = excluded.extractor_used,
                    extracted_len = excluded.extracted_len,
                    fail_reason = excluded.fail_reason,
                    content_text = excluded.content_text,
                    need_card_json = excluded.need_card_json,
                    warnings = excluded.warnings,
                    meta = excluded.meta,
                    low_confidence = excluded.low_confidence,
                    error = excluded.error,
                    updated_at = excluded.updated_at
                """,
                (
                    uuid4().hex,
                    data["url"],
                    data["url_normalized"],
                    data["source_id"],
                    data["status"],
                    data["step"],
                    data["extractor_used"],
                    data["extracted_len"],
                    data["fail_reason"],
                    data["content_text"],
                    _dumps(data["need_card"]) if data["need_card"] is not None else None,
                    _dumps(data["warnings"]),
                    _dumps(data["meta"]),
                    int(data["low_confidence"]),
                    data["error"],
                    now,
                    now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM url_analyses WHERE url_normalized = ?", (record.url_normalized,)
            ).fetchone()
        return self._row_to_record(row)

    def list_existing(self, urls: List[str]) -> List[str]:
        unique = list(dict.fromkeys(urls))
        if not unique:
            return []
        placeholders = ",".join("?" for _ in unique)
        rows = self.db.query(
            f"SELECT url_normalized FROM url_analyses WHERE url_normalized IN ({placeholders})",
            tuple(unique),
        )
        found = {row["url_normalized"] for row in rows}
        return [url for url in unique if url in found]

    def get(self, analysis_id: str) -> Optional[AnalysisRecord]:
        rows = self.db.query("SELECT * FROM url_analyses WHERE id = ?", (analysis_id,))
        return self._row_to_record(rows[0]) if rows else None

    def get_by_normalized_url(self, url_normalized: str) -> Optional[AnalysisRecord]:
        rows = self.db.query("SELECT * FROM url_analyses WHERE url_normalized = ?", (url_normalized,))
        return self._row_to_record(rows[0]) if rows else None

    def list_recent(self, limit: int = 20, offset: int = 0) -> List[AnalysisRecord]:
        rows = self.db.query(
            "SELECT * FROM url_analyses ORDER BY updated_at DESC, id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [self._row_to_record(row) for row in rows]

    def list_signal_candidates(self, since: datetime, limit: int) -> List[AnalysisRecord]:
        rows = self.db.query(
            """
            SELECT * FROM url_analyses
            WHERE updated_at >= ? AND status = ? AND need_card_json IS NOT NULL
            ORDER BY updated_at DESC, id DESC
            LIMIT ?
            """,
            (_iso(since), AnalysisStatus.SUCCESS.value, limit),
        )
        return [self._row_to_record(row) for row in rows]


class SQLiteJobRunStore(JobRunStore):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> JobRun:
        return JobRun(
            id=row["id"],
            job_name=row["job_name"],
            trigger=row["trigger"],
            status=row["status"],
            started_at=_dt(row["started_at"]),
            finished_at=_dt(row["finished_at"]),
            log=row["log"],
            error=row["error"],
            meta=_loads(row["meta"], {}),
        )

    def _params(self, run: JobRun) -> tuple:
        return (
            run.job_name,
            run.trigger.value,
            run.status.value,
            _iso(run.started_at),
            _iso(run.finished_at),
            run.log,
            run.error,
            _dumps(run.meta),
            run.id,
        )

    def insert(self, run: JobRun) -> JobRun:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO job_runs (job_name, trigger, status, started_at, finished_at, log, error, meta, id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._params(run),
            )
        return run.model_copy(deep=True)

    def update(self, run: JobRun) -> JobRun:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE job_runs
                SET job_name = ?, trigger = ?, status = ?, started_at = ?, finished_at = ?,
                    log = ?, error = ?, meta = ?
                WHERE id = ?
                """,
                self._params(run),
            )
            if cursor.rowcount == 0:
                raise StorageError(f"Job run not found: {run.id}")
        return run.model_copy(deep=True)

    def get(self, run_id: str) -> Optional[JobRun]:
        rows = self.db.query("SELECT * FROM job_runs WHERE id = ?", (run_id,))
        return self._row_to_run(rows[0]) if rows else None

    def list_recent(self, limit: int = 20, offset: int = 0, job_name: Optional[str] = None) -> List[JobRun]:
        if job_name:
            rows = self.db.query(
                "SELECT * FROM job_runs WHERE job_name = ? ORDER BY started_at DESC LIMIT ? OFFSET ?",
                (job_name, limit, offset),
            )
        else:
            rows = self.db.query(
                "SELECT * FROM job_runs ORDER BY started_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
        return [self._row_to_run(row) for row in rows]


class SQLiteLockStore(LockStore):
    """锁行只更新不删除; 抢占是一条带过期条件的 UPDATE"""

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    @staticmethod
    def _row_to_lock(row: Optional[sqlite3.Row], lock_name: str) -> JobLock:
        if row is None:
            return JobLock(lock_name=lock_name)
        return JobLock(
            lock_name=row["lock_name"],
            locked_by=row["locked_by"],
            locked_at=_dt(row["locked_at"]),
            expires_at=_dt(row["expires_at"]),
        )

    def try_acquire(self, lock_name: str, owner: str, expires_at: datetime, now: datetime) -> LockAcquireResult:
        with self.db.transaction(immediate=True) as conn:
            conn.execute("INSERT OR IGNORE INTO job_locks (lock_name) VALUES (?)", (lock_name,))
            cursor = conn.execute(
                """
                UPDATE job_locks
                SET locked_by = ?, locked_at = ?, expires_at = ?
                WHERE lock_name = ? AND (expires_at IS NULL OR expires_at <= ?)
                """,
                (owner, _iso(now), _iso(expires_at), lock_name, _iso(now)),
            )
            acquired = cursor.rowcount == 1
            row = conn.execute("SELECT * FROM job_locks WHERE lock_name = ?", (lock_name,)).fetchone()

        lock = self._row_to_lock(row, lock_name)
        if acquired:
            return LockAcquireResult(acquired=True, lock=lock)
        return LockAcquireResult(acquired=False, lock=lock, reason="LOCKED")

    def get(self, lock_name: str) -> Optional[JobLock]:
        rows = self.db.query("SELECT * FROM job_locks WHERE lock_name = ?", (lock_name,))
        return self._row_to_lock(rows[0], lock_name) if rows else None

    def release(self, lock_name: str, owner: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE job_locks SET locked_by = NULL, locked_at = NULL, expires_at = NULL
                WHERE lock_name = ? AND locked_by = ?
                """,
                (lock_name, owner),
            )
            return cursor.rowcount == 1

    def force_release(self, lock_name: str) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE job_locks SET locked_by = NULL, locked_at = NULL, expires_at = NULL WHERE lock_name = ?",
                (lock_name,),
            )


class SQLiteSourceStore(SourceStore):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    @staticmethod
    def _row_to_source(row: sqlite3.Row) -> Source:
        return Source(
            id=row["id"],
            name=row["name"],
            type=row["type"],
            entry_url=row["entry_url"],
            enabled=bool(row["enabled"]),
            discover_limit=row["discover_limit"],
            analyze_top_n=row["analyze_top_n"],
            last_checked_at=_dt(row["last_checked_at"]),
        )

    def list_enabled(self) -> List[Source]:
        rows = self.db.query("SELECT * FROM sources WHERE enabled = 1 ORDER BY name")
        return [self._row_to_source(row) for row in rows]

    def get(self, source_id: str) -> Optional[Source]:
        rows = self.db.query("SELECT * FROM sources WHERE id = ?", (source_id,))
        return self._row_to_source(rows[0]) if rows else None

    def touch_checked(self, source_id: str, checked_at: Optional[datetime] = None) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE sources SET last_checked_at = ? WHERE id = ?",
                (_iso(checked_at or _utcnow()), source_id),
            )

    def add(self, source: Source) -> Source:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO sources
                    (id, name, type, entry_url, enabled, discover_limit, analyze_top_n, last_checked_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source.id,
                    source.name,
                    source.type,
                    source.entry_url,
                    int(source.enabled),
                    source.discover_limit,
                    source.analyze_top_n,
                    _iso(source.last_checked_at),
                ),
            )
        return source.model_copy()


class SQLiteActionStore(ActionStore):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> AnalysisAction:
        return AnalysisAction(
            analysis_id=row["analysis_id"],
            action=row["action"],
            tags=_loads(row["tags"], []),
            note=row["note"],
            updated_at=_dt(row["updated_at"]),
        )

    def upsert(self, action: AnalysisAction) -> AnalysisAction:
        now = _utcnow()
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO analysis_actions (analysis_id, action, tags, note, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (analysis_id) DO UPDATE SET
                    action = excluded.action,
                    tags = excluded.tags,
                    note = excluded.note,
                    updated_at = excluded.updated_at
                """,
                (action.analysis_id, action.action.value, _dumps(action.tags), action.note, _iso(now)),
            )
        return action.model_copy(update={"updated_at": now})

    def delete(self, analysis_id: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM analysis_actions WHERE analysis_id = ?", (analysis_id,))
            return cursor.rowcount == 1

    def get(self, analysis_id: str) -> Optional[AnalysisAction]:
        rows = self.db.query("SELECT * FROM analysis_actions WHERE analysis_id = ?", (analysis_id,))
        return self._row_to_action(rows[0]) if rows else None

    def list_saved(self, tag: Optional[str] = None) -> List[AnalysisAction]:
        rows = self.db.query(
            "SELECT * FROM analysis_actions WHERE action IN (?, ?) ORDER BY updated_at DESC",
            (ActionType.SAVED.value, ActionType.WATCHING.value),
        )
        actions = [self._row_to_action(row) for row in rows]
        if tag:
            actions = [action for action in actions if tag in action.tags]
        return actions


class SQLiteAutomationStateStore(AutomationStateStore):
    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db

    def get(self, key: str = "health") -> Dict[str, Any]:
        rows = self.db.query("SELECT value FROM automation_state WHERE key = ?", (key,))
        return _loads(rows[0]["value"], {}) if rows else {}

    def update(self, patch: Dict[str, Any], key: str = "health") -> Dict[str, Any]:
        with self.db.transaction(immediate=True) as conn:
            row = conn.execute("SELECT value FROM automation_state WHERE key = ?", (key,)).fetchone()
            merged = {**(_loads(row["value"], {}) if row else {}), **patch}
            conn.execute(
                """
                INSERT INTO automation_state (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT (key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, _dumps(merged), _iso(_utcnow())),
            )
        return merged


class SQLiteConfigStore(ConfigStore):
    def __init__(self, db: SQLiteDatabase, defaults: Optional[RuntimeConfig] = None) -> None:
        self.db = db
        self._defaults = defaults or RuntimeConfig()

    def _write(self, conn: sqlite3.Connection, config: RuntimeConfig) -> None:
        conn.execute(
            """
            INSERT INTO runtime_config (id, value, updated_at) VALUES (1, ?, ?)
            ON CONFLICT (id) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (config.model_dump_json(), _iso(config.updated_at)),
        )

    def get_or_create(self) -> RuntimeConfig:
        with self.db.transaction(immediate=True) as conn:
            row = conn.execute("SELECT value FROM runtime_config WHERE id = 1").fetchone()
            if row is not None:
                return RuntimeConfig.model_validate_json(row["value"])
            config = self._defaults.model_copy(
                update={"cron_secret": self._defaults.cron_secret or new_cron_secret(), "updated_at": _utcnow()}
            )
            self._write(conn, config)
            logger.info("runtime config created")
            return config

    def update(self, patch: Dict[str, Any]) -> RuntimeConfig:
        current = self.get_or_create()
        data = current.model_dump()
        data.update({key: value for key, value in patch.items() if key in RuntimeConfig.model_fields})
        data["updated_at"] = _utcnow()
        config = RuntimeConfig.model_validate(data)
        with self.db.transaction() as conn:
            self._write(conn, config)
        return config
