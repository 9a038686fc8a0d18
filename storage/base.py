"""
Storage Contracts
持久化抽象基类; 内存实现与 SQLite 实现共用同一套接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from core import (
    AnalysisAction,
    AnalysisRecord,
    AnalysisRecordInput,
    JobLock,
    JobRun,
    LockAcquireResult,
    RuntimeConfig,
    Source,
)


class AnalysisStore(ABC):
    """分析结果存储, 每个规范化 URL 只有一条记录"""

    @abstractmethod
    def upsert(self, record: AnalysisRecordInput) -> AnalysisRecord:
        """按 url_normalized 写入; 已存在时保留 created_at, 其余字段全部覆盖"""
        pass

    @abstractmethod
    def list_existing(self, urls: List[str]) -> List[str]:
        """返回给定规范化 URL 中已经存在的部分"""
        pass

    @abstractmethod
    def get(self, analysis_id: str) -> Optional[AnalysisRecord]:
        pass

    @abstractmethod
    def get_by_normalized_url(self, url_normalized: str) -> Optional[AnalysisRecord]:
        pass

    @abstractmethod
    def list_recent(self, limit: int = 20, offset: int = 0) -> List[AnalysisRecord]:
        """按 updated_at 倒序"""
        pass

    @abstractmethod
    def list_signal_candidates(self, since: datetime, limit: int) -> List[AnalysisRecord]:
        """since 之后更新、成功且带 Need Card 的记录, 按 updated_at 倒序"""
        pass


class JobRunStore(ABC):
    """任务运行记录"""

    @abstractmethod
    def insert(self, run: JobRun) -> JobRun:
        pass

    @abstractmethod
    def update(self, run: JobRun) -> JobRun:
        pass

    @abstractmethod
    def get(self, run_id: str) -> Optional[JobRun]:
        pass

    @abstractmethod
    def list_recent(self, limit: int = 20, offset: int = 0, job_name: Optional[str] = None) -> List[JobRun]:
        """按 started_at 倒序"""
        pass


class LockStore(ABC):
    """
    带 TTL 的互斥锁

    try_acquire 必须是原子的: 仅当锁不存在或已过期时写入新持有者。
    """

    @abstractmethod
    def try_acquire(self, lock_name: str, owner: str, expires_at: datetime, now: datetime) -> LockAcquireResult:
        pass

    @abstractmethod
    def get(self, lock_name: str) -> Optional[JobLock]:
        pass

    @abstractmethod
    def release(self, lock_name: str, owner: str) -> bool:
        """仅当持有者匹配时清除"""
        pass

    @abstractmethod
    def force_release(self, lock_name: str) -> None:
        pass


class SourceStore(ABC):
    """发现数据源"""

    @abstractmethod
    def list_enabled(self) -> List[Source]:
        pass

    @abstractmethod
    def touch_checked(self, source_id: str, checked_at: Optional[datetime] = None) -> None:
        pass

    @abstractmethod
    def get(self, source_id: str) -> Optional[Source]:
        pass

    @abstractmethod
    def add(self, source: Source) -> Source:
        pass


class ActionStore(ABC):
    """分析结果的人工处理标记 (saved / ignored / watching)"""

    @abstractmethod
    def upsert(self, action: AnalysisAction) -> AnalysisAction:
        pass

    @abstractmethod
    def delete(self, analysis_id: str) -> bool:
        pass

    @abstractmethod
    def get(self, analysis_id: str) -> Optional[AnalysisAction]:
        pass

    @abstractmethod
    def list_saved(self, tag: Optional[str] = None) -> List[AnalysisAction]:
        """saved + watching, 按 updated_at 倒序"""
        pass


class AutomationStateStore(ABC):
    """自动化状态 (key -> JSON), 以 patch 方式合并"""

    @abstractmethod
    def get(self, key: str = "health") -> Dict[str, Any]:
        pass

    @abstractmethod
    def update(self, patch: Dict[str, Any], key: str = "health") -> Dict[str, Any]:
        pass


class ConfigStore(ABC):
    """运行时配置; 首次读取时生成 cron 密钥"""

    @abstractmethod
    def get_or_create(self) -> RuntimeConfig:
        pass

    @abstractmethod
    def update(self, patch: Dict[str, Any]) -> RuntimeConfig:
        pass
