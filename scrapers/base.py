"""
Base Source Adapter
所有发现类数据源的抽象基类
"""
from abc import ABC, abstractmethod
from typing import List, Optional
import asyncio
import logging
import time

from core import DiscoveryResult, Source
from utils.timeout import CancellationToken


logger = logging.getLogger(__name__)


class BaseSourceAdapter(ABC):
    """
    数据源适配器抽象基类
    discover() 返回候选 URL 列表, 单条失败应跳过而不是抛出
    """

    def __init__(self):
        self._session = None

    @property
    @abstractmethod
    def source_type(self) -> str:
        """返回数据源类型 (与 Source.type 对应)"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """返回适配器名称"""
        pass

    @abstractmethod
    async def discover(
        self,
        source: Source,
        token: Optional[CancellationToken] = None,
    ) -> List[DiscoveryResult]:
        """
        发现候选 URL

        Args:
            source: 数据源配置
            token: 上层取消令牌

        Returns:
            去重后的候选列表
        """
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """清理资源"""
        if self._session:
            await self._session.close()
            self._session = None

    def _log_discover(self, source: Source, count: int):
        logger.info(f"[{self.name}] Discovered {count} candidates from {source.entry_url}")


class RateLimitedAdapter(BaseSourceAdapter):
    """
    带速率限制的适配器基类
    """

    def __init__(self, requests_per_second: float = 1.0):
        super().__init__()
        self._rate_limit = requests_per_second
        self._last_request_time = 0.0
        self._lock = None

    async def _wait_for_rate_limit(self):
        """等待满足速率限制"""
        if self._rate_limit <= 0:
            return
        # asyncio.Lock 延迟创建, 绑定到实际运行的事件循环
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            min_interval = 1.0 / self._rate_limit
            time_since_last = time.monotonic() - self._last_request_time
            if time_since_last < min_interval:
                await asyncio.sleep(min_interval - time_since_last)
            self._last_request_time = time.monotonic()
