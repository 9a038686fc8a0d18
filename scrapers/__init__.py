"""
Scrapers Module
发现类数据源适配器与注册表
"""
from typing import Callable, Dict, Optional

from utils.exceptions import UnsupportedSourceError

from .base import BaseSourceAdapter, RateLimitedAdapter
from .hackernews_scraper import (
    DiscussionItem,
    DiscussionResolveResult,
    HackerNewsScraper,
)


AdapterFactory = Callable[[], BaseSourceAdapter]

_REGISTRY: Dict[str, BaseSourceAdapter] = {}
_FACTORIES: Dict[str, AdapterFactory] = {
    "hacker_news": HackerNewsScraper,
}


def register_adapter(source_type: str, adapter: BaseSourceAdapter) -> None:
    """注册 (或替换) 某类数据源的适配器实例"""
    _REGISTRY[source_type] = adapter


def get_adapter(source_type: Optional[str]) -> BaseSourceAdapter:
    """按 Source.type 获取适配器, 未知类型抛出 UnsupportedSourceError"""
    key = str(source_type or "").strip()
    adapter = _REGISTRY.get(key)
    if adapter is not None:
        return adapter
    factory = _FACTORIES.get(key)
    if factory is None:
        raise UnsupportedSourceError(f"Unsupported source type: {key or '<empty>'}")
    adapter = factory()
    _REGISTRY[key] = adapter
    return adapter


__all__ = [
    "BaseSourceAdapter",
    "RateLimitedAdapter",
    "DiscussionItem",
    "DiscussionResolveResult",
    "HackerNewsScraper",
    "get_adapter",
    "register_adapter",
]
