"""
Custom Exceptions
自定义异常类
"""
from typing import Optional


class RadarError(Exception):
    """需求雷达基础异常类"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(RadarError):
    """配置错误"""
    pass


class InvalidUrlError(RadarError):
    """URL 无法解析或协议不受支持"""

    def __init__(self, message: str, url: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.url = url


class AbortError(RadarError):
    """
    取消类错误

    origin:
        "timeout" - 本层超时触发
        "parent"  - 上层取消信号触发
    """

    def __init__(self, message: str, origin: str = "timeout", **kwargs):
        super().__init__(message, kwargs)
        self.origin = origin

    @property
    def is_timeout(self) -> bool:
        return self.origin == "timeout"


class HttpStatusError(RadarError):
    """非 2xx HTTP 响应"""

    def __init__(self, message: str, status: Optional[int] = None, url: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.status = status
        self.url = url


class DiscussionItemFetchError(RadarError):
    """讨论条目主/备接口均获取失败"""

    def __init__(self, message: str, item_id: Optional[int] = None, **kwargs):
        super().__init__(message, kwargs)
        self.item_id = item_id


class UnsupportedSourceError(RadarError):
    """未注册的数据源类型"""
    pass


class LLMError(RadarError):
    """LLM 调用错误"""

    def __init__(self, message: str, provider: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class StorageError(RadarError):
    """存储错误"""
    pass


class UnauthorizedError(RadarError):
    """共享密钥校验失败"""
    pass
