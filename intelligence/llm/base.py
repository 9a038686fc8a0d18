"""
Base LLM
Need Card 生成只需要单轮 system + user 的 JSON 补全
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"


@dataclass
class Message:
    """单条提示消息"""
    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)


@dataclass
class LLMResponse:
    """补全结果; content 已去除首尾空白且非空"""
    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)  # prompt_tokens, completion_tokens, total_tokens
    finish_reason: Optional[str] = None


class BaseLLM(ABC):
    """
    LLM 供应商接口

    子类只实现 acomplete; 重试与超时由调用方 (NeedCardExtractor) 负责,
    SDK 自带的重试一律关闭。
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 1200,
        timeout: float = 20.0,
        **kwargs,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.extra_config = kwargs

    @property
    @abstractmethod
    def provider(self) -> str:
        pass

    @abstractmethod
    async def acomplete(
        self,
        messages: List[Message],
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        """
        Args:
            messages: system + user 消息
            json_mode: 要求模型只输出 JSON 对象
            **kwargs: 覆盖 temperature / max_tokens / timeout

        Raises:
            LLMError: 未配置 API Key 或接口返回空内容
        """
        pass

    async def complete_json(self, prompt: str, system_prompt: str) -> str:
        """单轮 JSON 补全, 返回原始文本 (解析与校验由调用方完成)"""
        messages = [Message.system(system_prompt), Message.user(prompt)]
        response = await self.acomplete(messages, json_mode=True)
        return response.content

    async def aclose(self) -> None:
        """释放底层 HTTP 连接池; 默认无资源"""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model}, provider={self.provider})"
