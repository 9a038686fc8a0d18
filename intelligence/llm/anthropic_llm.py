"""
Anthropic LLM
Messages API; JSON 模式通过 system 约束 + assistant 预填 "{" 实现
"""
from typing import List, Optional, Tuple
import logging
import inspect

from utils.exceptions import LLMError

from .base import BaseLLM, Message, MessageRole, LLMResponse


logger = logging.getLogger(__name__)


class AnthropicLLM(BaseLLM):
    """Anthropic LLM 实现"""

    def __init__(
        self,
        model: str = "claude-3-5-haiku-latest",
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1200,
        timeout: float = 20.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self._async_client = None

    @property
    def provider(self) -> str:
        return "anthropic"

    def _get_async_client(self):
        """获取异步客户端"""
        if not self.api_key:
            raise LLMError("LLM_ANTHROPIC_API_KEY is not set", provider=self.provider)
        if self._async_client is None:
            from anthropic import AsyncAnthropic
            self._async_client = AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._async_client

    def _convert_messages(self, messages: List[Message]) -> Tuple[Optional[str], List[dict]]:
        """
        转换消息格式 (Anthropic 的 system 提示单独传递)

        Returns:
            (system_prompt, messages_list)
        """
        system_parts = []
        converted = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
            else:
                converted.append({"role": msg.role.value, "content": msg.content})
        return ("\n\n".join(system_parts) or None), converted

    async def acomplete(
        self,
        messages: List[Message],
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        """异步生成响应"""
        client = self._get_async_client()

        system_prompt, converted_messages = self._convert_messages(messages)
        if json_mode:
            # 预填左花括号, 模型从 JSON 对象内部续写
            converted_messages.append({"role": "assistant", "content": "{"})

        request_params = {
            "model": self.model,
            "messages": converted_messages,
            "temperature": kwargs.get("temperature", self.temperature),
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
        }
        if system_prompt:
            request_params["system"] = system_prompt
        if "timeout" in kwargs:
            request_params["timeout"] = kwargs["timeout"]

        response = await client.messages.create(**request_params)

        content = "".join(block.text for block in response.content if block.type == "text")
        if json_mode:
            content = "{" + content
        content = content.strip()
        if not content or content == "{":
            raise LLMError("LLM_EMPTY_RESPONSE", provider=self.provider)

        return LLMResponse(
            content=content,
            model=response.model,
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            },
            finish_reason=response.stop_reason,
        )

    async def aclose(self) -> None:
        client = self._async_client
        if client is None:
            return
        close_fn = getattr(client, "close", None)
        if callable(close_fn):
            maybe_awaitable = close_fn()
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
        self._async_client = None
