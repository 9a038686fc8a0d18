"""
DeepSeek LLM
支持 DeepSeek-V3 (deepseek-chat), 使用 OpenAI 兼容接口
"""
from typing import Optional

from .openai_llm import OpenAILLM


class DeepSeekLLM(OpenAILLM):
    """
    DeepSeek LLM 实现

    deepseek-chat 支持 json_object 输出格式; deepseek-reasoner 不支持, 不在此使用
    """

    DEFAULT_BASE_URL = "https://api.deepseek.com"
    API_KEY_ENV = "LLM_DEEPSEEK_API_KEY"

    def __init__(
        self,
        model: str = "deepseek-chat",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 1200,
        timeout: float = 20.0,
        **kwargs,
    ):
        super().__init__(
            model=model,
            api_key=api_key,
            base_url=base_url,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            **kwargs,
        )

    @property
    def provider(self) -> str:
        return "deepseek"
