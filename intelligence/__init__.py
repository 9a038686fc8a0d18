"""
Intelligence Module
智能层 - LLM 抽象 + Need Card 提取
"""
from .llm import (
    BaseLLM,
    OpenAILLM,
    AnthropicLLM,
    DeepSeekLLM,
    get_llm,
)
from .need_card_extractor import NeedCardExtractor, strip_json_wrapper
from .prompts import NEED_CARD_PROMPT_VERSION, build_need_card_prompt, build_repair_prompt

__all__ = [
    "BaseLLM",
    "OpenAILLM",
    "AnthropicLLM",
    "DeepSeekLLM",
    "get_llm",
    "NeedCardExtractor",
    "strip_json_wrapper",
    "NEED_CARD_PROMPT_VERSION",
    "build_need_card_prompt",
    "build_repair_prompt",
]
