"""
Need Card Extractor
LLM JSON 输出 -> 严格 schema 校验, 失败时做一次修复调用
"""
from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, List, Optional, Tuple, Union

from pydantic import ValidationError

from core import AnalysisMeta, DemandCard, LLMMeta, NoDemandCard, WarningEntry, parse_need_card
from utils.timeout import CancellationToken, with_timeout

from .llm import BaseLLM
from .prompts import (
    JSON_ONLY_SYSTEM_PROMPT,
    NEED_CARD_PROMPT_VERSION,
    build_need_card_prompt,
    build_repair_prompt,
)


logger = logging.getLogger(__name__)

Card = Union[DemandCard, NoDemandCard]

JSON_PARSE_FAILED = "JSON_PARSE_FAILED"
LLM_CALL_FAILED = "LLM_CALL_FAILED"
DEFAULT_LLM_TIMEOUT = 20.0

_FENCE_START = re.compile(r"^```(?:json)?", re.IGNORECASE)
_FENCE_END = re.compile(r"```$")


def strip_json_wrapper(raw: str) -> str:
    """去掉 ```json ... ``` 代码块包裹"""
    trimmed = str(raw or "").strip()
    if not trimmed.startswith("```"):
        return trimmed
    without_start = _FENCE_START.sub("", trimmed, count=1).strip()
    return _FENCE_END.sub("", without_start).strip()


def _parse_and_validate(raw: str) -> Tuple[Optional[Any], Optional[Card], Optional[str], Optional[str]]:
    """
    Returns:
        (parsed_json, card, schema_error, parse_error)
    """
    try:
        parsed = json.loads(strip_json_wrapper(raw))
    except ValueError as exc:
        return None, None, None, str(exc)
    try:
        return parsed, parse_need_card(parsed), None, None
    except ValidationError as exc:
        return parsed, None, str(exc), None


class NeedCardExtractor:
    """
    Need Card 生成器

    - 首次调用失败 (JSON 解析或 schema 校验) 时, 带上错误与原始输出做一次修复调用
    - 修复仍失败: LOW_CONFIDENCE / JSON_PARSE_FAILED, 返回 None
    - 调用本身失败 (缺 key / HTTP / 超时): LOW_CONFIDENCE / LLM_CALL_FAILED, 返回 None
    """

    def __init__(self, llm: BaseLLM, timeout: float = DEFAULT_LLM_TIMEOUT) -> None:
        self.llm = llm
        self.timeout = timeout

    async def _call(self, prompt: str, token: Optional[CancellationToken], timeout: float) -> str:
        async def _run(_token: CancellationToken) -> str:
            return await self.llm.complete_json(prompt, JSON_ONLY_SYSTEM_PROMPT)

        return await with_timeout(_run, timeout, parent=token)

    def _record_meta(self, meta: AnalysisMeta, start: float, parse_retry: bool, error: Optional[str] = None) -> None:
        meta.llm = LLMMeta(
            model=self.llm.model,
            prompt_version=NEED_CARD_PROMPT_VERSION,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            parse_retry=parse_retry,
            error=error,
        )

    async def generate(
        self,
        source_text: str,
        source_url: str,
        title: Optional[str],
        warnings: List[WarningEntry],
        meta: AnalysisMeta,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> Optional[Card]:
        prompt = build_need_card_prompt(source_text, source_url, title)
        call_timeout = timeout or self.timeout
        start = time.monotonic()
        parse_retry = False

        try:
            raw = await self._call(prompt, token, call_timeout)
            parsed, card, schema_error, parse_error = _parse_and_validate(raw)
            if card is not None:
                self._record_meta(meta, start, parse_retry)
                return card

            parse_retry = True
            original = json.dumps(parsed, ensure_ascii=False) if parsed is not None else raw
            repair_prompt = build_repair_prompt(original, schema_error=schema_error, parse_error=parse_error)
            repaired_raw = await self._call(repair_prompt, token, call_timeout)
            _, repaired, schema_error, parse_error = _parse_and_validate(repaired_raw)
        except Exception as exc:
            if token is not None and token.cancelled:
                raise
            logger.warning("need card generation failed (%s): %s", self.llm.provider, exc)
            warnings.append(WarningEntry(type="LOW_CONFIDENCE", reason=LLM_CALL_FAILED, message=str(exc)))
            self._record_meta(meta, start, parse_retry, error=str(exc))
            return None

        if repaired is None:
            logger.info("need card repair failed: %s", schema_error or parse_error)
            warnings.append(WarningEntry(type="LOW_CONFIDENCE", reason=JSON_PARSE_FAILED))
            self._record_meta(meta, start, parse_retry, error=schema_error or parse_error)
            return None

        self._record_meta(meta, start, parse_retry)
        return repaired
