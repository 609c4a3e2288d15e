"""
llm_service.py

提供：
- CompletionProvider 协议（方便测试替换）
- 基于 litellm 的实现：多轮 chat 调用

依赖：
    pip install litellm
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

from litellm import acompletion

from double_ai.config import Config
from double_ai.errors import CompletionError

logger = logging.getLogger(__name__)


class CompletionProvider(Protocol):
    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        api_key: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str: ...


class LiteLLMCompletionProvider:
    """多轮对话，任何异常都映射为 CompletionError"""

    def __init__(self, api_base: Optional[str] = None, timeout: Optional[int] = None):
        self.api_base = api_base or Config.llm.api_base
        self.timeout = timeout or Config.llm.timeout

    async def complete(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        api_key: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        kwargs = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "timeout": self.timeout,
        }
        if api_key:
            kwargs["api_key"] = api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        try:
            resp = await acompletion(**kwargs)
        except Exception as e:
            logger.error(f"❌ Completion call failed ({model}): {type(e).__name__}")
            raise CompletionError("Completion provider call failed", {"model": model}) from e

        return extract_content(resp, model)


def extract_content(resp, model: str = "") -> str:
    """从 completion 响应中取出文本；缺失或为空视为不可用"""
    try:
        content = resp.choices[0].message.content
    except (AttributeError, IndexError, KeyError, TypeError) as e:
        raise CompletionError("Malformed completion response", {"model": model}) from e

    if not content or not content.strip():
        raise CompletionError("Completion provider returned empty content", {"model": model})
    return content
