# double_ai/service/chat_service.py

"""
Chat Service - 一次发送消息的完整流程

IDLE → SUBMITTING → AWAITING_COMPLETION → FINALIZING → IDLE
                                      ↘ FAILED → IDLE

- 同一会话同时只允许一个请求（第二个直接拒绝，不排队）
- 先追加用户消息 + assistant 占位消息，再调用模型
- 失败时删除占位消息，用户消息保留
- 第一个问题之后自动生成会话标题（后台任务，只尝试一次）
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Dict, List, Optional, Set

from double_ai.config import Config
from double_ai.errors import CompletionError, ConfigurationError
from double_ai.model.chat import ChatMessage, MessageRole
from double_ai.service.llm_service import CompletionProvider
from double_ai.service.session_store import SessionStore
from double_ai.service.settings_resolver import SettingsResolver

logger = logging.getLogger(__name__)

TITLE_PROMPT = (
    "Generate a short, concise title (4-6 words) for a conversation that starts "
    "with this message. Just return the title with no quotes or explanation."
)


class ExchangeState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    AWAITING_COMPLETION = "awaiting_completion"
    FINALIZING = "finalizing"
    FAILED = "failed"


def clean_title(raw: str, max_words: Optional[int] = None) -> str:
    """去掉引号 / 前缀 / 多余空白，最多保留 max_words 个词"""
    max_words = max_words or Config.chat.title_max_words
    text = raw.strip().splitlines()[0] if raw.strip() else ""
    text = re.sub(r"^(title\s*:\s*)", "", text, flags=re.IGNORECASE)
    text = text.strip().strip("\"'`“”‘’").strip()
    text = text.rstrip(".")
    words = text.split()
    return " ".join(words[:max_words])


class ChatService:
    """会话聊天服务"""

    def __init__(
        self,
        store: SessionStore,
        resolver: SettingsResolver,
        provider: CompletionProvider,
    ):
        self.store = store
        self.resolver = resolver
        self.provider = provider

        self._in_flight: Set[str] = set()
        self._states: Dict[str, ExchangeState] = {}

    # 会话在远端重建 / clear 之后 ID 会变，锁和状态都按解析后的 ID 比较

    def state_of(self, session_id: str) -> ExchangeState:
        sid = self.store.resolve_id(session_id)
        for key, state in self._states.items():
            if self.store.resolve_id(key) == sid:
                return state
        return ExchangeState.IDLE

    def is_busy(self, session_id: str) -> bool:
        sid = self.store.resolve_id(session_id)
        return any(self.store.resolve_id(key) == sid for key in self._in_flight)

    def has_in_flight(self) -> bool:
        return bool(self._in_flight)

    async def send_message(self, session_id: str, content: str) -> Optional[ChatMessage]:
        """
        发送问题并获取回复

        Args:
            session_id: 会话 ID
            content: 用户问题

        Returns:
            最终的 assistant 消息；内容为空或该会话已有请求在处理时返回 None

        Raises:
            ConfigurationError: 没有可用的 API key / 维护模式
            CompletionError: 模型调用失败
            SessionNotFoundError: 会话不存在
        """
        if not content or not content.strip():
            logger.info("Ignoring empty message")
            return None

        session = self.store.require_session(session_id)
        sid = session.id
        if self.is_busy(sid):
            logger.info(f"⏳ Session {sid} already has a message in flight, rejecting")
            return None

        self._in_flight.add(sid)
        self._states[sid] = ExchangeState.SUBMITTING
        placeholder: Optional[ChatMessage] = None
        try:
            is_first_exchange = not session.has_user_message()
            history = [
                {"role": m.role, "content": m.content}
                for m in self.store.get_messages(sid)
                if not m.is_loading and m.role != MessageRole.SYSTEM.value
            ]

            user_message = self.store.add_local_message(sid, MessageRole.USER.value, content)
            placeholder = self.store.add_local_message(sid, MessageRole.ASSISTANT.value, "", is_loading=True)
            await self.store.persist_message(sid, user_message)

            if is_first_exchange:
                self.store.spawn(self._generate_title(sid, content))

            self._states[sid] = ExchangeState.AWAITING_COMPLETION
            settings = await self.resolver.resolve_effective_settings(session.user_id)

            messages: List[Dict[str, str]] = [{"role": "system", "content": settings.system_prompt}]
            messages.extend(history)
            messages.append({"role": "user", "content": content})

            try:
                answer = await self.provider.complete(
                    messages,
                    model=settings.model,
                    temperature=settings.temperature,
                    api_key=settings.api_key.get_secret_value(),
                )
            except CompletionError:
                raise
            except Exception as e:
                raise CompletionError("Completion provider call failed", {"model": settings.model}) from e

            if not answer or not answer.strip():
                raise CompletionError("Completion provider returned empty content", {"model": settings.model})

            self._states[sid] = ExchangeState.FINALIZING
            assistant_message = self.store.finalize_message(sid, placeholder.id, answer)
            placeholder = None
            await self.store.persist_message(sid, assistant_message)
            return assistant_message

        except (ConfigurationError, CompletionError) as e:
            self._states[sid] = ExchangeState.FAILED
            logger.error(f"❌ Message exchange failed for session {sid}: {e.message}")
            raise
        finally:
            if placeholder is not None:
                self.store.discard_placeholder(sid, placeholder.id)
            self._in_flight.discard(sid)
            self._states.pop(sid, None)

    # =====================================================
    # Title Generation
    # =====================================================

    async def _generate_title(self, session_id: str, first_message: str) -> Optional[str]:
        """
        根据第一个用户问题生成标题（只尝试一次）

        Returns:
            生成的标题；失败返回 None，保留默认标题
        """
        try:
            session = self.store.get_session(session_id)
            if session is None:
                return None

            settings = await self.resolver.resolve_effective_settings(session.user_id)
            raw = await self.provider.complete(
                [
                    {"role": "system", "content": TITLE_PROMPT},
                    {"role": "user", "content": first_message},
                ],
                model=Config.llm.title_model,
                temperature=0.7,
                api_key=settings.api_key.get_secret_value(),
                max_tokens=Config.llm.title_max_tokens,
            )
            title = clean_title(raw or "")
            if not title:
                return None

            if self.store.get_session(session_id) is None:
                return None
            self.store.rename_session(session_id, title)
            logger.info(f"🏷 Session {self.store.resolve_id(session_id)} titled: {title}")
            return title
        except Exception as e:
            logger.warning(f"⚠️ Title generation failed for session {session_id}: {e}")
            return None
