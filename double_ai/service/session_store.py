# double_ai/service/session_store.py

"""
Session Store - 当前用户会话的唯一数据源

功能：
- 内存中的会话列表 + 当前会话
- 远端仓库（ChatRepository）读穿 / 写穿
- 本地缓存（LocalCache）兜底：远端不可用时仍可继续使用
- 远端失败一律降级为 SyncEvent（记录 + 回调），不阻塞本地状态
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Coroutine, Dict, List, Optional, Protocol, Set

from pydantic import ValidationError as PydanticValidationError

from double_ai.config import Config
from double_ai.database.local_cache import LocalCache
from double_ai.errors import PersistenceError, SessionNotFoundError, ValidationError
from double_ai.model.chat import ChatMessage, ChatSession, MessageRole, utcnow

logger = logging.getLogger(__name__)

CACHE_OWNER_KEY = "owner_user_id"
CACHE_SESSIONS_KEY = "chat_sessions"
CACHE_CURRENT_KEY = "current_session_id"

EVENT_DEGRADED = "degraded"
EVENT_PERSISTENCE_ERROR = "persistence_error"


class RemoteSessionRepository(Protocol):
    def list_sessions(self, user_id: str) -> List[ChatSession]: ...

    def create_session(self, user_id: str, title: Optional[str] = None) -> ChatSession: ...

    def delete_session(self, session_id: str) -> bool: ...

    def rename_session(self, session_id: str, title: str) -> bool: ...

    def list_messages(self, session_id: str) -> List[ChatMessage]: ...

    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        message_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[ChatMessage]: ...


@dataclass
class SyncEvent:
    """A remote failure that was downgraded instead of raised"""
    kind: str  # degraded | persistence_error
    operation: str
    error: PersistenceError
    session_id: Optional[str] = None
    at: datetime = field(default_factory=utcnow)


class SessionStore:
    """会话存储：本地优先，远端尽力而为"""

    def __init__(
        self,
        remote: RemoteSessionRepository,
        cache: LocalCache,
        reporter: Optional[Callable[[SyncEvent], None]] = None,
    ):
        self.remote = remote
        self.cache = cache
        self.reporter = reporter

        self.user_id: Optional[str] = None
        self.current_session_id: Optional[str] = None
        self.degraded = False
        self.events: List[SyncEvent] = []

        self._sessions: Dict[str, ChatSession] = {}
        self._aliases: Dict[str, str] = {}  # clear 之后旧 ID → 新 ID
        self._background: Set[asyncio.Task] = set()
        self._last_tick: Optional[datetime] = None

    # =====================================================
    # Read API
    # =====================================================

    @property
    def sessions(self) -> List[ChatSession]:
        """按 updated_at 倒序"""
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    @property
    def current_session(self) -> Optional[ChatSession]:
        if self.current_session_id is None:
            return None
        return self._sessions.get(self.current_session_id)

    def resolve_id(self, session_id: str) -> str:
        while session_id in self._aliases:
            session_id = self._aliases[session_id]
        return session_id

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(self.resolve_id(session_id))

    def get_messages(self, session_id: str) -> List[ChatMessage]:
        """按时间升序返回消息（副本）"""
        session = self.require_session(session_id)
        return sorted(session.messages, key=lambda m: m.timestamp)

    def set_current_session(self, session_id: str) -> ChatSession:
        session = self.require_session(session_id)
        self.current_session_id = session.id
        self._save_cache()
        return session

    # =====================================================
    # Load
    # =====================================================

    async def load_for_user(self, user_id: str) -> List[ChatSession]:
        """
        加载用户的所有会话

        - 远端成功：丢弃其他用户留下的本地缓存，用远端数据填充内存
        - 远端失败：回退到本地缓存（同一用户），否则生成一个空的 "New Chat"
        - 回退会被记录为 degraded 事件，不会被吞掉
        """
        if self.user_id != user_id:
            self._reset()
        self.user_id = user_id
        self.degraded = False

        try:
            remote_sessions = await self._call_remote(self.remote.list_sessions, user_id)
        except Exception as e:
            self.degraded = True
            self._report("list_sessions", e, kind=EVENT_DEGRADED)
            self._load_from_cache(user_id)
            self._save_cache()
            return self.sessions

        self._discard_foreign_cache(user_id)

        loaded: Dict[str, ChatSession] = {}
        for session in remote_sessions:
            try:
                messages = await self._call_remote(self.remote.list_messages, session.id)
            except Exception as e:
                self.degraded = True
                self._report("list_messages", e, session_id=session.id, kind=EVENT_DEGRADED)
                continue
            session.messages = sorted(messages, key=lambda m: m.timestamp)
            loaded[session.id] = session

        self._sessions = loaded
        if self._sessions:
            self.current_session_id = self.sessions[0].id
            self._save_cache()
        else:
            logger.info(f"🆕 No existing chat sessions for user {user_id}, creating one")
            await self.create_session(user_id)

        logger.info(f"📥 Loaded {len(self._sessions)} sessions for user {user_id}")
        return self.sessions

    # =====================================================
    # Session CRUD
    # =====================================================

    async def create_session(self, user_id: str, title: Optional[str] = None) -> ChatSession:
        """远端优先；远端失败时使用本地生成的 ID，立即可用"""
        self._ensure_user(user_id)
        title = (title or "").strip() or Config.chat.default_title

        try:
            session = await self._call_remote(self.remote.create_session, user_id, title)
            session.messages = []
        except Exception as e:
            self._report("create_session", e)
            session = ChatSession(user_id=user_id, title=title)

        self._touch(session)
        self._sessions[session.id] = session
        self.current_session_id = session.id
        self._save_cache()
        return session

    async def delete_session(self, session_id: str) -> None:
        """
        远端删除 → 本地删除（远端失败也照样删除本地）

        删除的是当前会话时，切换到最近更新的会话；没有剩余会话则新建一个。
        """
        session = self.require_session(session_id)
        sid = session.id

        try:
            await self._call_remote(self.remote.delete_session, sid)
        except Exception as e:
            self._report("delete_session", e, session_id=sid)

        del self._sessions[sid]
        self._aliases = {old: new for old, new in self._aliases.items() if new != sid}

        if self.current_session_id == sid:
            self.current_session_id = None
            if self._sessions:
                self.current_session_id = self.sessions[0].id
            else:
                await self.create_session(session.user_id)

        self._save_cache()

    async def clear_session(self, session_id: str) -> ChatSession:
        """
        清空会话 = 删除 + 用相同标题重建

        远端会生成新的会话 ID；旧 ID 作为别名继续指向新会话。
        远端失败时保留原 ID，只清空本地消息；如果远端已经删掉了旧会话，
        下一次写消息时会在远端重建（见 persist_message）。
        """
        session = self.require_session(session_id)
        sid = session.id

        try:
            await self._call_remote(self.remote.delete_session, sid)
            fresh = await self._call_remote(self.remote.create_session, session.user_id, session.title)
            fresh.messages = []
            fresh.title = session.title
        except Exception as e:
            self._report("clear_session", e, session_id=sid)
            fresh = ChatSession(
                id=sid,
                user_id=session.user_id,
                title=session.title,
                created_at=session.created_at,
                updated_at=session.updated_at,
            )

        self._touch(fresh)
        del self._sessions[sid]
        self._sessions[fresh.id] = fresh

        if fresh.id != sid:
            self._point_alias(sid, fresh.id)

        self._save_cache()
        return fresh

    def rename_session(self, session_id: str, title: str) -> ChatSession:
        """本地同步更新；远端更新 fire-and-forget，失败只记录日志"""
        title = (title or "").strip()
        if not title:
            raise ValidationError("Session title must not be empty")

        session = self.require_session(session_id)
        session.title = title
        self._touch(session)
        self._save_cache()

        self.spawn(self._remote_rename(session.id, title))
        return session

    async def _remote_rename(self, session_id: str, title: str) -> None:
        try:
            await self._call_remote(self.remote.rename_session, session_id, title)
        except Exception as e:
            logger.warning(f"⚠️ Title sync failed for session {session_id}: {e}")

    # =====================================================
    # Messages
    # =====================================================

    async def append_message(self, session_id: str, role: str, content: str) -> ChatMessage:
        """先追加到本地，再尝试写远端；远端失败不回滚"""
        if not content or not content.strip():
            raise ValidationError("Message content must not be empty")

        message = self.add_local_message(session_id, role, content)
        await self.persist_message(message.session_id, message)
        return message

    def add_local_message(
        self,
        session_id: str,
        role: str,
        content: str,
        is_loading: bool = False,
    ) -> ChatMessage:
        session = self.require_session(session_id)
        try:
            role = MessageRole(role).value
        except ValueError as e:
            raise ValidationError(f"Unknown message role: {role!r}") from e

        timestamp = self._tick()
        if session.messages and timestamp < session.messages[-1].timestamp:
            timestamp = session.messages[-1].timestamp

        message = ChatMessage(
            session_id=session.id,
            role=role,
            content=content,
            timestamp=timestamp,
            is_loading=is_loading,
        )
        session.messages.append(message)
        self._touch(session)
        self._save_cache()
        return message

    async def persist_message(self, session_id: str, message: ChatMessage) -> bool:
        """
        Best-effort remote write; returns False when the write was downgraded

        远端没有这个会话时（乐观创建 / clear 时重建失败），先在远端重建会话，
        再按顺序补写本地已有的消息。
        """
        sid = self.resolve_id(session_id)
        try:
            stored = await self._remote_append(sid, message)
        except Exception as e:
            self._report("append_message", e, session_id=sid)
            return False

        if stored is None:
            return await self._recreate_remote(sid)
        return True

    async def _remote_append(self, session_id: str, message: ChatMessage) -> Optional[ChatMessage]:
        return await self._call_remote(
            self.remote.append_message,
            session_id,
            message.role,
            message.content,
            message_id=message.id,
            timestamp=message.timestamp,
        )

    async def _recreate_remote(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            self._report(
                "append_message",
                PersistenceError("Session does not exist in the remote store", {"session_id": session_id}),
                session_id=session_id,
            )
            return False

        try:
            fresh = await self._call_remote(self.remote.create_session, session.user_id, session.title)
        except Exception as e:
            self._report("create_session", e, session_id=session_id)
            return False

        if self._sessions.get(session_id) is not session:
            # 重建期间会话已被删除 / 清空
            return False

        self._rekey(session_id, fresh.id)
        logger.info(f"♻️ Session {session_id} re-created remotely as {fresh.id}")

        for message in [m for m in session.messages if not m.is_loading]:
            try:
                stored = await self._remote_append(fresh.id, message)
            except Exception as e:
                self._report("append_message", e, session_id=fresh.id)
                return False
            if stored is None:
                self._report(
                    "append_message",
                    PersistenceError("Session does not exist in the remote store", {"session_id": fresh.id}),
                    session_id=fresh.id,
                )
                return False
        return True

    def finalize_message(self, session_id: str, message_id: str, content: str) -> ChatMessage:
        """占位消息 → 最终回复（只允许一次）"""
        session = self.require_session(session_id)
        message = session.find_message(message_id)
        if message is None or not message.is_loading:
            raise ValidationError("No pending placeholder to finalize", {"message_id": message_id})

        message.content = content
        message.is_loading = False
        self._touch(session)
        self._save_cache()
        return message

    def discard_placeholder(self, session_id: str, message_id: str) -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False

        message = session.find_message(message_id)
        if message is None or not message.is_loading:
            return False

        session.messages.remove(message)
        self._touch(session)
        self._save_cache()
        return True

    # =====================================================
    # Background tasks
    # =====================================================

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Fire-and-forget; tasks are kept referenced until they finish"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # 同步调用方（没有事件循环）：直接执行
            asyncio.run(coro)
            return

        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def has_background_tasks(self) -> bool:
        return bool(self._background)

    async def drain(self) -> None:
        """等待所有后台任务结束（关闭 / 测试时使用）"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =====================================================
    # Helper Methods
    # =====================================================

    async def _call_remote(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(fn, *args, **kwargs)

    def require_session(self, session_id: str) -> ChatSession:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError("Session not found", {"session_id": session_id})
        return session

    def _ensure_user(self, user_id: str) -> None:
        if self.user_id is None:
            self.user_id = user_id
        elif self.user_id != user_id:
            raise ValidationError("Sessions can only be created for the active user")

    def _tick(self) -> datetime:
        """单调递增的时钟"""
        now = utcnow()
        if self._last_tick is not None and now <= self._last_tick:
            now = self._last_tick + timedelta(microseconds=1)
        self._last_tick = now
        return now

    def _touch(self, session: ChatSession) -> None:
        now = self._tick()
        if session.updated_at and now <= session.updated_at:
            now = session.updated_at + timedelta(microseconds=1)
            self._last_tick = now
        session.updated_at = now

    def _report(
        self,
        operation: str,
        error: Exception,
        session_id: Optional[str] = None,
        kind: str = EVENT_PERSISTENCE_ERROR,
    ) -> None:
        if not isinstance(error, PersistenceError):
            error = PersistenceError(
                f"Remote {operation} failed: {error}",
                {"operation": operation, "session_id": session_id},
            )

        event = SyncEvent(kind=kind, operation=operation, error=error, session_id=session_id)
        self.events.append(event)
        logger.warning(f"⚠️ {kind}: {error.message}")

        if self.reporter is not None:
            self.reporter(event)

    def _point_alias(self, old_id: str, new_id: str) -> None:
        """旧 ID（以及指向它的别名）改为指向新 ID"""
        self._aliases = {old: (new_id if new == old_id else new) for old, new in self._aliases.items()}
        self._aliases[old_id] = new_id
        if self.current_session_id == old_id:
            self.current_session_id = new_id

    def _rekey(self, old_id: str, new_id: str) -> None:
        session = self._sessions.pop(old_id)
        session.id = new_id
        for message in session.messages:
            message.session_id = new_id
        self._sessions[new_id] = session
        self._point_alias(old_id, new_id)
        self._save_cache()

    def _reset(self) -> None:
        self.user_id = None
        self.current_session_id = None
        self.degraded = False
        self.events = []
        self._sessions = {}
        self._aliases = {}

    # --------- 本地缓存 --------- #

    def _discard_foreign_cache(self, user_id: str) -> None:
        owner = self.cache.get(CACHE_OWNER_KEY)
        if owner is not None and owner != user_id:
            logger.info("🧹 Local cache belongs to another user, clearing it")
            self.cache.clear()

    def _load_from_cache(self, user_id: str) -> None:
        self._discard_foreign_cache(user_id)

        cached: Dict[str, ChatSession] = {}
        for item in self.cache.get(CACHE_SESSIONS_KEY, []) or []:
            try:
                session = ChatSession.model_validate(item)
            except PydanticValidationError:
                logger.warning("⚠️ Skipping unreadable cached session")
                continue
            if session.user_id != user_id:
                continue
            # 未完成的占位消息不恢复
            session.messages = [m for m in session.messages if not m.is_loading]
            cached[session.id] = session

        if cached:
            self._sessions = cached
            saved_current = self.cache.get(CACHE_CURRENT_KEY)
            if saved_current in self._sessions:
                self.current_session_id = saved_current
            else:
                self.current_session_id = self.sessions[0].id
            logger.info(f"💾 Restored {len(cached)} sessions from local cache")
            return

        session = ChatSession(user_id=user_id, title=Config.chat.default_title)
        self._touch(session)
        self._sessions = {session.id: session}
        self.current_session_id = session.id

    def _save_cache(self) -> None:
        if self.user_id is None:
            return
        try:
            self.cache.update({
                CACHE_OWNER_KEY: self.user_id,
                CACHE_SESSIONS_KEY: [s.model_dump(mode="json") for s in self.sessions],
                CACHE_CURRENT_KEY: self.current_session_id,
            })
        except OSError as e:
            logger.warning(f"⚠️ Could not write local cache: {e}")
