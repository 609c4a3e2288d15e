import asyncio
import os
from datetime import datetime
from typing import Dict, List, Optional

# 测试不连 Postgres
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECURITY__ENCRYPTION_SECRET", "test-secret")

import pytest

from double_ai.database.local_cache import LocalCache
from double_ai.model.chat import ChatMessage, ChatSession
from double_ai.model.settings import GlobalSettings, UserSettings
from double_ai.service.chat_service import TITLE_PROMPT
from double_ai.service.crypto_service import KeyCipher


# =====================================================
# Fakes
# =====================================================

class FakeRemoteRepository:
    """
    In-memory stand-in for ChatRepository.
    Put an operation name into `fail` to make that call raise.
    """

    def __init__(self):
        self.sessions: Dict[str, ChatSession] = {}
        self.messages: Dict[str, List[ChatMessage]] = {}
        self.fail = set()
        self.calls: List[str] = []

    def _check(self, op: str):
        self.calls.append(op)
        if op in self.fail:
            raise ConnectionError(f"remote {op} unavailable")

    def seed(self, user_id: str, title: str, updated_at: datetime, messages=()) -> ChatSession:
        session = ChatSession(user_id=user_id, title=title, created_at=updated_at, updated_at=updated_at)
        self.sessions[session.id] = session
        self.messages[session.id] = [
            ChatMessage(session_id=session.id, role=role, content=content, timestamp=ts)
            for role, content, ts in messages
        ]
        return session

    def list_sessions(self, user_id: str) -> List[ChatSession]:
        self._check("list_sessions")
        return [
            s.model_copy(deep=True)
            for s in sorted(self.sessions.values(), key=lambda s: s.updated_at, reverse=True)
            if s.user_id == user_id
        ]

    def create_session(self, user_id: str, title: Optional[str] = None) -> ChatSession:
        self._check("create_session")
        session = ChatSession(user_id=user_id, title=title or "New Chat")
        self.sessions[session.id] = session
        self.messages[session.id] = []
        return session.model_copy(deep=True)

    def delete_session(self, session_id: str) -> bool:
        self._check("delete_session")
        self.messages.pop(session_id, None)
        return self.sessions.pop(session_id, None) is not None

    def rename_session(self, session_id: str, title: str) -> bool:
        self._check("rename_session")
        if session_id not in self.sessions:
            return False
        self.sessions[session_id].title = title
        return True

    def list_messages(self, session_id: str) -> List[ChatMessage]:
        self._check("list_messages")
        return [m.model_copy() for m in self.messages.get(session_id, [])]

    def append_message(self, session_id, role, content, message_id=None, timestamp=None):
        self._check("append_message")
        if session_id not in self.sessions:
            return None
        kwargs = {"session_id": session_id, "role": role, "content": content}
        if message_id:
            kwargs["id"] = message_id
        if timestamp:
            kwargs["timestamp"] = timestamp
        message = ChatMessage(**kwargs)
        self.messages[session_id].append(message)
        return message


class FakeSettingsRepository:
    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()
        self.users: Dict[str, UserSettings] = {}

    def get_global_settings(self) -> GlobalSettings:
        return self.global_settings

    def update_global_settings(self, patch) -> GlobalSettings:
        self.global_settings = self.global_settings.model_copy(update=patch)
        return self.global_settings

    def get_user_settings(self, user_id: str) -> Optional[UserSettings]:
        return self.users.get(user_id)

    def update_user_settings(self, user_id: str, patch) -> UserSettings:
        current = self.users.get(user_id) or UserSettings(user_id=user_id)
        self.users[user_id] = current.model_copy(update=patch)
        return self.users[user_id]


class FakeProvider:
    """
    Completion provider double.

    - reply / title: canned answers for chat and title calls
    - error / title_error: raised instead of answering
    - gate: when set to an asyncio.Event, chat calls block until it is set
    """

    def __init__(self, reply: str = "Hi there!", title: str = '"Friendly Greeting Exchange"'):
        self.reply = reply
        self.title = title
        self.error: Optional[Exception] = None
        self.title_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None
        self.calls: List[dict] = []

    @staticmethod
    def is_title_call(messages) -> bool:
        return messages[0]["content"] == TITLE_PROMPT

    async def complete(self, messages, model, temperature, api_key=None, max_tokens=None):
        self.calls.append({
            "messages": messages,
            "model": model,
            "temperature": temperature,
            "api_key": api_key,
            "max_tokens": max_tokens,
        })
        if self.is_title_call(messages):
            if self.title_error:
                raise self.title_error
            return self.title

        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return self.reply

    def chat_calls(self):
        return [c for c in self.calls if not self.is_title_call(c["messages"])]


# =====================================================
# Fixtures
# =====================================================

@pytest.fixture
def cipher():
    return KeyCipher("test-secret")


@pytest.fixture
def cache(tmp_path):
    return LocalCache(str(tmp_path / "cache" / "u1.json"))


@pytest.fixture
def remote():
    return FakeRemoteRepository()


@pytest.fixture
def settings_repo(cipher):
    return FakeSettingsRepository(GlobalSettings(global_api_key=cipher.encrypt("sk-global")))


@pytest.fixture
def provider():
    return FakeProvider()
