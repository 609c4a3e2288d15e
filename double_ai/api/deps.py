from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException

from double_ai.config import Config
from double_ai.database.chat_repository import ChatRepository
from double_ai.database.local_cache import LocalCache
from double_ai.database.settings_repository import SettingsRepository
from double_ai.errors import ConfigurationError
from double_ai.service.chat_service import ChatService
from double_ai.service.crypto_service import KeyCipher, get_cipher
from double_ai.service.llm_service import CompletionProvider, LiteLLMCompletionProvider
from double_ai.service.session_store import SessionStore
from double_ai.service.settings_resolver import SettingsResolver
from double_ai.service.settings_service import SettingsService

logger = logging.getLogger(__name__)


class ChatWorkspace:
    """
    Process-wide wiring: one remote adapter, one resolver,
    one SessionStore + ChatService per user.

    每个用户首次访问时加锁加载，并发的首次请求拿到的是同一个 store / service。
    打开的用户数超过 max_open_users 时，淘汰最久未访问且空闲的用户。
    """

    def __init__(
        self,
        chat_repo: ChatRepository,
        settings_repo: SettingsRepository,
        cipher: KeyCipher,
        provider: CompletionProvider,
        cache_dir: Optional[str] = None,
        max_open_users: Optional[int] = None,
    ):
        self.chat_repo = chat_repo
        self.settings_repo = settings_repo
        self.cipher = cipher
        self.provider = provider
        self.cache_dir = Path(cache_dir or Config.cache.local_cache_dir)
        self.max_open_users = max_open_users or Config.cache.max_open_users

        self.resolver = SettingsResolver(settings_repo, cipher)
        self.settings_service = SettingsService(settings_repo, cipher)

        self._open: "OrderedDict[str, ChatService]" = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = {}

    async def chat_service_for(self, user_id: str) -> ChatService:
        service = self._open.get(user_id)
        if service is not None:
            self._open.move_to_end(user_id)
            return service

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            service = self._open.get(user_id)
            if service is None:
                cache = LocalCache(str(self.cache_dir / f"{user_id}.json"))
                store = SessionStore(self.chat_repo, cache)
                await store.load_for_user(user_id)
                service = ChatService(store, self.resolver, self.provider)
                self._open[user_id] = service
                self._evict(keep=user_id)
            return service

    async def store_for(self, user_id: str) -> SessionStore:
        service = await self.chat_service_for(user_id)
        return service.store

    def _evict(self, keep: str) -> None:
        for user_id in list(self._open.keys()):
            if len(self._open) <= self.max_open_users:
                return
            if user_id == keep:
                continue
            service = self._open[user_id]
            if service.has_in_flight() or service.store.has_background_tasks():
                continue
            del self._open[user_id]
            lock = self._locks.get(user_id)
            if lock is not None and not lock.locked():
                del self._locks[user_id]
            logger.info(f"🧹 Closed idle chat workspace for user {user_id}")

    async def drain(self) -> None:
        for service in list(self._open.values()):
            await service.store.drain()


_workspace: Optional[ChatWorkspace] = None


def get_workspace() -> ChatWorkspace:
    """Return the process-wide workspace (created lazily)."""
    global _workspace
    if _workspace is None:
        try:
            cipher = get_cipher()
        except ConfigurationError as e:
            logger.error(f"❌ {e.message}")
            raise HTTPException(status_code=503, detail=e.message)
        _workspace = ChatWorkspace(
            chat_repo=ChatRepository(),
            settings_repo=SettingsRepository(),
            cipher=cipher,
            provider=LiteLLMCompletionProvider(),
        )
    return _workspace


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    """管理员接口：必须携带与配置一致的 X-Admin-Token"""
    expected = Config.security.admin_token
    if not expected or x_admin_token != expected:
        raise HTTPException(status_code=403, detail="Unauthorized")


async def get_store(user_id: str, workspace: ChatWorkspace = Depends(get_workspace)) -> SessionStore:
    return await workspace.store_for(user_id)


async def get_chat_service(user_id: str, workspace: ChatWorkspace = Depends(get_workspace)) -> ChatService:
    return await workspace.chat_service_for(user_id)


async def shutdown_workspace() -> None:
    if _workspace is not None:
        await _workspace.drain()
