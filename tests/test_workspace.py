import asyncio

import pytest
from fastapi import HTTPException

from double_ai.api import deps
from double_ai.api.deps import ChatWorkspace
from double_ai.config import Config
from double_ai.errors import ConfigurationError
from double_ai.service.crypto_service import get_cipher

from .conftest import FakeProvider


def make_workspace(tmp_path, remote, settings_repo, cipher, **kwargs):
    return ChatWorkspace(
        chat_repo=remote,
        settings_repo=settings_repo,
        cipher=cipher,
        provider=FakeProvider(),
        cache_dir=str(tmp_path / "cache"),
        **kwargs,
    )


def test_concurrent_first_access_shares_one_store(tmp_path, remote, settings_repo, cipher):
    workspace = make_workspace(tmp_path, remote, settings_repo, cipher)

    async def scenario():
        return await asyncio.gather(
            workspace.store_for("u1"),
            workspace.store_for("u1"),
            workspace.chat_service_for("u1"),
        )

    first, second, service = asyncio.run(scenario())

    assert first is second
    assert service.store is first
    assert len([s for s in remote.sessions.values() if s.user_id == "u1"]) == 1
    assert remote.calls.count("list_sessions") == 1


def test_idle_users_are_evicted(tmp_path, remote, settings_repo, cipher):
    workspace = make_workspace(tmp_path, remote, settings_repo, cipher, max_open_users=1)

    async def scenario():
        first = await workspace.store_for("u1")
        await workspace.store_for("u2")
        again = await workspace.store_for("u1")
        return first, again

    first, again = asyncio.run(scenario())
    assert first is not again
    assert list(workspace._open.keys()) == ["u1"]


def test_busy_users_are_not_evicted(tmp_path, remote, settings_repo, cipher):
    workspace = make_workspace(tmp_path, remote, settings_repo, cipher, max_open_users=1)

    async def scenario():
        service = await workspace.chat_service_for("u1")
        service._in_flight.add(service.store.current_session_id)
        await workspace.store_for("u2")
        return service, await workspace.chat_service_for("u1")

    service, again = asyncio.run(scenario())
    assert again is service


def test_missing_encryption_secret(monkeypatch):
    monkeypatch.setattr(Config.security, "encryption_secret", None)
    monkeypatch.setattr(deps, "_workspace", None)

    with pytest.raises(ConfigurationError):
        get_cipher()
    with pytest.raises(HTTPException) as exc:
        deps.get_workspace()
    assert exc.value.status_code == 503
