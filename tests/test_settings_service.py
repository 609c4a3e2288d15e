import asyncio

import pytest

from double_ai.errors import PersonalKeyNotAllowedError, ValidationError
from double_ai.model.settings import ENCRYPTED_SENTINEL, GlobalSettings
from double_ai.service.settings_service import SettingsService

from .conftest import FakeSettingsRepository


@pytest.fixture
def repo(cipher):
    return FakeSettingsRepository(GlobalSettings(
        global_api_key=cipher.encrypt("sk-global"),
        allow_user_api_keys=True,
    ))


@pytest.fixture
def service(repo, cipher):
    return SettingsService(repo, cipher)


def test_personal_key_is_encrypted_and_redacted(service, repo, cipher):
    data = asyncio.run(service.update_user_settings("u1", {
        "use_personal_api_key": True,
        "personal_api_key": "sk-mine",
    }))

    assert data["personal_api_key"] == ENCRYPTED_SENTINEL
    assert data["allow_user_api_keys"] is True
    stored = repo.users["u1"].personal_api_key
    assert stored != "sk-mine"
    assert cipher.decrypt(stored) == "sk-mine"


def test_sentinel_keeps_existing_key(service, repo):
    asyncio.run(service.update_user_settings("u1", {"use_personal_api_key": True, "personal_api_key": "sk-mine"}))
    stored = repo.users["u1"].personal_api_key

    asyncio.run(service.update_user_settings("u1", {"personal_api_key": ENCRYPTED_SENTINEL, "theme": "light"}))

    assert repo.users["u1"].personal_api_key == stored
    assert repo.users["u1"].theme == "light"


def test_explicit_null_removes_key(service, repo):
    asyncio.run(service.update_user_settings("u1", {"use_personal_api_key": True, "personal_api_key": "sk-mine"}))
    data = asyncio.run(service.update_user_settings("u1", {"personal_api_key": None}))

    assert data["personal_api_key"] is None
    assert repo.users["u1"].use_personal_api_key is False


def test_enabling_personal_key_rejected_when_not_allowed(service, repo):
    repo.global_settings = repo.global_settings.model_copy(update={"allow_user_api_keys": False})
    with pytest.raises(PersonalKeyNotAllowedError):
        asyncio.run(service.update_user_settings("u1", {"use_personal_api_key": True}))
    assert "u1" not in repo.users


def test_other_updates_drop_personal_key_when_not_allowed(service, repo):
    asyncio.run(service.update_user_settings("u1", {"use_personal_api_key": True, "personal_api_key": "sk-mine"}))
    repo.global_settings = repo.global_settings.model_copy(update={"allow_user_api_keys": False})

    data = asyncio.run(service.update_user_settings("u1", {"theme": "light"}))

    assert data["allow_user_api_keys"] is False
    assert repo.users["u1"].personal_api_key is None
    assert repo.users["u1"].use_personal_api_key is False


@pytest.mark.parametrize("patch", [{"temperature": 3.5}, {"favourite_colour": "blue"}])
def test_malformed_patch_rejected(service, patch):
    with pytest.raises(ValidationError) as exc:
        asyncio.run(service.update_user_settings("u1", patch))
    assert exc.value.details["errors"]


def test_global_settings_redacted_and_sentinel_preserved(service, repo, cipher):
    data = asyncio.run(service.get_global_settings())
    assert data["global_api_key"] == ENCRYPTED_SENTINEL

    asyncio.run(service.update_global_settings({"global_api_key": ENCRYPTED_SENTINEL, "model_version": "gpt-4o-mini"}))
    assert cipher.decrypt(repo.global_settings.global_api_key) == "sk-global"
    assert repo.global_settings.model_version == "gpt-4o-mini"

    asyncio.run(service.update_global_settings({"global_api_key": "sk-rotated"}))
    assert cipher.decrypt(repo.global_settings.global_api_key) == "sk-rotated"
