import asyncio

import pytest

from double_ai.config import Config
from double_ai.errors import ConfigurationError
from double_ai.model.settings import GlobalSettings, UserSettings
from double_ai.service.settings_resolver import SettingsResolver

from .conftest import FakeSettingsRepository


def resolve(repo, cipher, user_id="u1"):
    return asyncio.run(SettingsResolver(repo, cipher).resolve_effective_settings(user_id))


def make_repo(cipher, allow=True, use_personal=True, personal_key="sk-personal", global_key="sk-global"):
    repo = FakeSettingsRepository(GlobalSettings(
        global_api_key=cipher.encrypt(global_key) if global_key else None,
        allow_user_api_keys=allow,
        default_system_prompt="global prompt",
        model_version="gpt-4o-mini",
    ))
    repo.users["u1"] = UserSettings(
        user_id="u1",
        use_personal_api_key=use_personal,
        personal_api_key=cipher.encrypt(personal_key) if personal_key else None,
    )
    return repo


def test_personal_key_used_when_allowed_enabled_and_stored(cipher):
    effective = resolve(make_repo(cipher), cipher)
    assert effective.api_key.get_secret_value() == "sk-personal"
    assert effective.uses_personal_key is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"allow": False},
        {"use_personal": False},
        {"personal_key": None},
    ],
)
def test_global_key_used_otherwise(cipher, overrides):
    effective = resolve(make_repo(cipher, **overrides), cipher)
    assert effective.api_key.get_secret_value() == "sk-global"
    assert effective.uses_personal_key is False


def test_admin_toggle_off_ignores_stored_personal_key(cipher):
    # 用户开启了个人 key，但管理员关闭了开关
    repo = make_repo(cipher, allow=False, use_personal=True)
    assert resolve(repo, cipher).api_key.get_secret_value() == "sk-global"


def test_no_key_anywhere_raises(cipher):
    repo = make_repo(cipher, allow=False, global_key=None)
    with pytest.raises(ConfigurationError) as exc:
        resolve(repo, cipher)
    assert exc.value.details["reason"] == "missing_api_key"


def test_user_without_settings_row_gets_global_defaults(cipher):
    repo = make_repo(cipher)
    effective = resolve(repo, cipher, user_id="someone-else")
    assert effective.api_key.get_secret_value() == "sk-global"
    assert effective.system_prompt == "global prompt"
    assert effective.temperature == Config.llm.temperature
    assert effective.model == "gpt-4o-mini"


def test_user_prompt_and_temperature_take_precedence(cipher):
    repo = make_repo(cipher)
    repo.users["u1"] = repo.users["u1"].model_copy(update={"system_prompt": "be brief", "temperature": 0.2})
    effective = resolve(repo, cipher)
    assert effective.system_prompt == "be brief"
    assert effective.temperature == 0.2


def test_zero_temperature_is_respected(cipher):
    repo = make_repo(cipher)
    repo.users["u1"] = repo.users["u1"].model_copy(update={"temperature": 0.0})
    assert resolve(repo, cipher).temperature == 0.0


def test_maintenance_mode_blocks_completion(cipher):
    repo = make_repo(cipher)
    repo.global_settings = repo.global_settings.model_copy(update={"maintenance_mode": True})
    with pytest.raises(ConfigurationError) as exc:
        resolve(repo, cipher)
    assert exc.value.details["reason"] == "maintenance_mode"


def test_undecryptable_key_is_a_configuration_error(cipher):
    repo = make_repo(cipher, allow=False)
    repo.global_settings = repo.global_settings.model_copy(update={"global_api_key": "garbage"})
    with pytest.raises(ConfigurationError):
        resolve(repo, cipher)


def test_key_is_not_exposed_in_repr(cipher):
    effective = resolve(make_repo(cipher), cipher)
    assert "sk-personal" not in repr(effective)
    assert "sk-personal" not in str(effective.model_dump())
