# double_ai/service/settings_resolver.py

"""
Settings Resolver - 计算单次调用实际使用的配置

优先级：
- API key:      个人 key（管理员允许 + 用户开启 + 已保存）> 全局 key；都没有 → ConfigurationError
- system prompt: 用户 prompt > 全局默认 prompt > 内置默认
- temperature:  用户设置 > 配置默认值
- model:        全局 model_version > 配置默认模型
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from pydantic import SecretStr

from double_ai.config import Config
from double_ai.database.settings_repository import SettingsRepository
from double_ai.errors import ConfigurationError
from double_ai.model.settings import EffectiveSettings, GlobalSettings, UserSettings
from double_ai.service.crypto_service import InvalidToken, KeyCipher

logger = logging.getLogger(__name__)


class SettingsResolver:
    """Single injected instance; reads the two settings tiers and never writes."""

    def __init__(self, repo: SettingsRepository, cipher: KeyCipher):
        self.repo = repo
        self.cipher = cipher

    async def resolve_effective_settings(self, user_id: str) -> EffectiveSettings:
        global_settings = await asyncio.to_thread(self.repo.get_global_settings)
        if global_settings.maintenance_mode:
            raise ConfigurationError(
                "The service is in maintenance mode. Please try again later.",
                {"reason": "maintenance_mode"},
            )

        user_settings = await asyncio.to_thread(self.repo.get_user_settings, user_id)

        api_key, uses_personal = self._resolve_api_key(global_settings, user_settings)

        system_prompt = (
            (user_settings.system_prompt if user_settings else None)
            or global_settings.default_system_prompt
            or Config.chat.default_system_prompt
        )
        temperature = Config.llm.temperature
        if user_settings and user_settings.temperature is not None:
            temperature = user_settings.temperature

        return EffectiveSettings(
            api_key=SecretStr(api_key),
            model=global_settings.model_version or Config.llm.default_model,
            temperature=temperature,
            system_prompt=system_prompt,
            uses_personal_key=uses_personal,
        )

    def _resolve_api_key(
        self,
        global_settings: GlobalSettings,
        user_settings: Optional[UserSettings],
    ) -> Tuple[str, bool]:
        use_personal = bool(
            global_settings.allow_user_api_keys
            and user_settings is not None
            and user_settings.use_personal_api_key
            and user_settings.personal_api_key
        )

        if use_personal:
            key = self._decrypt(user_settings.personal_api_key, "personal")
            if key:
                return key, True

        key = self._decrypt(global_settings.global_api_key, "global")
        if not key:
            raise ConfigurationError(
                "No API key configured. Please contact an administrator.",
                {"reason": "missing_api_key"},
            )
        return key, False

    def _decrypt(self, cipher_text: Optional[str], source: str) -> str:
        if not cipher_text:
            return ""
        try:
            return self.cipher.decrypt(cipher_text)
        except (InvalidToken, ValueError) as e:
            logger.error(f"❌ Stored {source} API key could not be decrypted")
            raise ConfigurationError(
                f"The stored {source} API key is unreadable. Please contact an administrator.",
                {"reason": "undecryptable_api_key", "source": source},
            ) from e
