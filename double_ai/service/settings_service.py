"""
Settings Service - 设置的读写（展示/更新）

- 读取时密钥一律脱敏为 [ENCRYPTED]
- 写入时明文 key 先加密；传回 [ENCRYPTED] 表示保留原密钥
- 管理员未开启 allow_user_api_keys 时，用户不能启用个人 key
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from pydantic import ValidationError as PydanticValidationError

from double_ai.database.settings_repository import SettingsRepository
from double_ai.errors import PersonalKeyNotAllowedError, ValidationError
from double_ai.model.settings import (
    ENCRYPTED_SENTINEL,
    GlobalSettingsPatch,
    UserSettings,
    UserSettingsPatch,
)
from double_ai.service.crypto_service import KeyCipher

logger = logging.getLogger(__name__)


def _parse_patch(model, patch: Dict[str, Any]):
    try:
        return model.model_validate(patch)
    except PydanticValidationError as e:
        raise ValidationError(
            "Malformed settings patch",
            {"errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]},
        ) from e


class SettingsService:
    def __init__(self, repo: SettingsRepository, cipher: KeyCipher):
        self.repo = repo
        self.cipher = cipher

    # =====================================================
    # User settings
    # =====================================================

    async def get_user_settings(self, user_id: str) -> Dict[str, Any]:
        global_settings = await asyncio.to_thread(self.repo.get_global_settings)
        user_settings = await asyncio.to_thread(self.repo.get_user_settings, user_id)
        if user_settings is None:
            user_settings = UserSettings(user_id=user_id)

        data = user_settings.redacted()
        data["allow_user_api_keys"] = global_settings.allow_user_api_keys
        return data

    async def update_user_settings(self, user_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        parsed = _parse_patch(UserSettingsPatch, patch)
        global_settings = await asyncio.to_thread(self.repo.get_global_settings)
        allowed = global_settings.allow_user_api_keys

        if parsed.use_personal_api_key and not allowed:
            raise PersonalKeyNotAllowedError("Personal API keys are not allowed by administrator")

        changes = parsed.model_dump(exclude_unset=True, exclude={"personal_api_key"})
        changes = {k: v for k, v in changes.items() if v is not None or k in ("temperature", "system_prompt")}

        if not allowed:
            # 管理员关闭个人 key 时，不保留任何个人 key
            changes["use_personal_api_key"] = False
            changes["personal_api_key"] = None
        elif parsed.personal_api_key and parsed.personal_api_key != ENCRYPTED_SENTINEL:
            changes["personal_api_key"] = self.cipher.encrypt(parsed.personal_api_key)
        elif "personal_api_key" in parsed.model_fields_set and parsed.personal_api_key is None:
            changes["personal_api_key"] = None
            changes["use_personal_api_key"] = False

        updated = await asyncio.to_thread(self.repo.update_user_settings, user_id, changes)
        logger.info(f"⚙️ Updated settings for user {user_id}: {sorted(changes.keys())}")

        data = updated.redacted()
        data["allow_user_api_keys"] = allowed
        return data

    # =====================================================
    # Global settings (admin only)
    # =====================================================

    async def get_global_settings(self) -> Dict[str, Any]:
        global_settings = await asyncio.to_thread(self.repo.get_global_settings)
        return global_settings.redacted()

    async def update_global_settings(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        parsed = _parse_patch(GlobalSettingsPatch, patch)

        changes = parsed.model_dump(exclude_unset=True, exclude={"global_api_key"})
        changes = {k: v for k, v in changes.items() if v is not None}

        if parsed.global_api_key and parsed.global_api_key != ENCRYPTED_SENTINEL:
            changes["global_api_key"] = self.cipher.encrypt(parsed.global_api_key)

        updated = await asyncio.to_thread(self.repo.update_global_settings, changes)
        logger.info(f"🛠 Updated global settings: {sorted(changes.keys())}")
        return updated.redacted()
