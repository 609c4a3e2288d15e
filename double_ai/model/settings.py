# double_ai/model/settings.py

"""
Settings 数据模型

- GlobalSettings: 管理员级别，整个部署唯一一份
- UserSettings:   每个用户一份，可覆盖 prompt / temperature，可选个人 API key
- EffectiveSettings: 单次调用实际使用的配置（派生，不落库）

API key 字段里存的都是密文。
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from double_ai.config import DEFAULT_SYSTEM_PROMPT

ENCRYPTED_SENTINEL = "[ENCRYPTED]"


class GlobalSettings(BaseModel):
    global_api_key: Optional[str] = None  # ciphertext
    default_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    model_version: str = "gpt-4o"
    allow_user_api_keys: bool = False
    maintenance_mode: bool = False
    updated_at: Optional[datetime] = None

    def redacted(self) -> dict:
        """展示用：密钥替换为 [ENCRYPTED]"""
        data = self.model_dump(mode="json")
        data["global_api_key"] = ENCRYPTED_SENTINEL if self.global_api_key else None
        return data


class UserSettings(BaseModel):
    user_id: str
    theme: str = "dark"
    preferred_language: str = "en"
    use_personal_api_key: bool = False
    personal_api_key: Optional[str] = None  # ciphertext
    temperature: Optional[float] = None
    system_prompt: Optional[str] = None
    updated_at: Optional[datetime] = None

    def redacted(self) -> dict:
        data = self.model_dump(mode="json")
        data["personal_api_key"] = ENCRYPTED_SENTINEL if self.personal_api_key else None
        return data


class EffectiveSettings(BaseModel):
    """Resolved configuration for one completion call"""
    api_key: SecretStr
    model: str
    temperature: float
    system_prompt: str
    uses_personal_key: bool = False

    model_config = ConfigDict(frozen=True)


# =====================================================
# Patches (validated input for settings updates)
# =====================================================

class UserSettingsPatch(BaseModel):
    theme: Optional[str] = None
    preferred_language: Optional[str] = None
    use_personal_api_key: Optional[bool] = None
    personal_api_key: Optional[str] = None  # plaintext or [ENCRYPTED]
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    system_prompt: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class GlobalSettingsPatch(BaseModel):
    global_api_key: Optional[str] = None  # plaintext or [ENCRYPTED]
    default_system_prompt: Optional[str] = None
    model_version: Optional[str] = None
    allow_user_api_keys: Optional[bool] = None
    maintenance_mode: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")
