from .chat import ChatMessage, ChatSession, MessageRole, new_id
from .settings import (
    ENCRYPTED_SENTINEL,
    EffectiveSettings,
    GlobalSettings,
    GlobalSettingsPatch,
    UserSettings,
    UserSettingsPatch,
)

__all__ = [
    "ChatMessage",
    "ChatSession",
    "MessageRole",
    "new_id",
    "ENCRYPTED_SENTINEL",
    "EffectiveSettings",
    "GlobalSettings",
    "GlobalSettingsPatch",
    "UserSettings",
    "UserSettingsPatch",
]
