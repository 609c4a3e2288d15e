from .chat_repository import ChatRepository
from .settings_repository import SettingsRepository
from .local_cache import LocalCache

__all__ = [
    "ChatRepository",
    "SettingsRepository",
    "LocalCache",
]
