from .chat_service import ChatService, ExchangeState
from .crypto_service import KeyCipher
from .llm_service import CompletionProvider, LiteLLMCompletionProvider
from .session_store import SessionStore, SyncEvent
from .settings_resolver import SettingsResolver
from .settings_service import SettingsService

__all__ = [
    "ChatService",
    "ExchangeState",
    "KeyCipher",
    "CompletionProvider",
    "LiteLLMCompletionProvider",
    "SessionStore",
    "SyncEvent",
    "SettingsResolver",
    "SettingsService",
]
