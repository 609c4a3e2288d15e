from .chat import (
    ChatHistoryResponse,
    ChatMessage,
    ChatMessageRequest,
    ChatMessageResponse,
    ChatSessionInfo,
    CreateSessionRequest,
    RenameSessionRequest,
    SessionMessagesResponse,
)

__all__ = [
    "ChatHistoryResponse",
    "ChatMessage",
    "ChatMessageRequest",
    "ChatMessageResponse",
    "ChatSessionInfo",
    "CreateSessionRequest",
    "RenameSessionRequest",
    "SessionMessagesResponse",
]
