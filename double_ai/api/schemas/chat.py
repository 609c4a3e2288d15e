from __future__ import annotations

from typing import List, Optional
from pydantic import BaseModel, Field

from double_ai.model.chat import ChatMessage as ChatMessageModel, ChatSession


class CreateSessionRequest(BaseModel):
    title: Optional[str] = None


class RenameSessionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class ChatMessageRequest(BaseModel):
    message: str = Field(..., max_length=20000)


class ChatMessage(BaseModel):
    id: str
    role: str  # user | assistant | system
    content: str
    timestamp: str
    is_loading: bool = False

    @classmethod
    def from_model(cls, msg: ChatMessageModel) -> "ChatMessage":
        return cls(
            id=msg.id,
            role=msg.role,
            content=msg.content,
            timestamp=msg.timestamp.isoformat(),
            is_loading=msg.is_loading,
        )


class ChatSessionInfo(BaseModel):
    id: str
    title: str
    created_at: str
    updated_at: str
    message_count: int = 0

    @classmethod
    def from_model(cls, session: ChatSession) -> "ChatSessionInfo":
        return cls(
            id=session.id,
            title=session.title,
            created_at=session.created_at.isoformat(),
            updated_at=session.updated_at.isoformat(),
            message_count=len(session.messages),
        )


class ChatHistoryResponse(BaseModel):
    sessions: List[ChatSessionInfo]
    current_session_id: Optional[str] = None
    degraded: bool = False


class SessionMessagesResponse(BaseModel):
    session_id: str
    title: str
    messages: List[ChatMessage]


class ChatMessageResponse(BaseModel):
    session_id: str
    reply: ChatMessage
    warnings: List[str] = Field(default_factory=list)  # 非阻塞的同步失败提示
