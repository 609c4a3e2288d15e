# double_ai/model/chat.py

"""
Chat 数据模型

会话（ChatSession）与消息（ChatMessage）
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatMessage(BaseModel):
    """聊天消息"""
    id: str = Field(default_factory=new_id)
    session_id: str
    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    is_loading: bool = False  # assistant 占位消息，完成后置为 False

    model_config = {
        "use_enum_values": True,
    }


class ChatSession(BaseModel):
    """聊天会话"""
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str = "New Chat"

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    messages: List[ChatMessage] = Field(default_factory=list)

    def find_message(self, message_id: str) -> Optional[ChatMessage]:
        for msg in self.messages:
            if msg.id == message_id:
                return msg
        return None

    def has_user_message(self) -> bool:
        return any(m.role == MessageRole.USER.value for m in self.messages)
