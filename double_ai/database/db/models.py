from sqlalchemy import (
    Column,
    Text,
    DateTime,
    Boolean,
    Float,
    ForeignKey,
    Integer,
)
from sqlalchemy.orm import declarative_base, relationship

from double_ai.model.chat import utcnow


Base = declarative_base()


class ChatSessionRow(Base):
    """聊天会话"""
    __tablename__ = "chat_sessions"

    id = Column(Text, primary_key=True)  # UUID
    user_id = Column(Text, nullable=False, index=True)
    title = Column(Text, nullable=False, default="New Chat")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, index=True)

    # 关联
    messages = relationship("ChatMessageRow", back_populates="session", cascade="all, delete-orphan")


class ChatMessageRow(Base):
    """聊天消息"""
    __tablename__ = "chat_messages"

    id = Column(Text, primary_key=True)  # UUID
    session_id = Column(Text, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True)

    role = Column(Text, nullable=False)  # system | user | assistant
    content = Column(Text, nullable=False)

    timestamp = Column(DateTime, default=utcnow, index=True)

    # 关联
    session = relationship("ChatSessionRow", back_populates="messages")


class GlobalSettingsRow(Base):
    """全局设置（单行）"""
    __tablename__ = "global_settings"

    id = Column(Integer, primary_key=True)  # 固定为 1
    global_api_key = Column(Text, nullable=True)  # 密文
    default_system_prompt = Column(Text, nullable=False)
    model_version = Column(Text, nullable=False)
    allow_user_api_keys = Column(Boolean, default=False)
    maintenance_mode = Column(Boolean, default=False)

    updated_at = Column(DateTime, default=utcnow)


class UserSettingsRow(Base):
    """用户设置"""
    __tablename__ = "user_settings"

    user_id = Column(Text, primary_key=True)
    theme = Column(Text, default="dark")
    preferred_language = Column(Text, default="en")
    use_personal_api_key = Column(Boolean, default=False)
    personal_api_key = Column(Text, nullable=True)  # 密文
    temperature = Column(Float, nullable=True)
    system_prompt = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=utcnow)
