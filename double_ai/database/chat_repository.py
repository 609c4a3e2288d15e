# double_ai/database/chat_repository.py

"""
Chat Repository - 远端会话仓库

功能：
- 列出/创建/删除/重命名会话
- 列出/追加消息
- 删除会话时级联删除消息

所有方法都是同步的网络/数据库调用，可能失败；
调用方（SessionStore）负责降级处理。
"""

from __future__ import annotations

import uuid
from typing import List, Optional
from datetime import datetime

from sqlalchemy import select, desc
from sqlalchemy.orm import sessionmaker

from double_ai.config import Config
from double_ai.model.chat import ChatSession, ChatMessage, utcnow
from double_ai.database.db.session import SessionLocal
from double_ai.database.db.models import ChatSessionRow, ChatMessageRow


class ChatRepository:
    """聊天数据仓库"""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    # =====================================================
    # Session CRUD
    # =====================================================

    def list_sessions(self, user_id: str) -> List[ChatSession]:
        """获取用户的所有会话（不包含消息，按 updated_at 倒序）"""
        with self._session_factory() as db:
            rows = db.execute(
                select(ChatSessionRow)
                .where(ChatSessionRow.user_id == user_id)
                .order_by(desc(ChatSessionRow.updated_at))
            ).scalars().all()

            return [self._row_to_session(row) for row in rows]

    def create_session(self, user_id: str, title: Optional[str] = None) -> ChatSession:
        """
        创建新的聊天会话

        Args:
            user_id: 会话所属用户
            title: 会话标题（默认 "New Chat"，首次提问后自动生成）

        Returns:
            新创建的会话
        """
        session_id = str(uuid.uuid4())
        now = utcnow()

        with self._session_factory() as db:
            row = ChatSessionRow(
                id=session_id,
                user_id=user_id,
                title=title or Config.chat.default_title,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.commit()
            db.refresh(row)

            return self._row_to_session(row)

    def delete_session(self, session_id: str) -> bool:
        """删除会话（级联删除所有消息）"""
        with self._session_factory() as db:
            row = db.get(ChatSessionRow, session_id)
            if not row:
                return False

            db.delete(row)
            db.commit()
            return True

    def rename_session(self, session_id: str, title: str) -> bool:
        """更新会话标题"""
        with self._session_factory() as db:
            row = db.get(ChatSessionRow, session_id)
            if not row:
                return False

            row.title = title
            row.updated_at = utcnow()
            db.commit()
            return True

    # =====================================================
    # Message CRUD
    # =====================================================

    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        message_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[ChatMessage]:
        """
        添加消息到会话

        Args:
            session_id: 会话 ID
            role: 消息角色 (user | assistant | system)
            content: 消息内容
            message_id: 沿用本地生成的消息 ID（可选）
            timestamp: 沿用本地时间戳（可选）

        Returns:
            新添加的消息，如果会话不存在返回 None
        """
        with self._session_factory() as db:
            session_row = db.get(ChatSessionRow, session_id)
            if not session_row:
                return None

            now = timestamp or utcnow()
            msg_row = ChatMessageRow(
                id=message_id or str(uuid.uuid4()),
                session_id=session_id,
                role=role,
                content=content,
                timestamp=now,
            )
            db.add(msg_row)

            # 更新会话时间
            session_row.updated_at = max(now, session_row.updated_at or now)

            db.commit()
            db.refresh(msg_row)

            return self._row_to_message(msg_row)

    def list_messages(self, session_id: str) -> List[ChatMessage]:
        """获取会话的所有消息（按时间升序）"""
        with self._session_factory() as db:
            rows = db.execute(
                select(ChatMessageRow)
                .where(ChatMessageRow.session_id == session_id)
                .order_by(ChatMessageRow.timestamp)
            ).scalars().all()

            return [self._row_to_message(row) for row in rows]

    # =====================================================
    # Helper Methods
    # =====================================================

    def _row_to_message(self, row: ChatMessageRow) -> ChatMessage:
        return ChatMessage(
            id=row.id,
            session_id=row.session_id,
            role=row.role,
            content=row.content,
            timestamp=row.timestamp,
        )

    def _row_to_session(self, row: ChatSessionRow) -> ChatSession:
        """将数据库行转换为 Pydantic 模型（消息单独加载）"""
        return ChatSession(
            id=row.id,
            user_id=row.user_id,
            title=row.title or Config.chat.default_title,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
