from fastapi import APIRouter, Depends, HTTPException

from double_ai.api.deps import get_chat_service, get_store
from double_ai.api.schemas.chat import (
    ChatHistoryResponse,
    ChatMessage as ChatMessageSchema,
    ChatMessageRequest,
    ChatMessageResponse,
    ChatSessionInfo,
    CreateSessionRequest,
    RenameSessionRequest,
    SessionMessagesResponse,
)
from double_ai.errors import (
    CompletionError,
    ConfigurationError,
    DoubleAIError,
    SessionNotFoundError,
    ValidationError,
)
from double_ai.service.chat_service import ChatService
from double_ai.service.session_store import SessionStore

router = APIRouter(prefix="/api/chat", tags=["chat"])


def http_error(e: DoubleAIError) -> HTTPException:
    """领域异常 → HTTP 状态码"""
    if isinstance(e, SessionNotFoundError):
        return HTTPException(status_code=404, detail="Session not found")
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=503, detail=e.message)
    if isinstance(e, CompletionError):
        return HTTPException(status_code=502, detail="Error getting AI response")
    return HTTPException(status_code=500, detail="Internal error")


def _history(store: SessionStore) -> ChatHistoryResponse:
    return ChatHistoryResponse(
        sessions=[ChatSessionInfo.from_model(s) for s in store.sessions],
        current_session_id=store.current_session_id,
        degraded=store.degraded,
    )


@router.get("/{user_id}/sessions", response_model=ChatHistoryResponse)
async def list_sessions(user_id: str, store: SessionStore = Depends(get_store)):
    """获取用户的所有会话（最近更新的在前）"""
    return _history(store)


@router.post("/{user_id}/sessions", response_model=ChatSessionInfo, status_code=201)
async def create_session(
    user_id: str,
    body: CreateSessionRequest,
    store: SessionStore = Depends(get_store),
):
    """新建会话"""
    try:
        session = await store.create_session(user_id, body.title)
    except DoubleAIError as e:
        raise http_error(e)
    return ChatSessionInfo.from_model(session)


@router.get("/{user_id}/sessions/{session_id}", response_model=SessionMessagesResponse)
async def get_session_messages(
    user_id: str,
    session_id: str,
    store: SessionStore = Depends(get_store),
):
    """获取特定会话的所有消息"""
    try:
        session = store.require_session(session_id)
        messages = store.get_messages(session_id)
    except DoubleAIError as e:
        raise http_error(e)

    return SessionMessagesResponse(
        session_id=session.id,
        title=session.title,
        messages=[ChatMessageSchema.from_model(m) for m in messages],
    )


@router.patch("/{user_id}/sessions/{session_id}", response_model=ChatSessionInfo)
async def rename_session(
    user_id: str,
    session_id: str,
    body: RenameSessionRequest,
    store: SessionStore = Depends(get_store),
):
    try:
        session = store.rename_session(session_id, body.title)
    except DoubleAIError as e:
        raise http_error(e)
    return ChatSessionInfo.from_model(session)


@router.delete("/{user_id}/sessions/{session_id}", response_model=ChatHistoryResponse)
async def delete_session(
    user_id: str,
    session_id: str,
    store: SessionStore = Depends(get_store),
):
    """删除会话；返回删除后的会话列表"""
    try:
        await store.delete_session(session_id)
    except DoubleAIError as e:
        raise http_error(e)
    return _history(store)


@router.post("/{user_id}/sessions/{session_id}/clear", response_model=ChatSessionInfo)
async def clear_session(
    user_id: str,
    session_id: str,
    store: SessionStore = Depends(get_store),
):
    """清空会话（标题不变，可能分配新 ID）"""
    try:
        session = await store.clear_session(session_id)
    except DoubleAIError as e:
        raise http_error(e)
    return ChatSessionInfo.from_model(session)


@router.post("/{user_id}/sessions/{session_id}/messages", response_model=ChatMessageResponse)
async def send_message(
    user_id: str,
    session_id: str,
    body: ChatMessageRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """发送消息并获取 AI 回复"""
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message content must not be empty")

    store = chat_service.store
    events_before = len(store.events)
    try:
        reply = await chat_service.send_message(session_id, body.message)
    except DoubleAIError as e:
        raise http_error(e)

    if reply is None:
        raise HTTPException(status_code=409, detail="A message is already being processed for this session")

    warnings = [event.error.message for event in store.events[events_before:]]
    return ChatMessageResponse(
        session_id=reply.session_id,
        reply=ChatMessageSchema.from_model(reply),
        warnings=warnings,
    )


@router.post("/{user_id}/sessions/{session_id}/select", response_model=ChatHistoryResponse)
async def select_session(
    user_id: str,
    session_id: str,
    store: SessionStore = Depends(get_store),
):
    """切换当前会话"""
    try:
        store.set_current_session(session_id)
    except DoubleAIError as e:
        raise http_error(e)
    return _history(store)
