"""
Chat API endpoints.
"""
from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.responses import StreamingResponse
from typing import Any, List, Optional, Union
from pydantic import BaseModel
from sqlalchemy.orm import Session
from berries.database import get_db
from berries.errors import NotFound, PersistenceError, ValidationError
from berries.models.chat_message import ChatMessage
from berries.models.chat_session import ChatSession
from berries.routers.auth import current_identity
from berries.services.chat_service import ChatService
from berries.services.completion_service import CompletionProvider, completion_provider
from berries.services.session_store import SessionStore
import logging
import json

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    """Chat message request model."""
    message: Optional[str] = None
    conversation_id: Optional[str] = None


class ChatResponse(BaseModel):
    """
    Chat response model.

    `reply` is a string when `type` is "text" and a chart object
    (chartType, title, labels, data) when `type` is "chart".
    """
    type: str = "text"
    reply: Union[str, dict]
    conversation_id: Optional[str] = None


class ConversationSummary(BaseModel):
    """Lightweight conversation summary for sidebar listing."""

    id: str
    user_id: str
    title: str
    created_at: str
    updated_at: str
    message_preview: Optional[str] = None
    is_pinned: bool = False


class ConversationListResponse(BaseModel):
    conversations: List[ConversationSummary]
    total: int


class ChatMessageOut(BaseModel):
    """Persisted turn as returned to the frontend for history replay."""

    session_id: str
    role: str
    type: str
    content: Any
    created_at: str


class ChatSessionCreateRequest(BaseModel):
    title: Optional[str] = None


class ChatSessionUpdateRequest(BaseModel):
    """Update payload for chat session: rename and/or pin/unpin."""

    title: Optional[str] = None
    is_pinned: Optional[bool] = None


def get_completion_provider() -> CompletionProvider:
    return completion_provider


def get_session_store(db: Session = Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def get_chat_service(
    store: SessionStore = Depends(get_session_store),
    provider: CompletionProvider = Depends(get_completion_provider),
) -> ChatService:
    return ChatService(store, provider)


def _message_out(m: ChatMessage) -> ChatMessageOut:
    return ChatMessageOut(
        session_id=m.session_id,
        role=m.role,
        type=m.kind,
        content=m.content,
        created_at=m.created_at.isoformat() if m.created_at else "",
    )


def _preview(content: Any) -> Optional[str]:
    if content is None:
        return None
    if isinstance(content, dict):
        return content.get("title") or "Chart"
    return str(content)[:200]


def _summary(store: SessionStore, session: ChatSession) -> ConversationSummary:
    last = store.last_turn(session.id)
    return ConversationSummary(
        id=session.id,
        user_id=session.user_id,
        title=session.title,
        created_at=session.created_at.isoformat() if session.created_at else "",
        updated_at=session.updated_at.isoformat() if session.updated_at else "",
        message_preview=_preview(last.content) if last is not None else None,
        is_pinned=bool(session.is_pinned),
    )


def _owned_session(store: SessionStore, session_id: str, identity: str) -> ChatSession:
    try:
        return store.get_session(session_id, identity)
    except NotFound:
        raise HTTPException(status_code=404, detail="Chat session not found.")


@router.post("/chat", response_model=ChatResponse)
async def send_chat_message(
    request: ChatRequest,
    identity: str = Depends(current_identity),
    service: ChatService = Depends(get_chat_service),
):
    """
    Send a chat message to the completion provider.

    Always answers 200 with a `reply`: an empty message and provider failures
    come back as text replies. Only an unknown `conversation_id` is an error.
    """
    try:
        result = await service.send_message(identity, request.message, request.conversation_id)
    except ValidationError as e:
        return ChatResponse(type="text", reply=str(e), conversation_id=request.conversation_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Chat session not found.")
    except Exception as e:
        logger.error(f"Error processing chat message: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error processing chat message: {str(e)}")

    return ChatResponse(
        type=result.reply.kind,
        reply=result.reply.content,
        conversation_id=result.conversation_id,
    )


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


@router.post("/chat/stream")
async def stream_chat_message(
    chat_request: ChatRequest,
    request: Request,
    identity: str = Depends(current_identity),
    service: ChatService = Depends(get_chat_service),
):
    """
    Streaming chat endpoint using Server-Sent Events.

    Frames are `{"token": ...}` while the provider produces output, then
    `{"done": true}`, or `{"error": true}` on failure.
    """
    try:
        events = service.stream_message(
            identity,
            chat_request.message,
            chat_request.conversation_id,
            is_disconnected=request.is_disconnected,
        )
    except ValidationError as e:
        reply = str(e)

        async def rejected():
            yield _sse({"reply": reply})
            yield _sse({"done": True})
        return StreamingResponse(rejected(), media_type="text/event-stream")
    except NotFound:
        raise HTTPException(status_code=404, detail="Chat session not found.")

    async def event_generator():
        async for event in events:
            yield _sse(event)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/chat/history", response_model=List[ChatMessageOut])
async def get_chat_history(
    conversation_id: Optional[str] = None,
    identity: str = Depends(current_identity),
    store: SessionStore = Depends(get_session_store),
):
    """
    Ordered turns of a session, oldest first.

    Without `conversation_id` the caller's most recent session is used; an
    identity with no sessions gets an empty list.
    """
    if conversation_id:
        session = _owned_session(store, conversation_id, identity)
    else:
        session = store.latest_session(identity)
        if session is None:
            return []
    return [_message_out(m) for m in store.list_turns(session.id)]


@router.get("/chat/sessions", response_model=ConversationListResponse)
async def list_chat_sessions(
    identity: str = Depends(current_identity),
    store: SessionStore = Depends(get_session_store),
):
    """
    List chat sessions for the current user.
    Pinned chats are returned first, then others by created_at DESC.
    """
    summaries = [_summary(store, s) for s in store.list_sessions(identity)]
    return ConversationListResponse(conversations=summaries, total=len(summaries))


@router.post("/chat/sessions", response_model=ConversationSummary)
async def create_chat_session(
    payload: Optional[ChatSessionCreateRequest] = None,
    identity: str = Depends(current_identity),
    store: SessionStore = Depends(get_session_store),
):
    """Start a new, empty conversation."""
    try:
        session = store.create_session(identity, payload.title if payload else None)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Error creating chat session: {str(e)}")
    return _summary(store, session)


@router.get("/chat/sessions/{session_id}/messages", response_model=List[ChatMessageOut])
async def get_chat_session_messages(
    session_id: str,
    identity: str = Depends(current_identity),
    store: SessionStore = Depends(get_session_store),
):
    """
    Get all messages for a given chat session, in chronological order.
    Sessions are strictly per-user; users cannot access others' sessions.
    """
    _owned_session(store, session_id, identity)
    return [_message_out(m) for m in store.list_turns(session_id)]


@router.patch("/chat/sessions/{session_id}", response_model=ConversationSummary)
async def update_chat_session(
    session_id: str,
    payload: ChatSessionUpdateRequest,
    identity: str = Depends(current_identity),
    store: SessionStore = Depends(get_session_store),
):
    """
    Update a chat session's mutable properties (title, pin state).
    """
    session = _owned_session(store, session_id, identity)

    if payload.title is not None:
        session = store.rename(session_id, payload.title)

    if payload.is_pinned is not None:
        session = store.set_pinned(session_id, payload.is_pinned)

    return _summary(store, session)


@router.post("/chat/sessions/{session_id}/pin", response_model=ConversationSummary)
async def toggle_chat_session_pin(
    session_id: str,
    identity: str = Depends(current_identity),
    store: SessionStore = Depends(get_session_store),
):
    """Flip the pinned flag of a session."""
    _owned_session(store, session_id, identity)
    return _summary(store, store.toggle_pinned(session_id))


@router.delete("/chat/sessions/{session_id}", response_model=dict)
async def delete_chat_session(
    session_id: str,
    identity: str = Depends(current_identity),
    store: SessionStore = Depends(get_session_store),
):
    """
    Delete a chat session and all of its messages for the current user.
    """
    _owned_session(store, session_id, identity)
    store.delete_session(session_id)
    return {"status": "ok", "message": "Chat session deleted"}
