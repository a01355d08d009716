"""
Session store: chat sessions per identity and their append-only turn logs.
"""
from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from berries.errors import NotFound, PersistenceError
from berries.models.chat_message import ChatMessage
from berries.models.chat_session import DEFAULT_SESSION_TITLE, ChatSession, utcnow

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 80

# Creation of an identity's first session and the appends to one session are
# serialised per key within the process. A lock stays registered only while
# some caller holds a reference to it.
_locks_guard = threading.Lock()
_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()


def _lock_for(key: str) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


@dataclass
class Turn:
    """A turn waiting to be appended to a session."""

    role: str  # "user" | "assistant"
    kind: str  # "text" | "chart"
    content: Any


class SessionStore:
    """Session and turn persistence on top of a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Session store {operation} failed: {str(e)}")
            raise PersistenceError(f"{operation} failed: {str(e)}") from e

    def _get(self, session_id: str) -> ChatSession:
        try:
            session = self.db.get(ChatSession, session_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"session lookup failed: {str(e)}") from e
        if session is None:
            raise NotFound(f"Chat session {session_id} not found")
        return session

    def get_session(self, session_id: str, identity: Optional[str] = None) -> ChatSession:
        """
        Fetch a session by id. When ``identity`` is given, sessions owned by
        someone else are reported as missing.
        """
        session = self._get(session_id)
        if identity is not None and session.user_id != identity:
            raise NotFound(f"Chat session {session_id} not found")
        return session

    def latest_session(self, identity: str) -> Optional[ChatSession]:
        """Most recently created session for ``identity``, or None."""
        try:
            return (
                self.db.query(ChatSession)
                .filter(ChatSession.user_id == identity)
                .order_by(desc(ChatSession.created_at))
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"session lookup failed: {str(e)}") from e

    def create_session(self, identity: str, title: Optional[str] = None) -> ChatSession:
        session = ChatSession(
            user_id=identity,
            title=_clean_title(title) or DEFAULT_SESSION_TITLE,
            is_pinned=False,
        )
        self.db.add(session)
        self._commit("session creation")
        self.db.refresh(session)
        logger.info(f"Created chat session {session.id} for {identity}")
        return session

    def get_or_create_session(self, identity: str) -> ChatSession:
        """
        Return the identity's most recent session, creating one if it has none.

        Concurrent first calls for the same identity create a single session;
        later callers observe the one created first.
        """
        session = self.latest_session(identity)
        if session is not None:
            return session

        with _lock_for(f"identity:{identity}"):
            session = self.latest_session(identity)
            if session is not None:
                return session
            return self.create_session(identity)

    def list_sessions(self, identity: str) -> List[ChatSession]:
        """Sessions for ``identity``, pinned first, then newest first."""
        try:
            return (
                self.db.query(ChatSession)
                .filter(ChatSession.user_id == identity)
                .order_by(desc(ChatSession.is_pinned), desc(ChatSession.created_at))
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"session listing failed: {str(e)}") from e

    def append_turn(self, session_id: str, turn: Turn) -> ChatMessage:
        return self.append_turns(session_id, [turn])[0]

    def append_turns(self, session_id: str, turns: Sequence[Turn]) -> List[ChatMessage]:
        """
        Append ``turns`` to a session in one transaction.

        The turns keep their relative order and are never interleaved with
        turns appended concurrently by this process.
        """
        with _lock_for(f"session:{session_id}"):
            self._get(session_id)
            now = utcnow()
            messages = [
                ChatMessage(
                    session_id=session_id,
                    role=turn.role,
                    kind=turn.kind,
                    content=turn.content,
                    created_at=now,
                )
                for turn in turns
            ]
            for message in messages:
                # Flush one at a time so autoincrement ids follow list order
                self.db.add(message)
                try:
                    self.db.flush()
                except SQLAlchemyError as e:
                    self.db.rollback()
                    raise PersistenceError(f"turn append failed: {str(e)}") from e
            self._commit("turn append")
        return messages

    def list_turns(self, session_id: str) -> List[ChatMessage]:
        """Turns of a session ordered oldest first."""
        self._get(session_id)
        try:
            return (
                self.db.query(ChatMessage)
                .filter(ChatMessage.session_id == session_id)
                .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"turn listing failed: {str(e)}") from e

    def last_turn(self, session_id: str) -> Optional[ChatMessage]:
        try:
            return (
                self.db.query(ChatMessage)
                .filter(ChatMessage.session_id == session_id)
                .order_by(desc(ChatMessage.created_at), desc(ChatMessage.id))
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"turn lookup failed: {str(e)}") from e

    def rename(self, session_id: str, title: str) -> ChatSession:
        session = self._get(session_id)
        new_title = _clean_title(title) or session.title
        if new_title != session.title:
            session.title = new_title
            self._commit("rename")
            self.db.refresh(session)
        return session

    def set_pinned(self, session_id: str, pinned: bool) -> ChatSession:
        session = self._get(session_id)
        if bool(session.is_pinned) != bool(pinned):
            session.is_pinned = bool(pinned)
            self._commit("pin update")
            self.db.refresh(session)
        return session

    def toggle_pinned(self, session_id: str) -> ChatSession:
        session = self._get(session_id)
        return self.set_pinned(session_id, not session.is_pinned)

    def delete_session(self, session_id: str) -> None:
        """Delete a session together with its turns."""
        session = self._get(session_id)
        self.db.delete(session)
        self._commit("session deletion")
        logger.info(f"Deleted chat session {session_id}")


def _clean_title(title: Optional[str]) -> str:
    return (title or "").strip()[:MAX_TITLE_LENGTH]
