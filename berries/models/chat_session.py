"""
Chat session model for grouping conversation turns into threads.
"""
from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from berries.database import Base
from datetime import datetime, timezone
import uuid


DEFAULT_SESSION_TITLE = "New Chart"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatSession(Base):
    """
    Chat session representing a single conversation thread.

    - Each session is identified by a UUID string `id`
    - Sessions are per-identity (`user_id` holds the email or provider subject)
    - `title` starts as "New Chart" and can be renamed by the user
    - `is_pinned` keeps the session at the top of the sidebar
    """

    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    title = Column(String(255), nullable=False, default=DEFAULT_SESSION_TITLE)
    # Whether this chat is pinned to the top of the sidebar for the user.
    is_pinned = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    messages = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<ChatSession(id={self.id}, user_id={self.user_id}, title={self.title!r})>"
