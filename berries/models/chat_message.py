"""
Chat message model storing conversation turns.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from berries.database import Base
from berries.models.chat_session import utcnow


class ChatMessage(Base):
    """
    One turn of a conversation.

    `content` holds a plain string for `text` turns and the chart object for
    `chart` turns. Turns are append-only; the autoincrement `id` breaks ties
    between turns that share a `created_at`.
    """
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)

    session_id = Column(
        String,
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Message role: "user" or "assistant"
    role = Column(String, nullable=False)  # "user" | "assistant"

    # Payload kind: "text" or "chart"
    kind = Column(String, nullable=False, default="text")  # "text" | "chart"

    content = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    session = relationship("ChatSession", back_populates="messages")

    def __repr__(self):
        return f"<ChatMessage(id={self.id}, session_id={self.session_id}, role={self.role}, kind={self.kind})>"
