"""
Database models package.
"""

from berries.models.chat_message import ChatMessage
from berries.models.chat_session import ChatSession
from berries.models.user import User

__all__ = ["ChatMessage", "ChatSession", "User"]
