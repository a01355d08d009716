"""
Error types shared by the chat pipeline.
"""


class ChatError(Exception):
    """Base class for chat pipeline errors."""


class ValidationError(ChatError):
    """Inbound message is empty or missing."""


class ProviderError(ChatError):
    """Completion provider failed, timed out or returned unusable content."""


class NotFound(ChatError):
    """A session (or credential record) does not exist."""


class PersistenceError(ChatError):
    """The backing store could not complete an operation."""
