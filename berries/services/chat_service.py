"""
Conversation orchestration: one inbound user message to one classified reply.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from berries.config import settings
from berries.errors import PersistenceError, ProviderError, ValidationError
from berries.models.chat_session import ChatSession
from berries.services.reply_classifier import Reply, TextReply, classify_reply
from berries.services.session_store import SessionStore, Turn

logger = logging.getLogger(__name__)

EMPTY_MESSAGE_REPLY = "Empty message sent"
PROVIDER_ERROR_REPLY = "AI backend error. Please try again."

# How often a silent provider stream re-checks whether the client is still there
DISCONNECT_POLL_SECONDS = 1.0


@dataclass
class ExchangeResult:
    """Outcome of one buffered exchange."""

    reply: Reply
    conversation_id: Optional[str]
    persisted: bool


class ChatService:
    """
    Handles inbound chat messages end to end.

    A message resolves (or creates) the caller's session, goes to the
    completion provider once, is classified as chart or text, and is
    persisted as a user turn followed by an assistant turn. Provider
    failures turn into a generic text reply and persist nothing.
    """

    def __init__(
        self,
        store: SessionStore,
        provider,
        system_prompt: Optional[str] = None,
        disconnect_poll_seconds: float = DISCONNECT_POLL_SECONDS,
    ):
        self.store = store
        self.provider = provider
        self.system_prompt = settings.chart_system_prompt if system_prompt is None else system_prompt
        self.disconnect_poll_seconds = disconnect_poll_seconds

    @staticmethod
    def validate_message(message: Optional[str]) -> str:
        if not isinstance(message, str) or not message.strip():
            raise ValidationError(EMPTY_MESSAGE_REPLY)
        return message

    def resolve_session(self, identity: str, conversation_id: Optional[str] = None) -> Optional[ChatSession]:
        """
        Find the session this exchange belongs to.

        An explicit ``conversation_id`` must belong to ``identity`` or NotFound
        is raised. Without one, the identity's most recent session is used or
        created. Returns None when the store is unavailable.
        """
        try:
            if conversation_id:
                return self.store.get_session(conversation_id, identity)
            return self.store.get_or_create_session(identity)
        except PersistenceError as e:
            logger.error(f"Session resolution failed for {identity}, history will not be saved: {str(e)}")
            return None

    def _persist(self, session: Optional[ChatSession], message: str, reply: Reply) -> bool:
        if session is None:
            return False
        try:
            self.store.append_turns(
                session.id,
                [
                    Turn(role="user", kind="text", content=message),
                    Turn(role="assistant", kind=reply.kind, content=reply.content),
                ],
            )
            return True
        except PersistenceError as e:
            logger.error(f"Failed to save exchange for session {session.id}: {str(e)}")
            return False

    async def send_message(
        self,
        identity: str,
        message: Optional[str],
        conversation_id: Optional[str] = None,
    ) -> ExchangeResult:
        """
        Run one buffered exchange.

        Raises ValidationError for an empty message (before any side effect)
        and NotFound for an unknown explicit ``conversation_id``.
        """
        message = self.validate_message(message)
        session = self.resolve_session(identity, conversation_id)
        session_id = session.id if session is not None else conversation_id

        try:
            raw = await self.provider.complete(message, system_prompt=self.system_prompt)
        except ProviderError as e:
            logger.error(f"Completion failed for session {session_id}: {str(e)}", exc_info=True)
            return ExchangeResult(TextReply(text=PROVIDER_ERROR_REPLY), session_id, False)
        except Exception as e:
            logger.error(f"Unexpected completion failure for session {session_id}: {str(e)}", exc_info=True)
            return ExchangeResult(TextReply(text=PROVIDER_ERROR_REPLY), session_id, False)

        reply = classify_reply(raw)
        persisted = self._persist(session, message, reply)
        logger.info(f"Exchange complete for session {session_id}: kind={reply.kind}, persisted={persisted}")
        return ExchangeResult(reply, session_id, persisted)

    def stream_message(
        self,
        identity: str,
        message: Optional[str],
        conversation_id: Optional[str] = None,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[dict]:
        """
        Start a streaming exchange and return its event iterator.

        Validation and session resolution happen immediately, so
        ValidationError and NotFound are raised here rather than from the
        iterator. Events are ``{"token": str}`` per token, then ``{"done": True}``,
        or ``{"error": True}`` if the provider fails. No chart classification
        is applied. The exchange is persisted only when the stream completes;
        if the consumer stops early or ``is_disconnected`` reports True, the
        provider stream is closed and nothing is saved. ``is_disconnected`` is
        checked after every token and, while the provider is silent, every
        ``disconnect_poll_seconds``.
        """
        message = self.validate_message(message)
        session = self.resolve_session(identity, conversation_id)
        return self._stream_events(session, message, is_disconnected)

    async def _stream_events(
        self,
        session: Optional[ChatSession],
        message: str,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]],
    ) -> AsyncIterator[dict]:
        session_id = session.id if session is not None else None
        tokens = []
        stream = self.provider.stream(message)
        try:
            while True:
                token = await self._next_token(stream, is_disconnected)
                if token is _END:
                    break
                if token is _DISCONNECTED or (is_disconnected is not None and await is_disconnected()):
                    logger.info(f"Client disconnected from stream for session {session_id} after {len(tokens)} tokens")
                    return
                tokens.append(token)
                yield {"token": token}
        except (GeneratorExit, asyncio.CancelledError):
            logger.info(f"Stream cancelled for session {session_id} after {len(tokens)} tokens")
            raise
        except Exception as e:
            logger.error(f"Stream failed for session {session_id}: {str(e)}", exc_info=True)
            yield {"error": True}
            return
        finally:
            await stream.aclose()

        if not tokens:
            logger.error(f"Provider stream for session {session_id} produced no tokens")
            yield {"error": True}
            return

        self._persist(session, message, TextReply(text="".join(tokens)))
        yield {"done": True}

    async def _next_token(
        self,
        stream: AsyncIterator[str],
        is_disconnected: Optional[Callable[[], Awaitable[bool]]],
    ):
        """
        Wait for the provider's next token.

        While the provider is silent, ``is_disconnected`` is polled every
        ``disconnect_poll_seconds``; if the client has gone the pending read is
        cancelled and _DISCONNECTED is returned. Returns _END when the
        provider stream is exhausted.
        """
        if is_disconnected is None:
            return await _pull(stream)

        pending = asyncio.ensure_future(_pull(stream))
        try:
            while True:
                done, _ = await asyncio.wait({pending}, timeout=self.disconnect_poll_seconds)
                if done:
                    return pending.result()
                if await is_disconnected():
                    return _DISCONNECTED
        finally:
            if not pending.done():
                pending.cancel()
                try:
                    await pending
                except asyncio.CancelledError:
                    pass


_END = object()
_DISCONNECTED = object()


async def _pull(stream: AsyncIterator[str]):
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return _END
