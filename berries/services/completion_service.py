"""
Completion provider client for OpenAI-compatible chat APIs (Groq by default).
"""
import asyncio
import json
import logging
from typing import AsyncIterator, List, Optional

import httpx

from berries.config import settings
from berries.errors import ProviderError

logger = logging.getLogger(__name__)


class CompletionProvider:
    """Service for calling the chat completions endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.groq_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.model = model or settings.llm_model
        self.timeout = settings.llm_timeout_seconds if timeout is None else timeout
        # Injected transport lets tests answer requests without the network
        self._transport = transport

        if not self.api_key:
            logger.warning("No completion API key configured; provider calls will be rejected")
        logger.info(f"Initialized completion provider - Base URL: {self.base_url}, Model: {self.model}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, message: str, system_prompt: Optional[str], stream: bool) -> dict:
        messages: List[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": message})
        payload = {"model": self.model, "messages": messages}
        if stream:
            payload["stream"] = True
        return payload

    async def complete(self, message: str, system_prompt: Optional[str] = None) -> str:
        """
        Send one message and return the full completion text.

        Raises ProviderError on transport failures, HTTP error statuses,
        malformed or empty responses, and when the call exceeds the timeout.
        """
        try:
            return await asyncio.wait_for(
                self._complete(message, system_prompt), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(f"Completion timed out after {self.timeout}s") from e

    async def _complete(self, message: str, system_prompt: Optional[str]) -> str:
        url = f"{self.base_url}/chat/completions"
        logger.info(f"Sending message to completion provider: {url}")

        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    json=self._payload(message, system_prompt, stream=False),
                    headers=self._headers(),
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"Provider returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Provider request failed: {str(e)}") from e
        except ValueError as e:
            raise ProviderError(f"Provider returned invalid JSON: {str(e)}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("Provider response has no message content") from e

        if not isinstance(content, str) or not content:
            raise ProviderError("Provider returned an empty completion")
        return content

    async def stream(self, message: str, system_prompt: Optional[str] = None) -> AsyncIterator[str]:
        """
        Yield completion tokens as the provider produces them.

        The HTTP connection is released as soon as the consumer stops
        iterating, whether the stream finished or not. Each wait for the
        next chunk is bounded by the timeout.
        """
        url = f"{self.base_url}/chat/completions"
        logger.info(f"Streaming message from completion provider: {url}")

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    url,
                    json=self._payload(message, system_prompt, stream=True),
                    headers=self._headers(),
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        token = _parse_stream_line(line)
                        if token is _DONE:
                            break
                        if token:
                            yield token
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"Provider returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Provider stream failed: {str(e)}") from e


_DONE = object()


def _parse_stream_line(line: str):
    """
    Extract the token from one server-sent-events line.

    Returns the token text, None for lines without content, or the _DONE
    marker for the terminating ``[DONE]`` frame.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None

    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return _DONE

    try:
        chunk = json.loads(data)
    except ValueError as e:
        raise ProviderError(f"Provider sent a malformed stream chunk: {data[:100]}") from e

    try:
        choices = chunk.get("choices") or []
        if not choices:
            return None
        delta = choices[0].get("delta") or {}
        content = delta.get("content")
    except AttributeError:
        return None
    return content if isinstance(content, str) else None


# Singleton instance
completion_provider = CompletionProvider()
