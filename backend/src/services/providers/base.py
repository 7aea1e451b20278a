"""Provider adapter interface shared by every LLM backend."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from ...models.chat import ChatTurn, Citation, ToolCallRequest, TurnOptions

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class ProviderError(Exception):
    """Network, HTTP, credential or response-format failure from a provider."""

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


class ProviderResponse:
    """Result of one ``send_turn`` call.

    Either ``text`` is complete up front, or ``chunks`` yields it
    incrementally. ``tool_calls`` and ``citations`` are complete once
    :meth:`iter_text` has been drained.
    """

    def __init__(
        self,
        text: str = "",
        chunks: Optional[AsyncIterator[str]] = None,
        tool_calls: Optional[List[ToolCallRequest]] = None,
        citations: Optional[List[Citation]] = None,
    ):
        self.text = text
        self.tool_calls: List[ToolCallRequest] = tool_calls or []
        self.citations: List[Citation] = citations or []
        self._chunks = chunks

    @property
    def is_stream(self) -> bool:
        return self._chunks is not None

    def attach_stream(self, chunks: AsyncIterator[str]) -> "ProviderResponse":
        self._chunks = chunks
        return self

    async def iter_text(self) -> AsyncIterator[str]:
        if self._chunks is None:
            if self.text:
                yield self.text
            return
        chunks, self._chunks = self._chunks, None
        async for chunk in chunks:
            self.text += chunk
            yield chunk

    def add_citation(self, uri: str, title: Optional[str]) -> None:
        if uri and all(c.uri != uri for c in self.citations):
            self.citations.append(Citation(uri=uri, title=title or uri))


def status_error(status_code: int, body: str) -> ProviderError:
    """Map an HTTP error status to a ProviderError."""
    retryable = status_code == 429 or status_code >= 500
    if status_code in (401, 403):
        message = f"Authentication failed ({status_code}). Check the API key."
    else:
        message = f"API error: {status_code}"
    logger.error(f"Provider API error: {status_code} - {body[:500]}")
    return ProviderError(message, retryable=retryable, status_code=status_code)


def parse_json_text(text: str) -> Dict[str, Any]:
    """Parse a JSON object from model output, tolerating a markdown fence."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.startswith("json"):
            cleaned = cleaned[4:]
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ProviderError(f"Malformed JSON response: {e}") from e
    if not isinstance(data, dict):
        raise ProviderError("Malformed JSON response: expected an object")
    return data


class ProviderAdapter(ABC):
    """One LLM backend. The conversation controller depends only on this."""

    name: str = "provider"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @abstractmethod
    async def send_turn(
        self,
        history: Sequence[ChatTurn],
        new_message: ChatTurn,
        options: TurnOptions,
        abort: Optional[asyncio.Event] = None,
    ) -> ProviderResponse:
        """Send ``history`` plus ``new_message`` and return the model's reply."""

    @abstractmethod
    async def generate_json(
        self, prompt: str, schema: Dict[str, Any], model: str
    ) -> Dict[str, Any]:
        """Single-shot completion constrained to a JSON object."""

    async def _post_json(
        self, url: str, headers: Dict[str, str], body: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as e:
            logger.error(f"{self.name} request timeout")
            raise ProviderError("Request timeout - please try again", retryable=True) from e
        except httpx.HTTPError as e:
            logger.error(f"{self.name} request failed: {e}")
            raise ProviderError(f"Network error: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise status_error(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("Malformed response: body is not JSON") from e

    async def _iter_sse(
        self,
        url: str,
        headers: Dict[str, str],
        body: Dict[str, Any],
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """POST and yield each ``data:`` event as parsed JSON."""
        try:
            async with self._client() as client:
                async with client.stream("POST", url, headers=headers, json=body) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise status_error(response.status_code, response.text)

                    async for line in response.aiter_lines():
                        if abort is not None and abort.is_set():
                            logger.info(f"{self.name} stream aborted")
                            return
                        if not line.startswith("data: "):
                            continue
                        data_str = line[6:]
                        if data_str == "[DONE]":
                            return
                        try:
                            yield json.loads(data_str)
                        except json.JSONDecodeError:
                            logger.debug(f"Skipping malformed SSE line: {data_str[:200]}")
                            continue
        except httpx.TimeoutException as e:
            logger.error(f"{self.name} stream timeout")
            raise ProviderError("Request timeout - please try again", retryable=True) from e
        except httpx.HTTPError as e:
            logger.error(f"{self.name} stream failed: {e}")
            raise ProviderError(f"Network error: {e}", retryable=True) from e


__all__ = [
    "ProviderAdapter",
    "ProviderError",
    "ProviderResponse",
    "parse_json_text",
    "status_error",
]
