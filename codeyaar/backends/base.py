"""
Base backend abstraction.
The relay talks to the upstream chat-completion API through this interface
so the transport can be swapped (or faked in tests) without touching it.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

import httpx

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Transport failure talking to the upstream."""


@dataclass
class BackendResponse:
    """Standardized non-streaming response from a backend."""
    ok: bool
    status_code: int = 200
    data: dict = field(default_factory=dict)
    backend_name: str = ""
    latency_ms: float = 0.0
    error: str = ""

    @property
    def content(self) -> str:
        """Extract assistant content from response data."""
        choices = self.data.get("choices") or []
        if choices:
            return (choices[0].get("message") or {}).get("content") or ""
        return ""


class BackendStream:
    """
    An open streaming response. The status is known before any body byte
    is read, so callers can reject before committing to a 200.
    Always aclose() it.
    """

    def __init__(
        self,
        status_code: int,
        response: httpx.Response | None = None,
        client: httpx.AsyncClient | None = None,
        error: str = "",
        chunks: list[bytes] | None = None,
    ):
        self.status_code = status_code
        self.error = error
        self._response = response
        self._client = client
        self._chunks = chunks
        self.closed = False

    @classmethod
    def from_chunks(cls, chunks: list[bytes], status_code: int = 200) -> "BackendStream":
        """A stream over fixed byte chunks (replays, tests)."""
        return cls(status_code=status_code, chunks=list(chunks))

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        if self._chunks is not None:
            for chunk in self._chunks:
                yield chunk
            return
        if self._response is None:
            return
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise BackendError(f"stream read failed: {e}") from e

    async def aclose(self):
        if self.closed:
            return
        self.closed = True
        if self._response is not None:
            await self._response.aclose()
        if self._client is not None:
            await self._client.aclose()


class BaseBackend(abc.ABC):
    """
    Abstract base for upstream chat-completion backends.
    Bodies are OpenAI-compatible: {model, messages, stream, temperature, ...}.
    """

    def __init__(self, name: str, url: str, timeout: float = 60, api_key: str = ""):
        self.name = name
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key

    @property
    def configured(self) -> bool:
        return bool(self.url and self.api_key)

    @abc.abstractmethod
    async def forward(self, body: dict) -> BackendResponse:
        """
        Forward a non-streaming chat completion request.
        Returns BackendResponse with data or error; never raises for HTTP status.
        """
        ...

    @abc.abstractmethod
    async def open_stream(self, body: dict) -> BackendStream:
        """
        Start a streaming chat completion request and return once headers
        are in. Non-2xx responses come back as a BackendStream with ok=False.
        Raises BackendError if the connection cannot be made.
        """
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r}>"
