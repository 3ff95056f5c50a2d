"""
OpenAI-compatible backend.

Speaks POST {url}/chat/completions with a bearer API key. This covers the
hosted AI gateway the assistants use as well as any other endpoint with
the same wire format (OpenRouter, vLLM, llama.cpp server, ...).
"""

from __future__ import annotations

import logging
import time

import httpx

from codeyaar.backends.base import BackendError, BackendResponse, BackendStream, BaseBackend

logger = logging.getLogger(__name__)


class OpenAICompatibleBackend(BaseBackend):
    """Backend for any endpoint implementing /chat/completions."""

    def __init__(
        self,
        name: str,
        url: str,
        timeout: float = 60,
        api_key: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(name, url, timeout, api_key)
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def forward(self, body: dict) -> BackendResponse:
        """Forward a non-streaming request."""
        t0 = time.monotonic()
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self.url}/chat/completions",
                    json=body,
                    headers=self._headers(),
                )
                latency = (time.monotonic() - t0) * 1000

                if resp.status_code >= 400:
                    return BackendResponse(
                        ok=False,
                        status_code=resp.status_code,
                        backend_name=self.name,
                        latency_ms=latency,
                        error=f"HTTP {resp.status_code}: {resp.text[:200]}",
                    )

                return BackendResponse(
                    ok=True,
                    status_code=resp.status_code,
                    data=resp.json(),
                    backend_name=self.name,
                    latency_ms=latency,
                )
        except httpx.TimeoutException:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Backend '%s' timed out after %.0fms", self.name, latency)
            return BackendResponse(
                ok=False,
                status_code=504,
                backend_name=self.name,
                latency_ms=latency,
                error=f"Timeout after {self.timeout}s",
            )
        except (httpx.HTTPError, ValueError) as e:
            latency = (time.monotonic() - t0) * 1000
            logger.warning("Backend '%s' failed: %s", self.name, e)
            return BackendResponse(
                ok=False,
                status_code=502,
                backend_name=self.name,
                latency_ms=latency,
                error=str(e),
            )

    async def open_stream(self, body: dict) -> BackendStream:
        """Send the request with stream=True and return as soon as the status is known."""
        client = self._client()
        try:
            request = client.build_request(
                "POST",
                f"{self.url}/chat/completions",
                json=body,
                headers=self._headers(),
            )
            resp = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            logger.warning("Backend '%s' stream failed to open: %s", self.name, e)
            raise BackendError(str(e)) from e

        if resp.status_code >= 400:
            try:
                detail = (await resp.aread())[:200].decode("utf-8", errors="replace")
            except httpx.HTTPError:
                detail = ""
            await resp.aclose()
            await client.aclose()
            return BackendStream(
                status_code=resp.status_code,
                error=f"HTTP {resp.status_code}: {detail}",
            )

        return BackendStream(status_code=resp.status_code, response=resp, client=client)
