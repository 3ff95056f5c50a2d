"""
Upstream relay — one call to the chat-completion API per request.

Resolves the client's model id through the policy table, builds the
OpenAI-style body, and turns upstream failures into gateway errors:

    429        -> UpstreamBusy
    402        -> UpstreamQuotaExceeded
    other !2xx -> UpstreamUnavailable

No retries. The caller finds out and may try again.
"""

from __future__ import annotations

import logging

from codeyaar.backends import BackendError, BackendResponse, BackendStream, BaseBackend
from codeyaar.errors import UpstreamBusy, UpstreamQuotaExceeded, UpstreamUnavailable
from codeyaar.policy import Policy

logger = logging.getLogger(__name__)


def raise_for_upstream_status(status_code: int, detail: str = ""):
    """Raise the taxonomy error for a non-2xx upstream status."""
    if 200 <= status_code < 300:
        return
    logger.error("AI gateway error: %d %s", status_code, detail)
    if status_code == 429:
        raise UpstreamBusy()
    if status_code == 402:
        raise UpstreamQuotaExceeded()
    raise UpstreamUnavailable()


class UpstreamRelay:
    """Builds request bodies and forwards them to the configured backend."""

    def __init__(self, backend: BaseBackend, policy: Policy):
        self.backend = backend
        self.policy = policy

    def resolve_model(self, model_id: str | None) -> str:
        return self.policy.resolve_model(model_id)

    def _check_configured(self):
        if not self.backend.configured:
            logger.error("Upstream '%s' has no URL or API key configured", self.backend.name)
            raise UpstreamUnavailable()

    @staticmethod
    def build_body(
        messages: list[dict],
        model: str,
        stream: bool,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict:
        body = {"model": model, "messages": messages, "stream": stream}
        if temperature is not None:
            body["temperature"] = temperature
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        return body

    async def complete(
        self,
        messages: list[dict],
        model: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> BackendResponse:
        """Single-shot completion. `model` is already provider-qualified."""
        self._check_configured()
        body = self.build_body(messages, model, False, temperature, max_tokens)
        response = await self.backend.forward(body)
        if not response.ok:
            logger.debug("Backend '%s' failed after %.0fms", response.backend_name, response.latency_ms)
            raise_for_upstream_status(response.status_code or 500, response.error)
        logger.info(
            "Backend '%s' served model '%s' in %.0fms",
            response.backend_name, model, response.latency_ms,
        )
        return response

    async def open_stream(
        self,
        messages: list[dict],
        model: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> BackendStream:
        """
        Streaming completion. Returns only once upstream has answered 2xx;
        the caller owns the stream and must aclose() it.
        """
        self._check_configured()
        body = self.build_body(messages, model, True, temperature, max_tokens)
        try:
            stream = await self.backend.open_stream(body)
        except BackendError as e:
            logger.error("AI gateway unreachable: %s", e)
            raise UpstreamUnavailable() from e
        if not stream.ok:
            await stream.aclose()
            raise_for_upstream_status(stream.status_code, stream.error)
        return stream
