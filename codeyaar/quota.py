"""
Per-user daily rate limiting.

The quota store owns the counter and its atomicity; this module only asks
it once per request and acts on the answer. What happens when the ask
itself fails is a config choice (rate_limit.fail_open):

  fail_open: true   — log the error and let the request through (default)
  fail_open: false  — reject with 503
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass

import httpx
from postgrest import APIError
from supabase import AsyncSupabaseException

from codeyaar.connection import SupabaseConnection
from codeyaar.errors import QuotaExceeded, QuotaUnavailable

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    """The quota store's verdict for one request."""
    allowed: bool
    remaining: int | None = None   # None when unknown
    reset_at: str | None = None

    @classmethod
    def from_rpc(cls, data) -> "RateLimitDecision":
        """Build from the check_ai_rate_limit RPC payload."""
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            # No verdict is not a denial
            return cls(allowed=True)
        if not isinstance(data, dict):
            raise ValueError(f"unexpected rate limit payload: {data!r}")
        return cls(
            allowed=bool(data.get("allowed", True)),
            remaining=data.get("remaining"),
            reset_at=data.get("reset_at"),
        )


UNCHECKED = RateLimitDecision(allowed=True)


class QuotaStoreError(Exception):
    """The quota check could not be completed."""


class QuotaStore(abc.ABC):
    """Port: atomically check-and-count one AI request for a user."""

    @abc.abstractmethod
    async def check(self, caller_id: str) -> RateLimitDecision:
        """Raises QuotaStoreError on infrastructure failure."""
        ...


class SupabaseQuotaStore(QuotaStore):
    """Calls a Postgres function through the Supabase client (rpc)."""

    def __init__(self, connection: SupabaseConnection, rpc: str = "check_ai_rate_limit"):
        self.connection = connection
        self.rpc = rpc

    async def check(self, caller_id: str) -> RateLimitDecision:
        try:
            client = await self.connection.client()
            resp = await client.rpc(self.rpc, {"user_uuid": caller_id}).execute()
        except (AsyncSupabaseException, APIError, httpx.HTTPError) as e:
            raise QuotaStoreError(f"{self.rpc} failed: {e}") from e
        try:
            return RateLimitDecision.from_rpc(resp.data)
        except ValueError as e:
            raise QuotaStoreError(str(e)) from e


class RateLimiter:
    """One quota check per request, no retries."""

    def __init__(self, store: QuotaStore | None, fail_open: bool = True, enabled: bool = True):
        self.store = store
        self.fail_open = fail_open
        self.enabled = enabled and store is not None

    async def check(self, caller_id: str) -> RateLimitDecision:
        """Return the decision for an allowed request; raise if denied."""
        if not self.enabled:
            return UNCHECKED

        try:
            decision = await self.store.check(caller_id)
        except QuotaStoreError as e:
            if self.fail_open:
                logger.error("Rate limit check error (failing open): %s", e)
                return UNCHECKED
            logger.error("Rate limit check error (failing closed): %s", e)
            raise QuotaUnavailable() from e

        if not decision.allowed:
            logger.warning("Rate limit exceeded for user %s", caller_id)
            raise QuotaExceeded(reset_at=decision.reset_at)

        logger.debug("Rate limit check for user %s: remaining %s", caller_id, decision.remaining)
        return decision
