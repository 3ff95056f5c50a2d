"""
Tests for the per-user rate limiter and its Supabase RPC adapter.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from postgrest import APIError

from codeyaar.connection import SupabaseConnection
from codeyaar.errors import QuotaExceeded, QuotaUnavailable
from codeyaar.quota import UNCHECKED, QuotaStoreError, RateLimitDecision, RateLimiter, SupabaseQuotaStore
from tests.conftest import FakeQuota


# ---------------------------------------------------------------------------
# RateLimitDecision
# ---------------------------------------------------------------------------

def test_decision_from_rpc_object():
    d = RateLimitDecision.from_rpc({"allowed": True, "remaining": 4, "reset_at": "2026-01-02T00:00:00Z"})
    assert d == RateLimitDecision(allowed=True, remaining=4, reset_at="2026-01-02T00:00:00Z")


def test_decision_from_rpc_row_list():
    d = RateLimitDecision.from_rpc([{"allowed": False, "remaining": 0}])
    assert not d.allowed
    assert d.remaining == 0


@pytest.mark.parametrize("payload", [None, [], {}])
def test_decision_without_verdict_allows(payload):
    assert RateLimitDecision.from_rpc(payload).allowed


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_allowed_returns_decision():
    decision = await RateLimiter(FakeQuota()).check("user-1")
    assert decision.remaining == 19


@pytest.mark.asyncio
async def test_exhausted_quota_rejects():
    quota = FakeQuota(RateLimitDecision(allowed=False, remaining=0, reset_at="2026-01-02T00:00:00Z"))
    with pytest.raises(QuotaExceeded) as exc:
        await RateLimiter(quota).check("user-1")
    assert exc.value.status_code == 429
    assert exc.value.to_body() == {
        "error": "Daily AI request limit reached. Please try again tomorrow.",
        "remaining": 0,
        "reset_at": "2026-01-02T00:00:00Z",
    }


@pytest.mark.asyncio
async def test_store_failure_fails_open_by_default():
    limiter = RateLimiter(FakeQuota(error=True))
    assert await limiter.check("user-1") is UNCHECKED


@pytest.mark.asyncio
async def test_store_failure_fails_closed_when_configured():
    limiter = RateLimiter(FakeQuota(error=True), fail_open=False)
    with pytest.raises(QuotaUnavailable) as exc:
        await limiter.check("user-1")
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_disabled_limiter_skips_store():
    quota = FakeQuota(RateLimitDecision(allowed=False))
    assert await RateLimiter(quota, enabled=False).check("user-1") is UNCHECKED
    assert await RateLimiter(None).check("user-1") is UNCHECKED
    assert quota.calls == 0


# ---------------------------------------------------------------------------
# Supabase RPC adapter
# ---------------------------------------------------------------------------

def _store(execute):
    client = MagicMock()
    client.rpc.return_value.execute = execute
    return SupabaseQuotaStore(SupabaseConnection("https://proj.supabase.co", "service-key", client=client)), client


@pytest.mark.asyncio
async def test_rpc_call_shape():
    store, client = _store(AsyncMock(return_value=MagicMock(data=[{"allowed": True, "remaining": 7, "reset_at": None}])))
    decision = await store.check("abc-123")
    assert decision.remaining == 7
    client.rpc.assert_called_once_with("check_ai_rate_limit", {"user_uuid": "abc-123"})


@pytest.mark.asyncio
async def test_rpc_api_error_fails_open_through_limiter():
    store, _ = _store(AsyncMock(side_effect=APIError({"message": "function does not exist", "code": "42883"})))
    assert await RateLimiter(store).check("abc-123") is UNCHECKED


@pytest.mark.asyncio
async def test_rpc_network_error_fails_closed_through_limiter():
    store, _ = _store(AsyncMock(side_effect=httpx.ReadTimeout("slow")))
    with pytest.raises(QuotaUnavailable):
        await RateLimiter(store, fail_open=False).check("abc-123")


@pytest.mark.asyncio
async def test_unconfigured_supabase_fails_open():
    store = SupabaseQuotaStore(SupabaseConnection("", ""))
    assert await RateLimiter(store, fail_open=True).check("user-1") is UNCHECKED


@pytest.mark.asyncio
async def test_unconfigured_supabase_fails_closed():
    store = SupabaseQuotaStore(SupabaseConnection("", ""))
    with pytest.raises(QuotaUnavailable):
        await RateLimiter(store, fail_open=False).check("user-1")


@pytest.mark.parametrize("payload", [True, "allowed", [5], 3])
def test_decision_rejects_non_object_payload(payload):
    with pytest.raises(ValueError):
        RateLimitDecision.from_rpc(payload)


@pytest.mark.asyncio
async def test_rpc_odd_payload_is_store_error():
    store, _ = _store(AsyncMock(return_value=MagicMock(data="yes")))
    with pytest.raises(QuotaStoreError):
        await store.check("abc-123")
    assert await RateLimiter(store).check("abc-123") is UNCHECKED
