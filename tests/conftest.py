"""
Shared fixtures: in-memory fakes for the identity, quota and history
stores and for the upstream backend, plus a Gateway factory wired to them.
"""

import json

import pytest

from codeyaar.auth import Authenticator, Caller, IdentityProvider
from codeyaar.backends import BackendResponse, BackendStream, BaseBackend
from codeyaar.gateway import Gateway
from codeyaar.history import HistoryStore, HistoryStoreError
from codeyaar.policy import build_policy
from codeyaar.quota import QuotaStore, QuotaStoreError, RateLimitDecision, RateLimiter
from codeyaar.relay import UpstreamRelay

GOOD_TOKEN = "good-token"
AUTH = {"Authorization": f"Bearer {GOOD_TOKEN}"}


def sse_body(*deltas: str, done: bool = True) -> bytes:
    """An OpenAI-style SSE body carrying the given content deltas."""
    lines = []
    for d in deltas:
        chunk = {"choices": [{"index": 0, "delta": {"content": d}}]}
        lines.append(f"data: {json.dumps(chunk)}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class FakeIdentity(IdentityProvider):
    def __init__(self, users: dict | None = None):
        self.users = users if users is not None else {GOOD_TOKEN: Caller(id="user-1")}
        self.calls = 0

    async def get_user(self, token):
        self.calls += 1
        return self.users.get(token)


class FakeQuota(QuotaStore):
    def __init__(self, decision: RateLimitDecision | None = None, error: bool = False):
        self.decision = decision or RateLimitDecision(allowed=True, remaining=19)
        self.error = error
        self.calls = 0

    async def check(self, caller_id):
        self.calls += 1
        if self.error:
            raise QuotaStoreError("rpc down")
        return self.decision


class FakeHistory(HistoryStore):
    def __init__(self, fail: bool = False):
        self.records = []
        self.fail = fail

    async def insert(self, record):
        if self.fail:
            raise HistoryStoreError("insert failed")
        self.records.append(record)


class FakeBackend(BaseBackend):
    """Records every body it is sent; answers from canned data."""

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        stream_status: int = 200,
        data: dict | None = None,
        status: int = 200,
        api_key: str = "sk-test",
    ):
        super().__init__(name="fake", url="http://upstream.test/v1", timeout=60, api_key=api_key)
        self.chunks = chunks if chunks is not None else [sse_body("Hel", "lo", " world")]
        self.stream_status = stream_status
        self.data = data if data is not None else completion("Hello from the mentor")
        self.status = status
        self.forward_calls: list[dict] = []
        self.stream_calls: list[dict] = []
        self.streams: list[BackendStream] = []

    @property
    def calls(self) -> int:
        return len(self.forward_calls) + len(self.stream_calls)

    async def forward(self, body):
        self.forward_calls.append(body)
        if self.status >= 400:
            return BackendResponse(ok=False, status_code=self.status, backend_name=self.name,
                                   error=f"HTTP {self.status}")
        return BackendResponse(ok=True, status_code=self.status, data=self.data, backend_name=self.name)

    async def open_stream(self, body):
        self.stream_calls.append(body)
        stream = BackendStream.from_chunks(self.chunks, status_code=self.stream_status)
        self.streams.append(stream)
        return stream


@pytest.fixture
def policy():
    return build_policy({})


@pytest.fixture
def make_gateway(policy):
    """Factory: make_gateway(backend=..., quota=..., ...) -> (gateway, fakes dict)."""
    def _make(
        identity: FakeIdentity | None = None,
        quota: FakeQuota | None = None,
        history: FakeHistory | None = None,
        backend: FakeBackend | None = None,
        fail_open: bool = True,
        cfg: dict | None = None,
        wire=None,
    ):
        fakes = {
            "identity": identity or FakeIdentity(),
            "quota": quota or FakeQuota(),
            "history": history or FakeHistory(),
            "backend": backend or FakeBackend(),
        }
        gw = Gateway(
            authenticator=Authenticator(fakes["identity"]),
            rate_limiter=RateLimiter(fakes["quota"], fail_open=fail_open),
            relay=UpstreamRelay(fakes["backend"], policy),
            policy=policy,
            history=fakes["history"],
            wire=wire,
            cfg=cfg,
        )
        return gw, fakes
    return _make
