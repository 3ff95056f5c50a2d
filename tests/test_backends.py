"""
Tests for the upstream backend layer.
Run with: pytest tests/test_backends.py
"""

import json

import httpx
import pytest

from codeyaar.backends import (
    PROVIDERS,
    BackendError,
    BackendResponse,
    BackendStream,
    OpenAICompatibleBackend,
    make_backend,
)
from tests.conftest import completion, sse_body


# ---------------------------------------------------------------------------
# BackendResponse / BackendStream
# ---------------------------------------------------------------------------

def test_backend_response_content():
    ok = BackendResponse(ok=True, data=completion("hi"))
    assert ok.content == "hi"

    err = BackendResponse(ok=False, error="timeout")
    assert err.content == ""
    assert BackendResponse(ok=True, data={"choices": [{"message": {"content": None}}]}).content == ""


@pytest.mark.asyncio
async def test_stream_from_chunks():
    stream = BackendStream.from_chunks([b"a", b"b"])
    assert stream.ok
    assert [c async for c in stream.aiter_bytes()] == [b"a", b"b"]
    await stream.aclose()
    await stream.aclose()
    assert stream.closed


def test_stream_status():
    assert not BackendStream(status_code=429).ok


# ---------------------------------------------------------------------------
# make_backend
# ---------------------------------------------------------------------------

def test_make_backend_defaults():
    backend = make_backend({"url": "https://ai.example/v1/", "api_key": "k"})
    assert isinstance(backend, OpenAICompatibleBackend)
    assert backend.url == "https://ai.example/v1"
    assert backend.timeout == 60
    assert backend.configured


def test_make_backend_without_key_is_not_configured():
    assert not make_backend({"url": "https://ai.example/v1", "api_key": ""}).configured


def test_make_backend_unknown_provider():
    with pytest.raises(ValueError, match="Unknown upstream provider"):
        make_backend({"provider": "carrier-pigeon"})


def test_provider_registry():
    assert PROVIDERS["openai_compat"] is OpenAICompatibleBackend


# ---------------------------------------------------------------------------
# OpenAICompatibleBackend
# ---------------------------------------------------------------------------

def _backend(handler):
    return OpenAICompatibleBackend(
        name="test", url="https://ai.example/v1", api_key="sk-test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_forward_success():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion("hello"))

    resp = await _backend(handler).forward({"model": "m", "messages": [], "stream": False})
    assert resp.ok
    assert resp.content == "hello"
    assert resp.backend_name == "test"
    assert seen["path"] == "/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["stream"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [402, 429, 500])
async def test_forward_error_status(status):
    resp = await _backend(lambda request: httpx.Response(status, text="nope")).forward({})
    assert not resp.ok
    assert resp.status_code == status
    assert "nope" in resp.error


@pytest.mark.asyncio
async def test_forward_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    resp = await _backend(handler).forward({})
    assert not resp.ok
    assert resp.status_code == 504


@pytest.mark.asyncio
async def test_forward_connection_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    resp = await _backend(handler).forward({})
    assert not resp.ok
    assert resp.status_code == 502


@pytest.mark.asyncio
async def test_open_stream_relays_body():
    body = sse_body("Hel", "lo")
    backend = _backend(lambda request: httpx.Response(
        200, content=body, headers={"content-type": "text/event-stream"},
    ))
    stream = await backend.open_stream({"stream": True})
    try:
        assert stream.ok
        data = b"".join([chunk async for chunk in stream.aiter_bytes()])
    finally:
        await stream.aclose()
    assert data == body
    assert stream.closed


@pytest.mark.asyncio
async def test_open_stream_error_status_is_not_raised():
    backend = _backend(lambda request: httpx.Response(402, json={"error": "payment required"}))
    stream = await backend.open_stream({"stream": True})
    assert not stream.ok
    assert stream.status_code == 402
    assert "payment required" in stream.error


@pytest.mark.asyncio
async def test_open_stream_connection_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(BackendError):
        await _backend(handler).open_stream({"stream": True})
