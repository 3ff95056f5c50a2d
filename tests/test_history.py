"""
Tests for interaction records and the history store adapter.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from postgrest import APIError
from postgrest.types import ReturnMethod

from codeyaar.connection import SupabaseConnection
from codeyaar.history import HistoryStoreError, InteractionRecord, SupabaseHistoryStore

MARKER = "[CONTENT BLOCKED FOR SAFETY]"


def _record(**kw):
    defaults = dict(
        caller_id="user-1",
        mode="debug",
        language="python",
        model="gemini-2.5-flash",
        input_excerpt="print(1)",
        full_output="Looks fine.",
        started_at="2026-01-01T00:00:00+00:00",
        finished_at="2026-01-01T00:00:02+00:00",
    )
    defaults.update(kw)
    return InteractionRecord(**defaults)


def test_row_shape():
    row = _record(has_warning=True).to_row()
    assert row["user_id"] == "user-1"
    assert row["title"] == "print(1)"
    assert row["language"] == "python"
    user, assistant = row["messages"]
    assert user == {
        "role": "user",
        "content": "print(1)",
        "mode": "debug",
        "model": "gemini-2.5-flash",
        "timestamp": "2026-01-01T00:00:00+00:00",
    }
    assert assistant == {
        "role": "assistant",
        "content": "Looks fine.",
        "timestamp": "2026-01-01T00:00:02+00:00",
        "has_warning": True,
    }


def test_long_input_title_truncated():
    record = _record(input_excerpt="x" * 150)
    assert record.title == "x" * 100 + "..."
    assert _record(input_excerpt="y" * 100).title == "y" * 100


def test_blocked_record_is_redacted():
    record = InteractionRecord.blocked_request("user-1", "generate", "python", "google/gemini-2.5-flash", MARKER)
    row = record.to_row()
    assert row["title"] == "[BLOCKED] generate - python"
    assert row["messages"] == [{"role": "user", "content": MARKER}]


def test_blocked_record_without_language():
    record = InteractionRecord.blocked_request("user-1", "explain", None, "", MARKER)
    assert record.title == "[BLOCKED] explain - unknown"


def _store(execute):
    client = MagicMock()
    client.table.return_value.insert.return_value.execute = execute
    return SupabaseHistoryStore(SupabaseConnection("https://proj.supabase.co", "service-key", client=client)), client


@pytest.mark.asyncio
async def test_supabase_insert():
    store, client = _store(AsyncMock())
    record = _record()
    await store.insert(record)
    client.table.assert_called_once_with("ai_chat_history")
    client.table.return_value.insert.assert_called_once_with(record.to_row(), returning=ReturnMethod.minimal)


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    APIError({"message": "duplicate key", "code": "23505"}),
    httpx.ConnectError("refused"),
])
async def test_supabase_insert_failure(error):
    store, _ = _store(AsyncMock(side_effect=error))
    with pytest.raises(HistoryStoreError):
        await store.insert(_record())


@pytest.mark.asyncio
async def test_unconfigured_supabase_is_store_error():
    store = SupabaseHistoryStore(SupabaseConnection("", ""))
    with pytest.raises(HistoryStoreError):
        await store.insert(_record())
