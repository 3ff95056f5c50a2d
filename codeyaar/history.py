"""
Interaction history — the audit trail of assistant requests.

The gateway builds one InteractionRecord per finished (or blocked)
request and hands it to a HistoryStore. Rows land in the
`ai_chat_history` table in the same shape the web app writes:

    {user_id, title, language, messages: [...]}

Blocked requests never store the payload; their only message is the
redaction marker.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx
from postgrest import APIError
from postgrest.types import ReturnMethod
from supabase import AsyncSupabaseException

from codeyaar.connection import SupabaseConnection

logger = logging.getLogger(__name__)

TITLE_LIMIT = 100


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class InteractionRecord:
    caller_id: str
    mode: str
    language: str | None
    model: str
    input_excerpt: str
    full_output: str = ""
    started_at: str = field(default_factory=_now)
    finished_at: str = field(default_factory=_now)
    has_warning: bool = False
    blocked: bool = False

    @classmethod
    def blocked_request(
        cls, caller_id: str, mode: str, language: str | None, model: str, marker: str,
    ) -> "InteractionRecord":
        """A record for a filtered request; the payload is replaced by the marker."""
        return cls(
            caller_id=caller_id,
            mode=mode,
            language=language,
            model=model,
            input_excerpt=marker,
            blocked=True,
        )

    @property
    def title(self) -> str:
        if self.blocked:
            return f"[BLOCKED] {self.mode} - {self.language or 'unknown'}"
        title = self.input_excerpt[:TITLE_LIMIT]
        if len(self.input_excerpt) > TITLE_LIMIT:
            title += "..."
        return title

    def to_row(self) -> dict:
        if self.blocked:
            messages = [{"role": "user", "content": self.input_excerpt}]
        else:
            messages = [
                {
                    "role": "user",
                    "content": self.input_excerpt,
                    "mode": self.mode,
                    "model": self.model,
                    "timestamp": self.started_at,
                },
                {
                    "role": "assistant",
                    "content": self.full_output,
                    "timestamp": self.finished_at,
                    "has_warning": self.has_warning,
                },
            ]
        return {
            "user_id": self.caller_id,
            "title": self.title,
            "language": self.language,
            "messages": messages,
        }


class HistoryStoreError(Exception):
    """The record could not be written."""


class HistoryStore(abc.ABC):
    """Port: persist one interaction record."""

    @abc.abstractmethod
    async def insert(self, record: InteractionRecord) -> None:
        """Raises HistoryStoreError on failure."""
        ...


class SupabaseHistoryStore(HistoryStore):
    """Inserts rows through the Supabase client without reading them back."""

    def __init__(self, connection: SupabaseConnection, table: str = "ai_chat_history"):
        self.connection = connection
        self.table = table

    async def insert(self, record: InteractionRecord) -> None:
        try:
            client = await self.connection.client()
            await client.table(self.table).insert(record.to_row(), returning=ReturnMethod.minimal).execute()
        except (AsyncSupabaseException, APIError, httpx.HTTPError) as e:
            raise HistoryStoreError(f"insert into {self.table} failed: {e}") from e
