"""
Supabase connection holder.

The identity provider talks to Supabase with the anon key; the quota and
history stores share one service-role connection. Each holder creates its
async client on first use, so building a Gateway never touches the network.
"""

from __future__ import annotations

import asyncio
import logging

from supabase import AsyncClient, acreate_client

logger = logging.getLogger(__name__)


class SupabaseConnection:
    """One lazily created AsyncClient for a (url, key) pair."""

    def __init__(self, url: str, key: str, client: AsyncClient | None = None):
        self.url = url.rstrip("/")
        self.key = key
        self._client = client
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.url and self.key)

    async def client(self) -> AsyncClient:
        if self._client is None:
            async with self._lock:
                if self._client is None:
                    logger.debug("Creating Supabase client for %s", self.url)
                    self._client = await acreate_client(self.url, self.key)
        return self._client
