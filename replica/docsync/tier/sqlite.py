"""
SQLite key-value tier for docsync.

Durable local store for the document and its bookkeeping. One SQLite file
per tier, one row per key, the value held as compact JSON text.

Invariants:
    - Each operation is a single autocommitted statement
    - Connections are opened per operation and never shared across threads
    - Blocking SQLite calls run in the default executor, off the event loop

How to change safely:
    - Schema migrations must be backward compatible
    - Keep value_json byte-compatible with chunk.budget.compact_json so the
      quota estimate stays meaningful for SQLite-backed cloud tiers

Table schema:
    kv:
        - key TEXT PRIMARY KEY
        - value_json TEXT NOT NULL
        - updated_at INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, TypeVar

from ..chunk.budget import compact_json, estimate_item_bytes
from .base import TierError, TierQuotaExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqliteTier:
    """SQLite-backed implementation of KeyValueTier.

    Attributes:
        name: Tier name
        db_path: Path to the SQLite file
        quota_bytes_per_item: Enforced per-item quota (0 = unconstrained)

    Example:
        >>> tier = SqliteTier("durable_local", "/var/lib/docsync/durable_local.db")
        >>> await tier.set("quickLaunchGroups", [{"id": "g1", "apps": []}])
    """

    def __init__(
        self,
        name: str,
        db_path: str | Path,
        quota_bytes_per_item: int = 0,
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        """Initialize the SQLite tier.

        Args:
            name: Tier name
            db_path: SQLite database file
            quota_bytes_per_item: Enforced per-item quota (0 = unconstrained)
            busy_timeout_ms: SQLite busy timeout
            wal_mode: Enable SQLite WAL mode
        """
        self.name = name
        self.db_path = Path(db_path)
        self.quota_bytes_per_item = quota_bytes_per_item
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode
        self._initialized = False

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, creating the schema on first use."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit
        )
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            if not self._initialized:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value_json TEXT NOT NULL,
                        updated_at INTEGER NOT NULL
                    )
                    """
                )
                self._initialized = True
            yield conn
        finally:
            conn.close()

    async def _run(self, fn: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except sqlite3.Error as e:
            raise TierError(f"SQLite tier {self.name} failed: {e}") from e

    async def get(self, key: str) -> Any:
        """Read a value."""

        def _get() -> Any:
            with self._get_connection() as conn:
                row = conn.execute("SELECT value_json FROM kv WHERE key = ?", (key,)).fetchone()
                return row[0] if row else None

        raw = await self._run(_get)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise TierError(f"Corrupt value for {key} in tier {self.name}: {e}") from e

    async def set(self, key: str, value: Any) -> None:
        """Store a value, enforcing the quota."""
        if self.quota_bytes_per_item > 0:
            size = estimate_item_bytes(key, value)
            if size > self.quota_bytes_per_item:
                raise TierQuotaExceededError(
                    f"Item {key} is {size} bytes, quota is {self.quota_bytes_per_item}",
                    key=key,
                    size_bytes=size,
                )

        value_json = compact_json(value)
        try:
            value_json.encode("utf-8")
        except UnicodeEncodeError:
            # lone surrogates (lz-utf16 payloads) cannot be bound as TEXT
            value_json = json.dumps(value, separators=(",", ":"))
        now_ms = int(time.time() * 1000)

        def _set() -> None:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO kv (key, value_json, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json = excluded.value_json,
                        updated_at = excluded.updated_at
                    """,
                    (key, value_json, now_ms),
                )

        await self._run(_set)

    async def remove(self, key: str) -> None:
        """Remove a value."""

        def _remove() -> None:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))

        await self._run(_remove)

    async def keys(self, prefix: str = "") -> list[str]:
        """List stored keys, optionally restricted to a prefix."""

        def _keys() -> list[str]:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
                return [row[0] for row in rows]

        return await self._run(_keys)
