"""
Unit tests for the SQLite tier.

Tests cover:
- Persistence across tier instances
- Quota enforcement
- Corrupt rows and key listing
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from replica.docsync.tier.base import TierError, TierQuotaExceededError
from replica.docsync.tier.sqlite import SqliteTier


class TestSqliteTier:
    """Tests for SqliteTier."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def tier(self, data_dir):
        return SqliteTier("durable_local", Path(data_dir) / "durable.db", wal_mode=False)

    @pytest.mark.asyncio
    async def test_get_absent(self, tier):
        """Absent keys read as None."""
        assert await tier.get("missing") is None

    @pytest.mark.asyncio
    async def test_round_trip_non_ascii(self, tier):
        """Unicode values survive storage."""
        value = [{"name": "分组 😀", "apps": [{"n": 1.5, "ok": True, "none": None}]}]

        await tier.set("doc", value)

        assert await tier.get("doc") == value

    @pytest.mark.asyncio
    async def test_round_trip_lone_surrogate(self, tier):
        """Strings holding lone surrogates are stored escaped and read back intact."""
        value = "ab\ud800c\udfff"

        await tier.set("chunk", value)

        assert await tier.get("chunk") == value

    @pytest.mark.asyncio
    async def test_overwrite_and_remove(self, tier):
        """set() replaces, remove() deletes, removing twice is a no-op."""
        await tier.set("doc", 1)
        await tier.set("doc", 2)
        assert await tier.get("doc") == 2

        await tier.remove("doc")
        await tier.remove("doc")
        assert await tier.get("doc") is None

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tier, data_dir):
        """A new tier on the same file sees stored values."""
        await tier.set("doc", {"a": 1})

        reopened = SqliteTier("durable_local", Path(data_dir) / "durable.db", wal_mode=False)

        assert await reopened.get("doc") == {"a": 1}

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, data_dir):
        """The database directory is created on first use."""
        tier = SqliteTier("fast_local", Path(data_dir) / "nested" / "fast.db")

        await tier.set("k", "v")

        assert (Path(data_dir) / "nested" / "fast.db").exists()

    @pytest.mark.asyncio
    async def test_quota(self, data_dir):
        """Values over the quota are refused and the old value is kept."""
        tier = SqliteTier("cloud", Path(data_dir) / "cloud.db", quota_bytes_per_item=32, wal_mode=False)
        await tier.set("k", "small")

        with pytest.raises(TierQuotaExceededError):
            await tier.set("k", "x" * 64)

        assert await tier.get("k") == "small"

    @pytest.mark.asyncio
    async def test_corrupt_row(self, tier):
        """A row that is not JSON raises TierError."""
        await tier.set("k", 1)
        conn = sqlite3.connect(str(tier.db_path))
        conn.execute("UPDATE kv SET value_json = '{bad' WHERE key = 'k'")
        conn.commit()
        conn.close()

        with pytest.raises(TierError):
            await tier.get("k")

    @pytest.mark.asyncio
    async def test_keys_with_prefix(self, tier):
        """keys() lists keys, optionally filtered by prefix."""
        await tier.set("doc", 1)
        await tier.set("doc_chunk_r1_0", "a")
        await tier.set("other", 2)

        assert await tier.keys() == ["doc", "doc_chunk_r1_0", "other"]
        assert await tier.keys("doc_chunk_") == ["doc_chunk_r1_0"]
