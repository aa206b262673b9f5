"""
Integration tests for SyncSession and the inspect tool.

Tests cover:
- Cold start, debounced persistence and restart
- Large documents split across cloud items, gzip and lz-utf16
- Partial tier failures during persist
- Importing a backup through the inspect tool on SQLite tiers
"""

import hashlib
import json
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from replica.docsync.chunk.meta import ChunkedMeta
from replica.docsync.config import ChunkConfig, EngineConfig, SqliteConfig, TierBackend
from replica.docsync.reconcile.defaults import default_groups
from replica.docsync.schedule.clock import ManualTaskScheduler
from replica.docsync.session import SyncSession
from replica.docsync.tier.memory import InMemoryTier
from replica.docsync.tools.inspect import InspectTool

KEY = "quickLaunchGroups"
START_MS = 1_700_000_000_000


def _groups(count: int = 1, apps_per_group: int = 2):
    return [
        {
            "id": f"g{g}",
            "name": f"Group {g}",
            "apps": [
                {
                    "id": f"{g}-{a}",
                    "name": hashlib.sha256(f"{g}-{a}".encode()).hexdigest(),
                    "url": f"https://example.com/{g}/{a}",
                }
                for a in range(apps_per_group)
            ],
        }
        for g in range(count)
    ]


def _memory_config() -> EngineConfig:
    return EngineConfig(local_backend=TierBackend.MEMORY, cloud_backend=TierBackend.MEMORY)


class TestSyncSession:
    """End-to-end flows over in-memory tiers."""

    @pytest.fixture
    def tiers(self):
        return (
            InMemoryTier("fast_local"),
            InMemoryTier("durable_local"),
            InMemoryTier("cloud", quota_bytes_per_item=8192),
        )

    @pytest.fixture
    def clock(self):
        return ManualTaskScheduler(start_ms=START_MS)

    @pytest_asyncio.fixture
    async def session(self, tiers, clock):
        fast, durable, cloud = tiers
        session = SyncSession(
            _memory_config(),
            fast_local=fast,
            durable_local=durable,
            cloud=cloud,
            task_scheduler=clock,
        )
        yield session
        await session.stop()

    @pytest.mark.asyncio
    async def test_cold_start_uses_default(self, session, tiers):
        """All tiers empty: the built-in default is restored everywhere."""
        fast, durable, _ = tiers

        result = await session.start()
        await session.reconciler.drain()

        assert result.source == "default"
        assert session.document == default_groups()
        assert fast.snapshot()[KEY] == default_groups()
        assert durable.snapshot()[f"{KEY}_timestamp"] == START_MS
        assert await session.store.read(KEY) == default_groups()

    @pytest.mark.asyncio
    async def test_update_persists_after_debounce(self, session, tiers, clock):
        """update() writes fast local now and the other tiers after the quiet period."""
        fast, durable, _ = tiers
        await session.start()
        await session.reconciler.drain()
        document = _groups()

        assert await session.update(document) is True
        assert fast.snapshot()[KEY] == document
        assert durable.snapshot()[KEY] == default_groups()

        await clock.settle(2.0)

        assert durable.snapshot()[KEY] == document
        assert await session.store.read(KEY) == document
        assert durable.snapshot()[f"{KEY}_timestamp"] == START_MS + 2000
        assert tiers[2].snapshot()[f"{KEY}_timestamp"] == START_MS + 2000

    @pytest.mark.asyncio
    async def test_reconciled_document_not_repersisted(self, session, clock, tiers):
        """Notifying the document just reconciled schedules nothing."""
        result = await session.start()
        await session.reconciler.drain()

        assert await session.update(result.document) is False
        await clock.settle(5.0)

        assert session.scheduler.stats["persisted"] == 0

    @pytest.mark.asyncio
    async def test_restart_restores_persisted_document(self, session, tiers, clock):
        """A new session on the same tiers restores the last persisted document."""
        fast, durable, cloud = tiers
        await session.start()
        await session.reconciler.drain()
        document = _groups(count=2)
        await session.update(document)
        await clock.settle(2.0)
        await session.stop()

        later = ManualTaskScheduler(start_ms=START_MS + 60_000)
        restarted = SyncSession(
            _memory_config(),
            fast_local=fast,
            durable_local=durable,
            cloud=cloud,
            task_scheduler=later,
        )
        try:
            result = await restarted.start()

            assert result.document == document
            assert result.source == "durable_local"
            assert result.timestamp == START_MS + 2000
            assert restarted.scheduler.notify(document) is False
        finally:
            await restarted.stop()

    @pytest.mark.asyncio
    async def test_large_document_is_chunked(self, session, tiers, clock):
        """A document over the per-item quota is split into chunks."""
        _, _, cloud = tiers
        await session.start()
        await session.reconciler.drain()
        document = _groups(count=20, apps_per_group=20)

        await session.update(document)
        await clock.settle(2.0)

        meta = await session.store.read_meta(KEY)
        assert isinstance(meta, ChunkedMeta)
        assert meta.chunk_count > 1
        assert await session.store.read(KEY) == document

    @pytest.mark.asyncio
    async def test_lz_utf16_compression(self, tiers, clock):
        """A session configured for lz-utf16 writes and reads that format."""
        fast, durable, cloud = tiers
        config = EngineConfig(
            local_backend=TierBackend.MEMORY,
            cloud_backend=TierBackend.MEMORY,
            chunk=ChunkConfig(compression="lz-utf16"),
        )
        session = SyncSession(config, fast_local=fast, durable_local=durable, cloud=cloud, task_scheduler=clock)
        try:
            await session.start()
            await session.reconciler.drain()
            document = _groups(count=20, apps_per_group=20)

            await session.update(document)
            await clock.settle(2.0)

            meta = await session.store.read_meta(KEY)
            assert meta.codec == "lz-utf16"
            assert await session.store.read(KEY) == document
        finally:
            await session.stop()

    @pytest.mark.asyncio
    async def test_cloud_failure_keeps_durable_write(self, session, tiers, clock):
        """A failing cloud tier does not stop the durable local write."""
        _, durable, cloud = tiers
        await session.start()
        await session.reconciler.drain()
        cloud.fail_on_set = lambda key: True
        document = _groups()

        await session.update(document)
        await clock.settle(2.0)

        assert durable.snapshot()[KEY] == document
        assert session.scheduler.stats["failures"] == 1
        assert session.scheduler.state.last_queued is None

    @pytest.mark.asyncio
    async def test_import_document_writes_everywhere(self, session, tiers):
        """import_document() pushes to every tier without waiting."""
        fast, durable, _ = tiers
        await session.start()
        await session.reconciler.drain()
        document = _groups(count=3)

        await session.import_document(document)

        assert fast.snapshot()[KEY] == document
        assert durable.snapshot()[KEY] == document
        assert await session.store.read(KEY) == document

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_persist(self, session, tiers, clock):
        """Pending work is dropped on stop()."""
        _, durable, _ = tiers
        await session.start()
        await session.reconciler.drain()

        await session.update(_groups())
        await session.stop()
        await clock.settle(5.0)

        assert durable.snapshot()[KEY] == default_groups()
        assert session.stats["started"] is False


class TestInspectTool:
    """Inspect commands against SQLite tier files."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def config(self, data_dir):
        return EngineConfig(
            local_backend=TierBackend.SQLITE,
            cloud_backend=TierBackend.SQLITE,
            sqlite=SqliteConfig(data_dir=data_dir, wal_mode=False),
        )

    @pytest.mark.asyncio
    async def test_show_absent(self, config):
        """show on an empty tier set reports an absent document."""
        result = await InspectTool(config).run("show")

        assert result.success
        assert "Format: absent" in result.lines

    @pytest.mark.asyncio
    async def test_reconcile_then_read(self, config):
        """A forced reconcile seeds the default, which read then prints."""
        reconciled = await InspectTool(config).run("reconcile")
        assert reconciled.success
        assert "Source: default" in reconciled.lines

        read = await InspectTool(config).run("read")

        assert read.success
        assert json.loads(read.lines[0]) == default_groups()

    @pytest.mark.asyncio
    async def test_import_legacy_backup(self, config, data_dir):
        """An older backup with a flat item list is imported as one group."""
        backup = Path(data_dir) / "backup.json"
        apps = [{"id": "1", "name": "Mail", "url": "https://mail.example.com"}]
        backup.write_text(json.dumps({"quickLaunchApps": apps}), encoding="utf-8")

        imported = await InspectTool(config).run("import", backup)
        assert imported.success

        read = await InspectTool(config).run("read")
        assert json.loads(read.lines[0])[0]["apps"] == apps

    @pytest.mark.asyncio
    async def test_import_without_document(self, config, data_dir):
        """A backup with nothing usable fails."""
        backup = Path(data_dir) / "backup.json"
        backup.write_text(json.dumps({"other": 1}), encoding="utf-8")

        result = await InspectTool(config).run("import", backup)

        assert not result.success

    @pytest.mark.asyncio
    async def test_clear(self, config):
        """clear removes the stored document."""
        await InspectTool(config).run("reconcile")

        cleared = await InspectTool(config).run("clear")
        read = await InspectTool(config).run("read")

        assert cleared.success
        assert not read.success
