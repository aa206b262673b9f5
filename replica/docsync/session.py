"""
Sync session orchestration.

A SyncSession owns one document and the three tiers it lives in:

    fast_local    - fastest local cache, read on every start, written on
                    every mutation
    durable_local - durable local store with an explicit timestamp
    cloud         - quota-constrained replicated tier, chunked

Lifecycle:
    start()  - reconcile the tiers, restore scheduler bookkeeping
    update() - write the fast local tier now, persist the rest later
    stop()   - cancel pending work, close remote tiers

Invariants:
    - update() never waits on the durable or cloud tier
    - A persist writes durable local before the cloud tier, both with the
      same timestamp
    - After stop() no tier is written

How to change safely:
    - Keep the fast local write inside update(); reconciliation relies on
      it holding the latest mutation
    - New tiers join through a TierSource, not through this class
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

from .chunk.budget import ByteBudget
from .chunk.codec import ChunkCodec, CompressionFormat
from .chunk.store import ChunkedStore
from .config import EngineConfig, TierBackend
from .reconcile.defaults import default_groups
from .reconcile.reconciler import ReconcileResult, TierReconciler
from .reconcile.sources import ChunkedCloudSource, FastLocalSource, LegacySource, TimestampedSource
from .schedule.clock import AsyncioTaskScheduler, TaskScheduler
from .schedule.sync_scheduler import SyncScheduler
from .tier.base import KeyValueTier, create_tier

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SyncSession:
    """One document kept in sync across fast local, durable local and cloud tiers.

    Attributes:
        config: Engine configuration
        document: The current in-memory document (None before start())
        store: Chunked store on the cloud tier
        reconciler: Startup reconciler
        scheduler: Background persist scheduler

    Example:
        >>> session = SyncSession(EngineConfig.from_env())
        >>> result = await session.start()
        >>> await session.update(result.document + [new_group])
        >>> await session.stop()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        fast_local: Optional[KeyValueTier] = None,
        durable_local: Optional[KeyValueTier] = None,
        cloud: Optional[KeyValueTier] = None,
        task_scheduler: Optional[TaskScheduler] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        """Initialize the session.

        Tiers not passed in are built from the configuration.

        Args:
            config: Engine configuration (defaults if not provided)
            fast_local: Fast local cache tier
            durable_local: Durable local tier
            cloud: Quota-constrained replicated tier
            task_scheduler: Timer provider (asyncio loop by default)
            clock: Returns the current time in Unix ms
        """
        self.config = config or EngineConfig()
        cfg = self.config
        self.clock = clock or (task_scheduler.now_ms if task_scheduler else _now_ms)

        self.fast_local = fast_local or create_tier(
            cfg.local_backend, cfg, "fast_local", cfg.sqlite.fast_local_file
        )
        self.durable_local = durable_local or create_tier(
            cfg.local_backend, cfg, "durable_local", cfg.sqlite.durable_local_file
        )
        self.cloud = cloud or create_tier(
            cfg.cloud_backend,
            cfg,
            "cloud",
            cfg.sqlite.cloud_file,
            quota_bytes_per_item=cfg.chunk.quota_bytes_per_item,
        )

        key = cfg.reconcile.document_key
        self.store = ChunkedStore(
            self.cloud,
            budget=ByteBudget.for_tier(
                self.cloud,
                safety_margin_bytes=cfg.chunk.safety_margin_bytes,
                min_item_bytes=cfg.chunk.min_item_bytes,
            ),
            codec=ChunkCodec(
                fallback_chunk_chars=cfg.chunk.fallback_chunk_chars,
                compression=CompressionFormat(cfg.chunk.compression),
            ),
        )

        self.fast_source = FastLocalSource(
            self.fast_local, key, trust_timestamp=cfg.reconcile.trust_fast_local_timestamp
        )
        self.durable_source = TimestampedSource(self.durable_local, key)
        self.cloud_source = ChunkedCloudSource(self.store, key, compress=cfg.chunk.compress)
        self.legacy_source = LegacySource(self.cloud, cfg.reconcile.legacy_key)

        group_name = cfg.reconcile.default_group_name
        self.reconciler = TierReconciler(
            primary=self.fast_source,
            sources=[self.durable_source, self.cloud_source, self.legacy_source],
            throttle_ms=cfg.reconcile.throttle_ms,
            default_factory=lambda: default_groups(group_name),
            default_group_name=group_name,
            clock=self.clock,
        )

        self.task_scheduler = task_scheduler or AsyncioTaskScheduler()
        self.scheduler = SyncScheduler(
            persist=self.persist,
            scheduler=self.task_scheduler,
            state_tier=self.fast_local if cfg.scheduler.persist_state else None,
            debounce_seconds=cfg.scheduler.debounce_seconds,
            idle_timeout_seconds=cfg.scheduler.idle_timeout_seconds,
        )

        self.document: Any = None
        self._started = False

    async def start(self, force: bool = False) -> ReconcileResult:
        """Reconcile the tiers and load scheduler bookkeeping.

        Args:
            force: Ignore the reconcile throttle guard

        Returns:
            ReconcileResult with the authoritative document

        Raises:
            TierError: If the fast local tier could not be written
        """
        cfg = self.config
        if TierBackend.SQLITE in (cfg.local_backend, cfg.cloud_backend):
            Path(cfg.sqlite.data_dir).mkdir(parents=True, exist_ok=True)

        await self.scheduler.load_state()
        result = await self.reconciler.reconcile(force=force)
        self.document = result.document
        if not result.skipped:
            self.scheduler.mark_persisted(result.document)
        self._started = True

        logger.info(
            "Sync session started",
            extra={"source": result.source, "skipped": result.skipped},
        )
        return result

    async def update(self, document: Any) -> bool:
        """Apply a mutation.

        The fast local tier is written immediately; the durable and cloud
        tiers are written by the scheduler after the debounce period.

        Returns:
            True if a background persist was scheduled

        Raises:
            TierError: If the fast local tier could not be written
        """
        self.document = document
        await self.fast_source.write(document, self.clock())
        return self.scheduler.notify(document)

    async def persist(self, document: Any) -> None:
        """Write a document to the durable local and cloud tiers.

        Both tiers are attempted; the first failure is re-raised.
        """
        timestamp = self.clock()
        errors = []
        for source in (self.durable_source, self.cloud_source):
            try:
                await source.write(document, timestamp)
            except Exception as e:
                logger.warning(
                    f"Failed to persist document to {source.name}: {e}",
                    extra={"tier": source.name, "timestamp": timestamp},
                )
                errors.append(e)
        if errors:
            raise errors[0]

    async def import_document(self, document: Any) -> None:
        """Replace the document and push it to every tier immediately.

        Raises:
            TierError: If the fast local tier could not be written
            Exception: Whatever persisting to the other tiers raised
        """
        self.document = document
        await self.fast_source.write(document, self.clock())
        await self.scheduler.persist_now(document)
        logger.info("Document imported")

    async def stop(self) -> None:
        """Cancel pending work and release tier resources."""
        await self.scheduler.close()
        await self.reconciler.cancel_pending()
        for tier in (self.fast_local, self.durable_local, self.cloud):
            close = getattr(tier, "close", None)
            if close is not None:
                await close()
        self._started = False
        logger.info("Sync session stopped")

    async def __aenter__(self) -> SyncSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    @property
    def stats(self) -> dict[str, Any]:
        """Get session statistics."""
        return {
            "started": self._started,
            "reconciler": self.reconciler.stats,
            "scheduler": self.scheduler.stats,
        }
