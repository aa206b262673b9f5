"""
Startup reconciliation of the document across tiers.

The TierReconciler reads every tier in parallel, picks the authoritative
copy and writes it back to every tier. It runs once per session start.

Selection:
    - Sources are walked in priority order (durable local, chunked cloud,
      fast local); legacy is only consulted when everything else is empty
    - A record replaces the current best only if it ranks strictly higher;
      on equal rank the earlier (higher-priority) source is kept
    - Rank: any real timestamp outranks "no timestamp"; among real
      timestamps the larger wins
    - Legacy only: its flat item list is wrapped into one synthetic group
      (timestamp 0, so any real copy elsewhere wins later)
    - Cold start: the built-in default document, timestamped now

Write-back:
    - The primary (fast local) source is written first and its failure
      propagates to the caller
    - Every other writable source is written in a background task; a
      failure is logged and does not affect the result

Throttle:
    - A guard timestamp in the fast local tier suppresses a second full run
      within throttle_ms; the throttled run returns the fast local copy

Invariants:
    - A source whose read raises contributes nothing (treated as empty)
    - The winner's timestamp is propagated unchanged, so a second run with
      no intervening mutation rewrites identical timestamps
    - The reconciler keeps no state between runs except pending write tasks

How to change safely:
    - Keep the tie-break: stability beats freshness on equal timestamps
    - Never let a non-primary write failure reach the caller
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Set, Tuple

from ..tier.base import KeyValueTier, TierError
from .defaults import default_groups, is_empty_document, migrate_legacy_apps
from .sources import FastLocalSource, SourceKind, TierRecord, TierSource

logger = logging.getLogger(__name__)

RECONCILE_GUARD_KEY = "docsync_last_reconcile"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation.

    Attributes:
        document: The authoritative document
        timestamp: Its timestamp (Unix ms)
        source: Name of the winning source, "legacy", "default" or "throttled"
        skipped: True when the throttle guard suppressed the full run
    """

    document: Any
    timestamp: int
    source: str
    skipped: bool = False


def _rank(record: TierRecord) -> Tuple[int, int]:
    if record.timestamp is None:
        return (0, 0)
    return (1, record.timestamp)


class TierReconciler:
    """Chooses one authoritative document among tier copies.

    Attributes:
        primary: Fast local source (written synchronously)
        sources: Remaining sources in priority order
        throttle_ms: Minimum interval between full runs

    Example:
        >>> reconciler = TierReconciler(
        ...     primary=FastLocalSource(fast_tier, "quickLaunchGroups"),
        ...     sources=[durable_source, cloud_source, legacy_source],
        ... )
        >>> result = await reconciler.reconcile()
        >>> result.source
        'durable_local'
    """

    def __init__(
        self,
        primary: FastLocalSource,
        sources: Sequence[TierSource],
        throttle_ms: int = 3000,
        default_factory: Callable[[], Any] = default_groups,
        default_group_name: str = "Default",
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        """Initialize the reconciler.

        Args:
            primary: Fast local source; also holds the throttle guard
            sources: Other sources in priority order (legacy anywhere)
            throttle_ms: Minimum interval between full runs
            default_factory: Builds the cold-start document
            default_group_name: Group name used for legacy migration
            clock: Returns the current time in Unix ms
        """
        self.primary = primary
        self.sources = list(sources)
        self.throttle_ms = throttle_ms
        self.default_factory = default_factory
        self.default_group_name = default_group_name
        self.clock = clock
        self._pending: Set[asyncio.Task] = set()
        self._run_count = 0
        self._skip_count = 0

    @property
    def guard_tier(self) -> KeyValueTier:
        return self.primary.tier

    def _candidates(self) -> List[TierSource]:
        """Sources walked in priority order: durable/cloud first, fast local after."""
        ordered = [s for s in self.sources if s.kind != SourceKind.LEGACY]
        ordered.append(self.primary)
        return ordered

    def _legacy_sources(self) -> List[TierSource]:
        return [s for s in self.sources if s.kind == SourceKind.LEGACY]

    async def reconcile(self, force: bool = False) -> ReconcileResult:
        """Run one reconciliation.

        Args:
            force: Ignore the throttle guard

        Returns:
            ReconcileResult with the authoritative document

        Raises:
            TierError: If writing the primary (fast local) source failed
        """
        now = self.clock()

        if not force:
            throttled = await self._throttled_result(now)
            if throttled is not None:
                self._skip_count += 1
                return throttled

        try:
            await self.guard_tier.set(RECONCILE_GUARD_KEY, now)
        except TierError as e:
            logger.warning(f"Failed to record reconcile guard: {e}")

        self._run_count += 1

        candidates = self._candidates()
        legacy = self._legacy_sources()
        records = await asyncio.gather(*(self._safe_read(s) for s in candidates + legacy))
        candidate_records = records[: len(candidates)]
        legacy_records = records[len(candidates):]

        best: Optional[TierRecord] = None
        for record in candidate_records:
            if record is None or is_empty_document(record.document):
                continue
            if best is None or _rank(record) > _rank(best):
                best = record

        if best is not None:
            document = best.document
            timestamp = best.timestamp if best.timestamp is not None else now
            source = best.source
        else:
            legacy_record = next(
                (r for r in legacy_records if r is not None and not is_empty_document(r.document)),
                None,
            )
            if legacy_record is not None:
                logger.info("Migrating legacy item list to groups")
                document = migrate_legacy_apps(legacy_record.document, self.default_group_name)
                timestamp = 0
                source = "legacy"
            else:
                logger.info("No stored document found, using built-in default")
                document = self.default_factory()
                timestamp = now
                source = "default"

        logger.info(
            f"Restoring document from {source}",
            extra={"source": source, "timestamp": timestamp},
        )

        await self.primary.write(document, timestamp)

        for target in candidates:
            if target is self.primary or not target.writable:
                continue
            self._spawn_write(target, document, timestamp)

        return ReconcileResult(document=document, timestamp=timestamp, source=source)

    async def _throttled_result(self, now: int) -> Optional[ReconcileResult]:
        try:
            guard = await self.guard_tier.get(RECONCILE_GUARD_KEY)
        except TierError as e:
            logger.warning(f"Failed to read reconcile guard: {e}")
            return None

        if not isinstance(guard, (int, float)) or now - guard >= self.throttle_ms or now < guard:
            return None

        record = await self._safe_read(self.primary)
        if record is None or is_empty_document(record.document):
            return None

        logger.debug("Skipping reconcile - throttled")
        timestamp = await self.primary.read_timestamp()
        return ReconcileResult(
            document=record.document,
            timestamp=timestamp if timestamp is not None else int(guard),
            source="throttled",
            skipped=True,
        )

    async def _safe_read(self, source: TierSource) -> Optional[TierRecord]:
        try:
            return await source.read()
        except Exception as e:
            logger.warning(f"Failed to read from {source.name}: {e}")
            return None

    def _spawn_write(self, target: TierSource, document: Any, timestamp: int) -> None:
        task = asyncio.create_task(self._background_write(target, document, timestamp))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _background_write(self, target: TierSource, document: Any, timestamp: int) -> None:
        try:
            await target.write(document, timestamp)
        except Exception as e:
            logger.warning(f"Failed to write reconciled document to {target.name}: {e}")

    async def drain(self) -> None:
        """Wait for every background write-back to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def cancel_pending(self) -> None:
        """Cancel background write-backs (session teardown)."""
        for task in list(self._pending):
            task.cancel()
        await self.drain()

    @property
    def stats(self) -> dict[str, Any]:
        """Get reconciler statistics."""
        return {
            "runs": self._run_count,
            "skipped": self._skip_count,
            "pending_writes": len(self._pending),
        }
