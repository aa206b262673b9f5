"""
Debounced, change-suppressed background persistence.

Every mutation of the document calls notify(). The scheduler collapses a
burst of mutations into one persist call carrying the latest content, and
skips persisting content that is already stored.

State machine:
    Idle --notify(new content)--> Debouncing
    Debouncing --notify(new content)--> Debouncing (timer restarted)
    Debouncing --timer fires--> IdleWaiting
    IdleWaiting --idle slot--> Persisting
    Persisting --done--> Idle

    notify() with the last persisted content cancels any pending work.
    notify() with the last queued content is a no-op.

Invariants:
    - At most one timer and one idle callback are pending at a time
    - A persist only runs if its revision is still the newest one
    - Persists never overlap; a persist started late re-checks its revision
      after the previous one has finished
    - A failed persist arms no retry; the next notify() re-arms the timer
      even for identical content

How to change safely:
    - Always bump the revision before arming a new timer
    - Never persist from notify() itself; it must stay synchronous and cheap
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..tier.base import KeyValueTier, TierError
from .clock import Handle, TaskScheduler
from .fingerprint import fingerprint

logger = logging.getLogger(__name__)

SYNC_STATE_KEY = "docsync_sync_state"

PersistFn = Callable[[Any], Awaitable[None]]


@dataclass
class SchedulerState:
    """Scheduler bookkeeping.

    Attributes:
        last_persisted: Fingerprint of the last successfully persisted content
        last_queued: Fingerprint of the content currently scheduled
        revision: Incremented on every accepted notification
    """

    last_persisted: Optional[str] = None
    last_queued: Optional[str] = None
    revision: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastPersisted": self.last_persisted,
            "lastQueued": self.last_queued,
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SchedulerState:
        if not isinstance(data, dict):
            return cls()
        revision = data.get("revision", 0)
        return cls(
            last_persisted=data.get("lastPersisted") if isinstance(data.get("lastPersisted"), str) else None,
            last_queued=data.get("lastQueued") if isinstance(data.get("lastQueued"), str) else None,
            revision=revision if isinstance(revision, int) and not isinstance(revision, bool) else 0,
        )


class SyncScheduler:
    """Coalesces document mutations into deferred persist calls.

    Attributes:
        state: Current bookkeeping
        debounce_seconds: Quiet period after the last mutation
        idle_timeout_seconds: Upper bound passed to call_idle()

    Example:
        >>> scheduler = SyncScheduler(persist=session.persist, scheduler=AsyncioTaskScheduler())
        >>> scheduler.notify(document)
        True
        >>> scheduler.notify(document)  # same content, already queued
        False
    """

    def __init__(
        self,
        persist: PersistFn,
        scheduler: TaskScheduler,
        state_tier: Optional[KeyValueTier] = None,
        debounce_seconds: float = 2.0,
        idle_timeout_seconds: float = 2.0,
        state_key: str = SYNC_STATE_KEY,
    ) -> None:
        """Initialize the scheduler.

        Args:
            persist: Coroutine function writing a document to durable tiers
            scheduler: Timer and idle-callback provider
            state_tier: Tier the bookkeeping is mirrored into (optional)
            debounce_seconds: Quiet period before persisting
            idle_timeout_seconds: Upper bound on waiting for an idle slot
            state_key: Key the bookkeeping is stored under
        """
        self._persist_fn = persist
        self._scheduler = scheduler
        self._state_tier = state_tier
        self._state_key = state_key
        self.debounce_seconds = debounce_seconds
        self.idle_timeout_seconds = idle_timeout_seconds

        self.state = SchedulerState()
        self._saved_state: Dict[str, Any] = self.state.to_dict()
        self._timer: Optional[Handle] = None
        self._idle: Optional[Handle] = None
        self._lock = asyncio.Lock()
        self._closed = False

        # Statistics
        self._notify_count = 0
        self._suppressed_count = 0
        self._persist_count = 0
        self._failure_count = 0
        self._stale_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> bool:
        """Whether a timer or idle callback is armed."""
        return self._timer is not None or self._idle is not None

    def notify(self, document: Any) -> bool:
        """Record a mutation of the document.

        Args:
            document: The current document

        Returns:
            True if a persist was scheduled, False if suppressed
        """
        if self._closed:
            logger.debug("Ignoring notification after close")
            return False

        self._notify_count += 1
        current = fingerprint(document)

        if current == self.state.last_persisted:
            # Reverted to the stored content; drop whatever is pending.
            if self.pending:
                self._cancel_handles()
                self.state.revision += 1
            self.state.last_queued = None
            self._suppressed_count += 1
            return False

        if current == self.state.last_queued:
            self._suppressed_count += 1
            return False

        self._cancel_handles()
        self.state.revision += 1
        self.state.last_queued = current
        revision = self.state.revision

        self._timer = self._scheduler.call_later(
            self.debounce_seconds,
            lambda: self._on_timer(revision, document, current),
        )
        logger.debug(
            "Persist scheduled",
            extra={"revision": revision, "fingerprint": current},
        )
        return True

    def _on_timer(self, revision: int, document: Any, content_fp: str) -> None:
        self._timer = None
        if revision != self.state.revision or self._closed:
            self._stale_count += 1
            return
        self._idle = self._scheduler.call_idle(
            lambda: self._run_persist(revision, document, content_fp),
            self.idle_timeout_seconds,
        )

    async def _run_persist(self, revision: int, document: Any, content_fp: str) -> None:
        if self._idle is not None and revision == self.state.revision:
            self._idle = None

        async with self._lock:
            if revision != self.state.revision or self._closed:
                self._stale_count += 1
                logger.debug(
                    f"Skipping stale persist for revision {revision}",
                    extra={"revision": revision, "current_revision": self.state.revision},
                )
                return

            try:
                await self._persist_fn(document)
            except Exception as e:
                self._failure_count += 1
                logger.warning(
                    f"Background persist failed: {e}",
                    extra={"revision": revision},
                )
                if self.state.last_queued == content_fp:
                    self.state.last_queued = None
                return

            self._persist_count += 1
            self.state.last_persisted = content_fp
            logger.debug("Document persisted", extra={"revision": revision})
            await self.save_state()

    async def persist_now(self, document: Any) -> None:
        """Persist immediately, superseding anything pending.

        Raises:
            Exception: Whatever the persist function raises
        """
        self._cancel_handles()
        self.state.revision += 1
        content_fp = fingerprint(document)
        self.state.last_queued = content_fp
        async with self._lock:
            try:
                await self._persist_fn(document)
            except Exception:
                self._failure_count += 1
                self.state.last_queued = None
                raise
            self._persist_count += 1
            self.state.last_persisted = content_fp
        await self.save_state()

    def mark_persisted(self, document: Any) -> None:
        """Record content that is already stored everywhere (e.g. just reconciled)."""
        self.state.last_persisted = fingerprint(document)

    def _cancel_handles(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._idle is not None:
            self._idle.cancel()
            self._idle = None

    async def close(self) -> None:
        """Cancel pending work and ignore later notifications."""
        if self._closed:
            return
        self._closed = True
        self._cancel_handles()
        if self.state.to_dict() != self._saved_state:
            await self.save_state()
        logger.debug("Sync scheduler closed", extra=self.stats)

    async def load_state(self) -> None:
        """Restore bookkeeping from the state tier.

        A queued fingerprint from a previous run is not restored: its timer
        died with that run.
        """
        if self._state_tier is None:
            return
        try:
            raw = await self._state_tier.get(self._state_key)
        except TierError as e:
            logger.warning(f"Failed to load sync state: {e}")
            return
        loaded = SchedulerState.from_dict(raw)
        self.state = SchedulerState(
            last_persisted=loaded.last_persisted,
            last_queued=None,
            revision=loaded.revision,
        )
        self._saved_state = self.state.to_dict()

    async def save_state(self) -> None:
        """Mirror bookkeeping into the state tier (best-effort)."""
        if self._state_tier is None:
            return
        try:
            snapshot = self.state.to_dict()
            await self._state_tier.set(self._state_key, snapshot)
            self._saved_state = snapshot
        except TierError as e:
            logger.warning(f"Failed to save sync state: {e}")

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "notifications": self._notify_count,
            "suppressed": self._suppressed_count,
            "persisted": self._persist_count,
            "failures": self._failure_count,
            "stale_skipped": self._stale_count,
            "revision": self.state.revision,
            "pending": self.pending,
            "closed": self._closed,
        }
