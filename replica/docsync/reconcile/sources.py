"""
Tier sources consulted by the reconciler.

A source adapts one storage tier to the reconciliation contract:
read() yields a TierRecord (document + timestamp) or None, write() stores
a document together with its timestamp.

Sources, in reconciliation priority order:
    DURABLE_LOCAL  - durable local store, explicit timestamp
    CHUNKED_CLOUD  - quota-constrained replicated tier (chunked), explicit timestamp
    FAST_LOCAL     - fastest local cache, no reliable timestamp
    LEGACY         - old flat item list, read-only, oldest of all

Invariants:
    - read() never returns a record whose document is None
    - Timestamps are Unix milliseconds; anything else reads as "no timestamp"
    - A document is always written before the timestamp describing it
    - Writes through one source run one at a time, so a document and its
      timestamp are never interleaved with another write's pair
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from ..chunk.store import ChunkedStore
from ..tier.base import KeyValueTier

logger = logging.getLogger(__name__)


class SourceKind(Enum):
    """What kind of tier a source reads."""

    DURABLE_LOCAL = "durable_local"
    CHUNKED_CLOUD = "chunked_cloud"
    FAST_LOCAL = "fast_local"
    LEGACY = "legacy"


@dataclass(frozen=True)
class TierRecord:
    """The document copy held by one tier.

    Attributes:
        document: Document value
        timestamp: Unix ms of the last write, None when the tier has none
        kind: Source kind
        source: Source name
    """

    document: Any
    timestamp: Optional[int]
    kind: SourceKind
    source: str


@runtime_checkable
class TierSource(Protocol):
    """Protocol for reconciliation sources."""

    name: str
    kind: SourceKind
    writable: bool

    async def read(self) -> Optional[TierRecord]:
        ...

    async def write(self, document: Any, timestamp: int) -> None:
        ...


def _as_timestamp(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


class TimestampedSource:
    """Document and timestamp stored side by side on a plain tier."""

    writable = True

    def __init__(
        self,
        tier: KeyValueTier,
        key: str,
        timestamp_key: Optional[str] = None,
        name: Optional[str] = None,
        kind: SourceKind = SourceKind.DURABLE_LOCAL,
    ) -> None:
        self.tier = tier
        self.key = key
        self.timestamp_key = timestamp_key or f"{key}_timestamp"
        self.name = name or tier.name
        self.kind = kind
        self._write_lock = asyncio.Lock()

    async def read(self) -> Optional[TierRecord]:
        document = await self.tier.get(self.key)
        if document is None:
            return None
        timestamp = _as_timestamp(await self.tier.get(self.timestamp_key))
        return TierRecord(document, timestamp, self.kind, self.name)

    async def write(self, document: Any, timestamp: int) -> None:
        async with self._write_lock:
            await self.tier.set(self.key, document)
            await self.tier.set(self.timestamp_key, timestamp)


class ChunkedCloudSource:
    """Document stored as a chunk set on the quota-constrained tier.

    Raw values written by versions that predate chunking are returned
    as-is by ChunkedStore.read(), so they are picked up here too.
    """

    writable = True
    kind = SourceKind.CHUNKED_CLOUD

    def __init__(
        self,
        store: ChunkedStore,
        key: str,
        timestamp_key: Optional[str] = None,
        compress: bool = True,
        name: Optional[str] = None,
    ) -> None:
        self.store = store
        self.key = key
        self.timestamp_key = timestamp_key or f"{key}_timestamp"
        self.compress = compress
        self.name = name or store.tier.name
        self._write_lock = asyncio.Lock()

    async def read(self) -> Optional[TierRecord]:
        document = await self.store.read(self.key)
        if document is None:
            return None
        timestamp = _as_timestamp(await self.store.tier.get(self.timestamp_key))
        return TierRecord(document, timestamp, self.kind, self.name)

    async def write(self, document: Any, timestamp: int) -> None:
        async with self._write_lock:
            await self.store.write(self.key, document, compress=self.compress)
            await self.store.tier.set(self.timestamp_key, timestamp)


class FastLocalSource:
    """Fastest local cache; the primary copy the application observes.

    Its stored timestamp is bookkeeping only and is not trusted for
    ranking unless trust_timestamp is set, so its record carries no
    timestamp and ranks below every timestamped tier.
    """

    writable = True
    kind = SourceKind.FAST_LOCAL

    def __init__(
        self,
        tier: KeyValueTier,
        key: str,
        timestamp_key: Optional[str] = None,
        trust_timestamp: bool = False,
        name: Optional[str] = None,
    ) -> None:
        self.tier = tier
        self.key = key
        self.timestamp_key = timestamp_key or f"{key}_local_timestamp"
        self.trust_timestamp = trust_timestamp
        self.name = name or tier.name
        self._write_lock = asyncio.Lock()

    async def read(self) -> Optional[TierRecord]:
        document = await self.tier.get(self.key)
        if document is None:
            return None
        timestamp = None
        if self.trust_timestamp:
            timestamp = _as_timestamp(await self.tier.get(self.timestamp_key))
        return TierRecord(document, timestamp, self.kind, self.name)

    async def read_timestamp(self) -> Optional[int]:
        """Stored local write time (bookkeeping)."""
        return _as_timestamp(await self.tier.get(self.timestamp_key))

    async def write(self, document: Any, timestamp: int) -> None:
        async with self._write_lock:
            await self.tier.set(self.key, document)
            await self.tier.set(self.timestamp_key, timestamp)


class LegacySource:
    """Old single-shot flat item list. Read-only."""

    writable = False
    kind = SourceKind.LEGACY

    def __init__(self, tier: KeyValueTier, key: str = "quickLaunchApps", name: Optional[str] = None) -> None:
        self.tier = tier
        self.key = key
        self.name = name or f"{tier.name}:legacy"

    async def read(self) -> Optional[TierRecord]:
        items = await self.tier.get(self.key)
        if not isinstance(items, list) or not items:
            return None
        return TierRecord(items, None, self.kind, self.name)

    async def write(self, document: Any, timestamp: int) -> None:
        raise NotImplementedError("Legacy source is read-only")
