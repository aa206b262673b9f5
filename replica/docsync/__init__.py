"""
docsync - replicated document synchronization engine.

Keeps a single mutable JSON document (the launcher "groups" configuration)
consistent across storage tiers that differ in durability, latency and
per-item byte quota:

Architecture:
    ┌─────────────┐     ┌───────────────┐     ┌──────────────┐
    │   update()  │────▶│ SyncScheduler │────▶│ ChunkedStore │
    │ (mutation)  │     │  (debounce)   │     │   (write)    │
    └─────────────┘     └───────────────┘     └──────┬───────┘
                                                     │
                                                     ▼
                                              ┌──────────────┐
                                              │  ChunkCodec  │
                                              │(split/encode)│
                                              └──────┬───────┘
                                                     │
                        ┌────────────────────────────┼───────────────┐
                        ▼                            ▼               ▼
                   ┌─────────┐                 ┌──────────┐    ┌──────────┐
                   │  fast   │                 │ durable  │    │  cloud   │
                   │  local  │                 │  local   │    │ (quota)  │
                   └─────────┘                 └──────────┘    └──────────┘

    On session start the TierReconciler reads every tier in parallel,
    picks the copy with the newest timestamp and writes it back everywhere.

Invariants:
    - decode(encode(D)) == D for every JSON document D
    - Every stored chunk fits the tier quota minus the safety margin
    - Readers never observe a mix of old and new chunks (revisioned keys,
      meta record published last)
    - Last writer wins at whole-document granularity

How to change safely:
    - Chunk key naming and the meta record shape are persisted formats;
      readers must keep accepting every shape ever written
    - New tiers must implement the KeyValueTier protocol
"""

from ._version import __version__

__all__ = ["__version__"]
