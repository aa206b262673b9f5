"""
Key-value tier abstraction for docsync.

This module provides a pluggable storage tier interface supporting:
- SQLite (fast local cache and durable local store)
- Remote key-value storage server over HTTP (replicated, quota-constrained)
- In-memory (for testing)

Every tier is an external collaborator reached only through the narrow
get/set/remove contract; the engine never assumes more.

Invariants:
    - get() of an absent key returns None
    - A failed set() never leaves a partial value behind
    - Quotas are measured in encoded bytes, not characters

How to change safely:
    - New backends must implement the KeyValueTier protocol
    - Test quota behaviour with non-ASCII payloads
"""

from .base import (
    KeyValueTier,
    TierConnectionError,
    TierError,
    TierQuotaExceededError,
    create_tier,
)
from .http import HttpTier
from .memory import InMemoryTier
from .sqlite import SqliteTier

__all__ = [
    # Protocol and errors
    "KeyValueTier",
    "TierError",
    "TierConnectionError",
    "TierQuotaExceededError",
    # Factory
    "create_tier",
    # Implementations
    "HttpTier",
    "InMemoryTier",
    "SqliteTier",
]
