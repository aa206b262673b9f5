"""
Base protocol and types for key-value tier abstraction.

This module defines the KeyValueTier protocol that every storage backend
implements, along with the tier error types.

Invariants:
    - get() returns None for an absent key, never raises for absence
    - set() either stores the whole value or raises; no partial values
    - remove() of an absent key is a no-op
    - Values are JSON values (dict, list, str, int, float, bool, None)

How to change safely:
    - Protocol changes require updating all implementations
    - quota_bytes_per_item is measured in encoded bytes (see chunk.budget)
"""

from __future__ import annotations

from abc import abstractmethod
from typing import (
    Any,
    Optional,
    Protocol,
    runtime_checkable,
    TYPE_CHECKING,
)
import logging

if TYPE_CHECKING:
    from ..config import EngineConfig, TierBackend

logger = logging.getLogger(__name__)


class TierError(Exception):
    """Base exception for tier operations."""
    pass


class TierConnectionError(TierError):
    """Connection to the tier backend failed."""
    pass


class TierQuotaExceededError(TierError):
    """The backend refused a value larger than its per-item quota."""

    def __init__(self, message: str, key: Optional[str] = None, size_bytes: Optional[int] = None) -> None:
        super().__init__(message)
        self.key = key
        self.size_bytes = size_bytes


@runtime_checkable
class KeyValueTier(Protocol):
    """Protocol for key-value tier backends.

    Durability contract:
        - set() returns only after the value is stored by the backend
        - A failed set() leaves the previous value of that key in place

    Quota contract:
        - quota_bytes_per_item is the largest encoded (key, value) size the
          backend accepts; 0 means unconstrained

    Example:
        >>> tier = InMemoryTier("cloud", quota_bytes_per_item=8192)
        >>> await tier.set("greeting", {"hello": "world"})
        >>> await tier.get("greeting")
        {'hello': 'world'}
    """

    name: str
    quota_bytes_per_item: int

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Read a value.

        Args:
            key: Item key

        Returns:
            The stored JSON value, or None if absent

        Raises:
            TierError: If the backend could not be read
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store a value.

        Args:
            key: Item key
            value: JSON value

        Raises:
            TierQuotaExceededError: If the item exceeds the backend quota
            TierError: For other write failures
        """
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove a value (no-op if absent).

        Raises:
            TierError: If the backend refused the removal
        """
        ...


def create_tier(
    backend: "TierBackend",
    config: "EngineConfig",
    name: str,
    filename: Optional[str] = None,
    quota_bytes_per_item: int = 0,
) -> KeyValueTier:
    """Factory function to create a tier from configuration.

    Args:
        backend: Which backend to build
        config: Engine configuration
        name: Tier name (used in logs)
        filename: SQLite file name under the data directory
        quota_bytes_per_item: Quota for memory/sqlite tiers (http uses its own)

    Returns:
        Appropriate KeyValueTier implementation

    Raises:
        ValueError: If backend is not supported
    """
    from pathlib import Path

    from ..config import TierBackend
    from .http import HttpTier
    from .memory import InMemoryTier
    from .sqlite import SqliteTier

    if backend == TierBackend.MEMORY:
        return InMemoryTier(name, quota_bytes_per_item=quota_bytes_per_item)
    elif backend == TierBackend.SQLITE:
        db_path = Path(config.sqlite.data_dir) / (filename or f"{name}.db")
        return SqliteTier(
            name,
            db_path,
            quota_bytes_per_item=quota_bytes_per_item,
            busy_timeout_ms=config.sqlite.busy_timeout_ms,
            wal_mode=config.sqlite.wal_mode,
        )
    elif backend == TierBackend.HTTP:
        return HttpTier(
            name,
            base_url=config.http.base_url,
            token=config.http.token,
            timeout_seconds=config.http.timeout_seconds,
            quota_bytes_per_item=config.http.quota_bytes_per_item,
        )
    else:
        raise ValueError(f"Unsupported tier backend: {backend}")
