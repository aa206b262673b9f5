"""
In-memory key-value tier implementation for testing.

This module provides a simple in-memory tier for:
- Unit tests
- Integration tests
- Local development without a storage server

Invariants:
    - All data is lost on process exit
    - Values are stored as deep copies; callers never share state with the tier
    - Quota enforcement matches the replicated tier (encoded bytes)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with KeyValueTier protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from ..chunk.budget import estimate_item_bytes
from .base import TierError, TierQuotaExceededError

logger = logging.getLogger(__name__)


class InMemoryTier:
    """In-memory implementation of KeyValueTier for testing.

    Attributes:
        name: Tier name
        quota_bytes_per_item: Per-item quota in encoded bytes (0 = none)

    Failure injection:
        fail_on_set: keys (or a predicate) whose set() raises TierError
        fail_on_remove: keys (or a predicate) whose remove() raises TierError
        fail_after_sets: number of successful set() calls before every
            further set() raises
        fail_on_get: keys whose get() raises TierError

    Example:
        >>> tier = InMemoryTier("cloud", quota_bytes_per_item=8192)
        >>> await tier.set("k", [1, 2, 3])
        >>> tier.get_record_count()
        1
    """

    def __init__(
        self,
        name: str = "memory",
        quota_bytes_per_item: int = 0,
        latency_seconds: float = 0.0,
    ) -> None:
        """Initialize in-memory tier.

        Args:
            name: Tier name
            quota_bytes_per_item: Enforced per-item quota (0 = unconstrained)
            latency_seconds: Artificial delay before every operation
        """
        self.name = name
        self.quota_bytes_per_item = quota_bytes_per_item
        self.latency_seconds = latency_seconds
        self._data: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

        self.fail_on_set: Set[str] | Callable[[str], bool] = set()
        self.fail_on_remove: Set[str] | Callable[[str], bool] = set()
        self.fail_on_get: Set[str] = set()
        self.fail_after_sets: Optional[int] = None

        self.get_calls = 0
        self.set_calls = 0
        self.remove_calls = 0
        self.set_log: List[str] = []

    async def get(self, key: str) -> Any:
        """Read a value (deep copy)."""
        await self._delay()
        self.get_calls += 1
        if key in self.fail_on_get:
            raise TierError(f"Injected get failure for {key}")
        async with self._lock:
            if key not in self._data:
                return None
            return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        """Store a value, enforcing the quota."""
        await self._delay()
        self.set_calls += 1

        if self._matches(self.fail_on_set, key):
            raise TierError(f"Injected set failure for {key}")
        if self.fail_after_sets is not None:
            if self.fail_after_sets <= 0:
                raise TierError(f"Injected set failure for {key} (budget exhausted)")
            self.fail_after_sets -= 1

        if self.quota_bytes_per_item > 0:
            size = estimate_item_bytes(key, value)
            if size > self.quota_bytes_per_item:
                raise TierQuotaExceededError(
                    f"Item {key} is {size} bytes, quota is {self.quota_bytes_per_item}",
                    key=key,
                    size_bytes=size,
                )

        async with self._lock:
            self._data[key] = copy.deepcopy(value)
            self.set_log.append(key)

        logger.debug("Item stored in memory tier", extra={"tier": self.name, "key": key})

    async def remove(self, key: str) -> None:
        """Remove a value."""
        await self._delay()
        self.remove_calls += 1
        if self._matches(self.fail_on_remove, key):
            raise TierError(f"Injected remove failure for {key}")
        async with self._lock:
            self._data.pop(key, None)

    async def _delay(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    @staticmethod
    def _matches(rule: Set[str] | Callable[[str], bool], key: str) -> bool:
        if callable(rule):
            return bool(rule(key))
        return key in rule

    # Testing helpers

    def keys(self) -> List[str]:
        """All stored keys, sorted (testing helper)."""
        return sorted(self._data)

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of all stored items (testing helper)."""
        return copy.deepcopy(self._data)

    def get_record_count(self) -> int:
        """Number of stored items (testing helper)."""
        return len(self._data)

    def put_raw(self, key: str, value: Any) -> None:
        """Store a value synchronously, bypassing quota and failures (testing helper)."""
        self._data[key] = copy.deepcopy(value)

    def delete_raw(self, key: str) -> None:
        """Remove a value synchronously (testing helper)."""
        self._data.pop(key, None)

    def clear(self) -> None:
        """Clear all data and injected failures (testing helper)."""
        self._data.clear()
        self.fail_on_set = set()
        self.fail_on_remove = set()
        self.fail_on_get = set()
        self.fail_after_sets = None
