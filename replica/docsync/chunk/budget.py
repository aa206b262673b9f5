"""
Byte budget estimation for quota-constrained tiers.

Replicated tiers bill each stored item by its serialized size in bytes,
not by string length. A compressed or non-ASCII payload can take two to
four UTF-8 bytes per character, so counting characters silently
undercounts and the backend rejects the write.

Invariants:
    - byte_length() never reports fewer bytes than the tier will bill
    - estimate_item_bytes() includes the JSON envelope of the value
      (quotes, escapes) the same way the tier serializes it

How to change safely:
    - compact_json() must stay byte-identical to the tier's serializer
      (no whitespace, non-ASCII left unescaped)
"""

from __future__ import annotations

import json
import logging
import math
import sys
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Widest UTF-8 encoding of a single code point.
MAX_BYTES_PER_CODE_POINT = 4


def compact_json(value: Any) -> str:
    """Serialize a value the way the replicated tier does (JSON.stringify)."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def byte_length(s: str) -> int:
    """Return the UTF-8 encoded length of a string.

    Strings holding lone surrogates cannot be encoded byte-accurately; they
    fall back to a coarse estimate that overestimates (4 bytes per
    character) rather than underestimates.

    Args:
        s: String to measure

    Returns:
        Encoded size in bytes
    """
    try:
        return len(s.encode("utf-8"))
    except UnicodeEncodeError:
        return len(s) * MAX_BYTES_PER_CODE_POINT


def estimate_item_bytes(key: str, value: Any) -> int:
    """Estimate what the tier bills for one stored (key, value) item."""
    return byte_length(key) + byte_length(compact_json(value))


@dataclass(frozen=True)
class ByteBudget:
    """Per-item byte budget of one tier.

    Attributes:
        quota_bytes_per_item: Tier quota (0 = unconstrained)
        safety_margin_bytes: Bytes held back from the quota
        min_item_bytes: Floor for the effective budget

    Example:
        >>> budget = ByteBudget(8192, 384)
        >>> budget.max_item_bytes
        7680
    """

    quota_bytes_per_item: int = 8192
    safety_margin_bytes: int = 384
    min_item_bytes: int = 1024

    @property
    def unconstrained(self) -> bool:
        return self.quota_bytes_per_item <= 0

    @property
    def max_item_bytes(self) -> int:
        """Largest item the store may write (sys.maxsize when unconstrained)."""
        if self.unconstrained:
            return sys.maxsize
        return max(self.min_item_bytes, self.quota_bytes_per_item - self.safety_margin_bytes)

    def fits(self, key: str, value: Any) -> bool:
        """Whether (key, value) fits the budget."""
        if self.unconstrained:
            return True
        return estimate_item_bytes(key, value) <= self.max_item_bytes

    @classmethod
    def for_tier(cls, tier: Any, safety_margin_bytes: int = 384, min_item_bytes: int = 1024) -> ByteBudget:
        """Build the budget from a tier's reported quota."""
        return cls(
            quota_bytes_per_item=getattr(tier, "quota_bytes_per_item", 0) or 0,
            safety_margin_bytes=safety_margin_bytes,
            min_item_bytes=min_item_bytes,
        )


def estimate_compressed_size(document: Any) -> int:
    """Estimate the encoded byte size of a document after compression."""
    from .codec import ChunkCodec

    return byte_length(ChunkCodec().encode(document, compress=True))


def estimate_chunk_count(document: Any, budget: ByteBudget) -> int:
    """Roughly estimate how many chunks a document needs.

    Ignores chunk key overhead; good enough for diagnostics and logging.
    """
    if budget.unconstrained:
        return 1
    return math.ceil(estimate_compressed_size(document) / budget.max_item_bytes)
