"""
Unit tests for byte budget estimation.

Tests cover:
- Encoded byte length for ASCII, multi-byte and astral text
- Item size estimation including the JSON envelope
- Effective budget computation
"""

import sys

import pytest

from replica.docsync.chunk.budget import (
    ByteBudget,
    byte_length,
    compact_json,
    estimate_chunk_count,
    estimate_item_bytes,
)
from replica.docsync.tier.memory import InMemoryTier


class TestByteLength:
    """Tests for byte_length and compact_json."""

    def test_ascii(self):
        """ASCII is one byte per character."""
        assert byte_length("hello") == 5

    def test_multibyte(self):
        """CJK characters take three bytes each."""
        assert byte_length("分组") == 6

    def test_astral(self):
        """Astral code points take four bytes."""
        assert byte_length("😀") == 4

    def test_lone_surrogate_overestimates(self):
        """Unencodable strings fall back to four bytes per character."""
        assert byte_length("a\ud800b") == 12

    def test_compact_json_matches_tier_serializer(self):
        """No whitespace, non-ASCII left unescaped."""
        assert compact_json({"a": [1, 2], "b": "é"}) == '{"a":[1,2],"b":"é"}'


class TestEstimateItemBytes:
    """Tests for estimate_item_bytes."""

    def test_includes_quotes(self):
        """A string value is billed with its surrounding quotes."""
        assert estimate_item_bytes("k", "abc") == 1 + 5

    def test_includes_escapes(self):
        """Escaped characters count as their escaped form."""
        assert estimate_item_bytes("k", 'a"b') == 1 + len('"a\\"b"')

    def test_non_ascii_key(self):
        """Keys are measured in bytes too."""
        assert estimate_item_bytes("é", 1) == 2 + 1


class TestByteBudget:
    """Tests for ByteBudget."""

    def test_default_budget(self):
        """8192 quota minus 384 margin."""
        assert ByteBudget().max_item_bytes == 7680

    def test_min_item_bytes_floor(self):
        """The budget never drops below the floor."""
        budget = ByteBudget(quota_bytes_per_item=1000, safety_margin_bytes=384, min_item_bytes=1024)
        assert budget.max_item_bytes == 1024

    def test_unconstrained(self):
        """Quota 0 means no limit."""
        budget = ByteBudget(quota_bytes_per_item=0)
        assert budget.unconstrained
        assert budget.max_item_bytes == sys.maxsize
        assert budget.fits("k", "x" * 100_000)

    def test_fits(self):
        """fits() compares the estimated item size with the budget."""
        budget = ByteBudget(quota_bytes_per_item=2048, safety_margin_bytes=0, min_item_bytes=0)
        assert budget.fits("k", "x" * 2000)
        assert not budget.fits("k", "x" * 2050)

    def test_for_tier(self):
        """Budget derives from the tier's quota."""
        tier = InMemoryTier("cloud", quota_bytes_per_item=4096)
        assert ByteBudget.for_tier(tier).max_item_bytes == 4096 - 384

    @pytest.mark.parametrize("groups", [1, 50])
    def test_estimate_chunk_count(self, groups):
        """Chunk estimate is at least one and grows with the document."""
        document = [{"id": str(i), "apps": [{"name": f"app-{i}-{j}"} for j in range(20)]} for i in range(groups)]
        assert estimate_chunk_count(document, ByteBudget()) >= 1
