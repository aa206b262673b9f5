"""
Meta record of a chunk set.

The meta record is stored under the logical key and describes how the
document is laid out on the tier. On the wire it is a plain JSON object:

    {"__chunked": false, "__compressed": true, "__codec": "gzip", "data": "..."}
    {"__chunked": true, "__compressed": true, "__codec": "gzip", "__chunkCount": 5, "__rev": "..."}

"__codec" names the compressor of a compressed payload. Records written by
clients that predate it carry no "__codec"; their payload format is
detected from the payload itself.

A value carrying neither "__chunked" nor "__compressed" was written by a
version that stored the document directly; it is legacy raw data. A
stored null, empty string, zero or false counts as nothing stored.

In code the record is a tagged union decoded once at the tier boundary:
InlineMeta | ChunkedMeta | LegacyMeta | CorruptMeta.

Invariants:
    - decode_meta(meta.to_record()) == meta for Inline/Chunked metas
    - ChunkedMeta.chunk_keys() lists exactly the keys the writer used
    - decode_meta() never raises; malformed records become CorruptMeta

How to change safely:
    - Never rename the "__" markers; they are read across versions
    - New optional fields must have defaults when absent
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from .codec import make_chunk_key

CHUNKED_MARKER = "__chunked"
COMPRESSED_MARKER = "__compressed"
CODEC_FIELD = "__codec"
CHUNK_COUNT_FIELD = "__chunkCount"
REVISION_FIELD = "__rev"
DATA_FIELD = "data"


@dataclass(frozen=True)
class InlineMeta:
    """The whole payload is stored inline in the meta record."""

    compressed: bool
    data: str
    codec: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {CHUNKED_MARKER: False, COMPRESSED_MARKER: self.compressed}
        if self.codec:
            record[CODEC_FIELD] = self.codec
        record[DATA_FIELD] = self.data
        return record

    def chunk_keys(self, base_key: str) -> List[str]:
        return []


@dataclass(frozen=True)
class ChunkedMeta:
    """The payload is split across chunk_count chunk records.

    Attributes:
        compressed: Whether the joined payload is compressed
        chunk_count: Number of chunks
        revision: Revision token embedded in the chunk keys (None for
            legacy unrevisioned chunk sets)
        codec: Compressor of the payload (None when not recorded)
    """

    compressed: bool
    chunk_count: int
    revision: Optional[str] = None
    codec: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            CHUNKED_MARKER: True,
            COMPRESSED_MARKER: self.compressed,
            CHUNK_COUNT_FIELD: self.chunk_count,
        }
        if self.codec:
            record[CODEC_FIELD] = self.codec
        if self.revision:
            record[REVISION_FIELD] = self.revision
        return record

    def chunk_keys(self, base_key: str) -> List[str]:
        return [make_chunk_key(base_key, i, self.revision) for i in range(self.chunk_count)]


@dataclass(frozen=True)
class LegacyMeta:
    """Raw document written before the meta record existed."""

    raw: Any

    def chunk_keys(self, base_key: str) -> List[str]:
        return []


@dataclass(frozen=True)
class CorruptMeta:
    """A record carrying the meta markers but with unusable fields."""

    raw: Any
    reason: str

    def chunk_keys(self, base_key: str) -> List[str]:
        return []


Meta = Union[InlineMeta, ChunkedMeta, LegacyMeta, CorruptMeta]


def _is_absent(raw: Any) -> bool:
    # null, "", 0 and false; an empty list or object is still a value
    return raw is None or (not isinstance(raw, (list, dict)) and raw in ("", 0))


def decode_meta(raw: Any) -> Optional[Meta]:
    """Decode the value stored under a logical key.

    Args:
        raw: Value read from the tier

    Returns:
        The decoded meta, or None when nothing was stored
    """
    if _is_absent(raw):
        return None
    if not isinstance(raw, dict) or (CHUNKED_MARKER not in raw and COMPRESSED_MARKER not in raw):
        return LegacyMeta(raw=raw)

    compressed = bool(raw.get(COMPRESSED_MARKER, False))
    codec = raw.get(CODEC_FIELD)
    if codec is not None and not isinstance(codec, str):
        return CorruptMeta(raw=raw, reason=f"{CODEC_FIELD} is not a string")

    if raw.get(CHUNKED_MARKER):
        count = raw.get(CHUNK_COUNT_FIELD) or 0
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            return CorruptMeta(raw=raw, reason=f"{CHUNK_COUNT_FIELD} is not a non-negative integer")
        revision = raw.get(REVISION_FIELD) or None
        if revision is not None and not isinstance(revision, str):
            return CorruptMeta(raw=raw, reason=f"{REVISION_FIELD} is not a string")
        return ChunkedMeta(compressed=compressed, chunk_count=count, revision=revision, codec=codec)

    data = raw.get(DATA_FIELD)
    return InlineMeta(compressed=compressed, data=data if isinstance(data, str) else "", codec=codec)
