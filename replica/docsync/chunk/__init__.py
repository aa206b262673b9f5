"""
Chunked storage for docsync.

This module stores one arbitrary-size JSON document on a tier whose
items are limited to a few kilobytes:
- budget: encoded-byte size estimation
- codec: serialization, compression, quota-aware splitting and joining
- meta: the meta record stored under the logical key
- store: atomic chunk-set replacement and reads

Invariants:
    - Chunks of a new revision are written before the meta that names them
    - Chunks of the old revision are removed only after the new meta
    - Corrupt or incomplete chunk sets read as "no data"
    - Writes and clears of one key are serialized
"""

from .budget import (
    ByteBudget,
    byte_length,
    compact_json,
    estimate_chunk_count,
    estimate_compressed_size,
    estimate_item_bytes,
)
from .codec import (
    ChunkCodec,
    CompressionFormat,
    DecodeErrorKind,
    DecodeResult,
    code_point_boundaries,
    detect_compression,
    make_chunk_key,
)
from .meta import ChunkedMeta, CorruptMeta, InlineMeta, LegacyMeta, Meta, decode_meta
from .store import ChunkedStore, ReadResult, ReadStatus, WriteResult, make_revision

__all__ = [
    "ByteBudget",
    "byte_length",
    "compact_json",
    "estimate_chunk_count",
    "estimate_compressed_size",
    "estimate_item_bytes",
    "ChunkCodec",
    "CompressionFormat",
    "DecodeErrorKind",
    "DecodeResult",
    "code_point_boundaries",
    "detect_compression",
    "make_chunk_key",
    "ChunkedMeta",
    "CorruptMeta",
    "InlineMeta",
    "LegacyMeta",
    "Meta",
    "decode_meta",
    "ChunkedStore",
    "ReadResult",
    "ReadStatus",
    "WriteResult",
    "make_revision",
]
