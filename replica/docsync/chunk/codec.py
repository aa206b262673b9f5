"""
Document codec and quota-aware chunking.

The ChunkCodec turns a JSON document into a transport string and back,
and splits a transport string into chunks that each fit under a tier's
per-item byte quota.

Transport format:
    gzip:         base64(gzip(compact_json(document)))   (ASCII, no NUL)
    lz-utf16:     LZString.compressToUTF16 over the UTF-16 code units of
                  compact_json(document), the format other clients of the
                  same storage server write (code points 32..32800, no NUL)
    uncompressed: compact_json(document)

Chunk key format:
    {base_key}_chunk_{revision}_{index}   (revisioned)
    {base_key}_chunk_{index}              (legacy, unrevisioned)

Invariants:
    - decode(encode(D)) == D for every JSON document D and every format
    - Every (chunk_key, chunk) produced by split() fits max_item_bytes
    - No chunk boundary falls between the two halves of a surrogate pair
    - join() of the split chunks in index order is the original payload

How to change safely:
    - The chunk key format is persisted; readers must accept both forms
    - A new compressor needs a new CompressionFormat value, recorded in
      the meta record, so data written in older formats still decodes
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
import logging
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from lzstring import LZString

from ..errors import DecodeError, MissingChunkError, QuotaViolationError
from .budget import compact_json, estimate_item_bytes

logger = logging.getLogger(__name__)

CHUNK_PREFIX = "_chunk_"

# Initial probe width (in code points) of the exponential search.
INITIAL_PROBE_STEP = 1024

# compressToUTF16 output always ends with this padding character
_LZ_UTF16_TERMINATOR = " "


class CompressionFormat(Enum):
    """Compressor applied to a compressed payload."""

    GZIP = "gzip"
    LZ_UTF16 = "lz-utf16"


def detect_compression(payload: str) -> CompressionFormat:
    """Guess the format of a compressed payload whose meta does not record it.

    gzip payloads are base64 text, which is ASCII and never contains a
    space; lz-utf16 payloads end with a space and are rarely ASCII.
    """
    if payload.endswith(_LZ_UTF16_TERMINATOR) or not payload.isascii():
        return CompressionFormat.LZ_UTF16
    return CompressionFormat.GZIP


def _to_code_units(s: str) -> str:
    # one character per UTF-16 code unit, as JavaScript strings are indexed
    data = s.encode("utf-16-le", "surrogatepass")
    return "".join(chr(data[i] | (data[i + 1] << 8)) for i in range(0, len(data), 2))


def _from_code_units(s: str) -> str:
    return s.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "surrogatepass")


def make_chunk_key(base_key: str, index: int, revision: Optional[str] = None) -> str:
    """Build the storage key of one chunk."""
    if revision:
        return f"{base_key}{CHUNK_PREFIX}{revision}_{index}"
    return f"{base_key}{CHUNK_PREFIX}{index}"


def code_point_boundaries(s: str) -> List[int]:
    """Offsets at which a string may be cut without splitting a code point.

    A Python str is indexed by code point, except that a surrogate pair
    that arrived as two code units (e.g. decoded with surrogatepass) must
    stay together.

    Returns:
        Ascending offsets, starting with 0 and ending with len(s)
    """
    boundaries = []
    i = 0
    n = len(s)
    while i < n:
        boundaries.append(i)
        if (
            "\ud800" <= s[i] <= "\udbff"
            and i + 1 < n
            and "\udc00" <= s[i + 1] <= "\udfff"
        ):
            i += 2
        else:
            i += 1
    boundaries.append(n)
    return boundaries


class DecodeErrorKind(Enum):
    """Why a payload could not be decoded."""

    DECOMPRESSION_FAILED = "decompression_failed"
    PARSE_FAILED = "parse_failed"


@dataclass(frozen=True)
class DecodeResult:
    """Outcome of ChunkCodec.decode().

    Attributes:
        ok: Whether decoding succeeded
        document: Decoded document (None when ok is False)
        error: Failure kind when ok is False
        message: Human-readable failure detail
    """

    ok: bool
    document: Any = None
    error: Optional[DecodeErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, document: Any) -> DecodeResult:
        return cls(ok=True, document=document)

    @classmethod
    def failure(cls, kind: DecodeErrorKind, message: str) -> DecodeResult:
        return cls(ok=False, error=kind, message=message)

    def unwrap(self) -> Any:
        """Return the document or raise DecodeError."""
        if not self.ok:
            kind = self.error.value if self.error else "unknown"
            raise DecodeError(f"Payload could not be decoded: {self.message}", kind=kind)
        return self.document


class ChunkCodec:
    """Serializes documents and splits payloads into quota-sized chunks.

    Attributes:
        fallback_chunk_chars: Slice length of the fixed-width fallback splitter
        compresslevel: gzip compression level
        compression: Format encode() compresses with

    Example:
        >>> codec = ChunkCodec()
        >>> payload = codec.encode({"groups": []}, compress=True)
        >>> chunks = codec.split(payload, 7680, lambda i: f"k_chunk_{i}")
        >>> codec.decode(codec.join([c for _, c in chunks]), compressed=True).document
        {'groups': []}
    """

    def __init__(
        self,
        fallback_chunk_chars: int = 3000,
        compresslevel: int = 9,
        compression: CompressionFormat = CompressionFormat.GZIP,
    ) -> None:
        self.fallback_chunk_chars = fallback_chunk_chars
        self.compresslevel = compresslevel
        self.compression = compression

    def encode(self, document: Any, compress: bool = True) -> str:
        """Serialize a document to a transport string.

        Args:
            document: JSON-serializable document
            compress: Whether to compress the JSON text with self.compression

        Returns:
            Transport string
        """
        serialized = compact_json(document)
        if not compress:
            return serialized
        if self.compression == CompressionFormat.LZ_UTF16:
            return LZString.compressToUTF16(_to_code_units(serialized))
        # surrogatepass keeps lone surrogates round-trippable
        raw = serialized.encode("utf-8", "surrogatepass")
        packed = gzip.compress(raw, compresslevel=self.compresslevel, mtime=0)
        return base64.b64encode(packed).decode("ascii")

    def decode(
        self,
        payload: str,
        compressed: bool,
        compression: Optional[CompressionFormat] = None,
    ) -> DecodeResult:
        """Inverse of encode(); reports failures instead of raising.

        Args:
            payload: Transport string
            compressed: Whether the payload was compressed
            compression: Format of a compressed payload (detected when None)

        Returns:
            DecodeResult carrying the document or the failure kind
        """
        if compressed:
            fmt = compression or detect_compression(payload)
            if fmt == CompressionFormat.LZ_UTF16:
                try:
                    units = LZString.decompressFromUTF16(payload)
                except Exception as e:
                    return DecodeResult.failure(DecodeErrorKind.DECOMPRESSION_FAILED, str(e))
                if not units:
                    return DecodeResult.failure(
                        DecodeErrorKind.DECOMPRESSION_FAILED, "lz-utf16 payload decompressed to nothing"
                    )
                try:
                    text = _from_code_units(units)
                except UnicodeError as e:
                    return DecodeResult.failure(DecodeErrorKind.DECOMPRESSION_FAILED, str(e))
            else:
                try:
                    packed = base64.b64decode(payload.encode("ascii"), validate=True)
                    text = gzip.decompress(packed).decode("utf-8", "surrogatepass")
                except (binascii.Error, UnicodeError, OSError, EOFError, zlib.error) as e:
                    return DecodeResult.failure(DecodeErrorKind.DECOMPRESSION_FAILED, str(e))
        else:
            text = payload

        try:
            return DecodeResult.success(json.loads(text))
        except (json.JSONDecodeError, TypeError) as e:
            return DecodeResult.failure(DecodeErrorKind.PARSE_FAILED, str(e))

    def split(
        self,
        payload: str,
        max_item_bytes: int,
        chunk_key_builder: Callable[[int], str],
    ) -> List[Tuple[str, str]]:
        """Split a payload into chunks that fit the per-item byte budget.

        For every chunk the farthest code point boundary that still fits is
        found by doubling the probe width and then binary searching inside
        the bracket, so the cost stays near O(n log n).

        Args:
            payload: Transport string
            max_item_bytes: Budget for estimate_item_bytes(key, chunk)
            chunk_key_builder: Maps a chunk index to its storage key

        Returns:
            List of (chunk_key, chunk) in index order

        Raises:
            QuotaViolationError: If a single code point cannot fit, or the
                fallback slicing still overflows the budget
        """
        boundaries = code_point_boundaries(payload)
        last = len(boundaries) - 1

        def fits(index: int, start_bi: int, end_bi: int) -> bool:
            chunk = payload[boundaries[start_bi]:boundaries[end_bi]]
            return estimate_item_bytes(chunk_key_builder(index), chunk) <= max_item_bytes

        chunks: List[str] = []
        start_bi = 0
        index = 0

        while start_bi < last:
            if not fits(index, start_bi, start_bi + 1):
                raise QuotaViolationError(
                    f"Single code point exceeds the item budget at chunk {index}",
                    chunk_index=index,
                    max_item_bytes=max_item_bytes,
                )

            good = start_bi + 1
            step = INITIAL_PROBE_STEP
            probe = min(last, start_bi + step)

            while probe > good and fits(index, start_bi, probe):
                good = probe
                step *= 2
                probe = min(last, start_bi + step)
                if good == last:
                    break

            if good == last:
                chunks.append(payload[boundaries[start_bi]:])
                break

            lo = good + 1
            hi = max(lo, probe - 1)
            while lo <= hi:
                mid = (lo + hi) // 2
                if fits(index, start_bi, mid):
                    good = mid
                    lo = mid + 1
                else:
                    hi = mid - 1

            chunks.append(payload[boundaries[start_bi]:boundaries[good]])
            start_bi = good
            index += 1

        if self._over_budget(chunks, max_item_bytes, chunk_key_builder):
            logger.warning(
                "Byte-aware split still exceeds the item budget, falling back to fixed-length slices",
                extra={"max_item_bytes": max_item_bytes, "chunk_count": len(chunks)},
            )
            chunks = self._fixed_length_slices(payload)
            if self._over_budget(chunks, max_item_bytes, chunk_key_builder):
                raise QuotaViolationError(
                    "Fixed-length fallback slices exceed the item budget",
                    max_item_bytes=max_item_bytes,
                )

        return [(chunk_key_builder(i), chunk) for i, chunk in enumerate(chunks)]

    def join(self, chunks: Sequence[Optional[str]]) -> str:
        """Concatenate chunks in index order.

        Raises:
            MissingChunkError: If any chunk is None
        """
        for i, chunk in enumerate(chunks):
            if chunk is None:
                raise MissingChunkError(f"Chunk {i} is missing", index=i)
        return "".join(chunks)  # type: ignore[arg-type]

    @staticmethod
    def _over_budget(
        chunks: Sequence[str],
        max_item_bytes: int,
        chunk_key_builder: Callable[[int], str],
    ) -> bool:
        return any(
            estimate_item_bytes(chunk_key_builder(i), chunk) > max_item_bytes
            for i, chunk in enumerate(chunks)
        )

    def _fixed_length_slices(self, payload: str) -> List[str]:
        """Slice by character count, never cutting a surrogate pair."""
        slices = []
        start = 0
        n = len(payload)
        while start < n:
            end = min(n, start + self.fallback_chunk_chars)
            if end < n and "\ud800" <= payload[end - 1] <= "\udbff" and end - 1 > start:
                end -= 1
            slices.append(payload[start:end])
            start = end
        return slices
