"""
Chunked document store on top of a key-value tier.

The ChunkedStore keeps one document under one logical key on a tier with
a per-item byte quota. Small payloads are stored inline in the meta
record; large ones are split into chunks keyed by a fresh revision.

Write protocol:
    1. Read the previous meta (only to know what to clean up)
    2. Encode the document
    3. If the inline meta fits: write it, clean up old chunks, done
    4. Otherwise write every chunk of a new revision
       (on failure: remove the new chunks written so far, re-raise)
    5. Publish the new meta (the single point of visibility; on failure
       re-raise and leave the new chunks, the meta may have been stored)
    6. Remove the previous revision's chunks (best-effort)

Writes and clears of one key are serialized by a per-key lock, so each
write sees the meta published by the write before it.

Invariants:
    - A reader never sees a meta whose revision differs from its chunk keys
    - A failed write leaves the previously readable document readable
    - Reads never raise for corrupt data; they return None
    - Cleanup failures are logged, never raised
    - A failed publish never removes anything; its chunks are orphans
      for sweep_orphans() to collect

How to change safely:
    - Keep the publish (meta write) strictly after all chunk writes
    - Keep old-chunk removal strictly after the publish
"""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from ..errors import ChunkWriteError, MissingChunkError
from ..tier.base import KeyValueTier, TierError
from .budget import ByteBudget, byte_length
from .codec import ChunkCodec, CompressionFormat, make_chunk_key
from .meta import ChunkedMeta, CorruptMeta, InlineMeta, LegacyMeta, Meta, decode_meta

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, r = divmod(n, 36)
        digits.append(_BASE36[r])
    return "".join(reversed(digits))


def make_revision() -> str:
    """New revision token: base36 milliseconds plus a random suffix.

    Only uniqueness matters, not unpredictability.
    """
    suffix = "".join(random.choice(_BASE36) for _ in range(6))
    return f"{_to_base36(int(time.time() * 1000))}_{suffix}"


class ReadStatus(Enum):
    """Outcome of a chunked read."""

    OK = "ok"
    ABSENT = "absent"
    LEGACY = "legacy"
    MISSING_CHUNK = "missing_chunk"
    DECODE_FAILED = "decode_failed"
    TIER_ERROR = "tier_error"


@dataclass(frozen=True)
class ReadResult:
    """Detailed read outcome.

    Attributes:
        document: Decoded document (None unless status is OK or LEGACY)
        status: What happened
        meta: Decoded meta record, if one was read
    """

    document: Any
    status: ReadStatus
    meta: Optional[Meta] = None

    @property
    def usable(self) -> bool:
        return self.status in (ReadStatus.OK, ReadStatus.LEGACY)


@dataclass(frozen=True)
class WriteResult:
    """Summary of a successful write.

    Attributes:
        inline: Whether the payload was stored inline in the meta record
        chunk_count: Number of chunks written (0 when inline)
        revision: Revision token of the chunk set (None when inline)
        payload_bytes: Encoded size of the payload
    """

    inline: bool
    chunk_count: int
    revision: Optional[str]
    payload_bytes: int


class ChunkedStore:
    """Reads and writes a document as a chunk set on one tier.

    Attributes:
        tier: Backing key-value tier
        budget: Per-item byte budget
        codec: Document codec and splitter

    Example:
        >>> store = ChunkedStore(cloud_tier)
        >>> await store.write("quickLaunchGroups", groups)
        >>> await store.read("quickLaunchGroups") == groups
        True
    """

    def __init__(
        self,
        tier: KeyValueTier,
        budget: Optional[ByteBudget] = None,
        codec: Optional[ChunkCodec] = None,
    ) -> None:
        """Initialize the store.

        Args:
            tier: Backing key-value tier
            budget: Byte budget (defaults to the tier quota minus 384 bytes)
            codec: Codec (defaults to ChunkCodec())
        """
        self.tier = tier
        self.budget = budget or ByteBudget.for_tier(tier)
        self.codec = codec or ChunkCodec()
        self._locks: Dict[str, asyncio.Lock] = {}

    def _key_lock(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def read_meta(self, key: str) -> Optional[Meta]:
        """Read and decode the meta record under a key."""
        return decode_meta(await self.tier.get(key))

    async def write(self, key: str, document: Any, compress: bool = True) -> WriteResult:
        """Replace the document stored under a key.

        Concurrent writes to the same key run one after another, in the
        order they were started.

        Args:
            key: Logical key
            document: JSON document
            compress: Whether to compress the payload

        Returns:
            WriteResult describing the new layout

        Raises:
            QuotaViolationError: If the payload cannot be split under the budget
            ChunkWriteError: If writing the new chunks failed (old data intact)
            TierError: If publishing the meta record failed; the new chunks
                are left in place since the meta may have been stored
        """
        async with self._key_lock(key):
            return await self._write_locked(key, document, compress)

    async def _write_locked(self, key: str, document: Any, compress: bool) -> WriteResult:
        try:
            prev_meta = await self.read_meta(key)
        except TierError as e:
            logger.warning(f"Could not read previous meta for {key}, old chunks may be orphaned: {e}")
            prev_meta = None

        payload = self.codec.encode(document, compress)
        payload_bytes = byte_length(payload)
        codec_name = self.codec.compression.value if compress else None

        inline = InlineMeta(compressed=compress, data=payload, codec=codec_name)
        if self.budget.fits(key, inline.to_record()):
            await self.tier.set(key, inline.to_record())
            await self._remove_chunks(key, prev_meta)
            return WriteResult(inline=True, chunk_count=0, revision=None, payload_bytes=payload_bytes)

        revision = make_revision()
        chunks = self.codec.split(
            payload,
            self.budget.max_item_bytes,
            lambda index: make_chunk_key(key, index, revision),
        )

        results = await asyncio.gather(
            *(self.tier.set(chunk_key, chunk) for chunk_key, chunk in chunks),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            await self._remove_keys(key, [chunk_key for chunk_key, _ in chunks])
            raise ChunkWriteError(
                f"Failed to write {len(failures)} of {len(chunks)} chunks for {key}: {failures[0]}",
                key=key,
                revision=revision,
            ) from failures[0]

        meta = ChunkedMeta(
            compressed=compress,
            chunk_count=len(chunks),
            revision=revision,
            codec=codec_name,
        )
        try:
            await self.tier.set(key, meta.to_record())
        except TierError as e:
            logger.warning(
                f"Failed to publish meta for {key}, revision {revision} may be orphaned: {e}",
                extra={"tier": self.tier.name, "key": key, "revision": revision},
            )
            raise

        logger.debug(
            "Chunk set published",
            extra={
                "tier": self.tier.name,
                "key": key,
                "revision": revision,
                "chunk_count": len(chunks),
                "payload_bytes": payload_bytes,
            },
        )

        await self._remove_chunks(key, prev_meta)
        return WriteResult(
            inline=False,
            chunk_count=len(chunks),
            revision=revision,
            payload_bytes=payload_bytes,
        )

    async def read(self, key: str) -> Any:
        """Read the document stored under a key.

        Returns:
            The document, or None when absent, corrupt or unreadable
        """
        return (await self.read_detailed(key)).document

    async def read_detailed(self, key: str) -> ReadResult:
        """Read the document and report why it is (not) usable."""
        try:
            meta = await self.read_meta(key)
        except TierError as e:
            logger.warning(f"Failed to read meta for {key} from {self.tier.name}: {e}")
            return ReadResult(None, ReadStatus.TIER_ERROR)

        if meta is None:
            return ReadResult(None, ReadStatus.ABSENT)

        if isinstance(meta, LegacyMeta):
            return ReadResult(meta.raw, ReadStatus.LEGACY, meta)

        if isinstance(meta, CorruptMeta):
            logger.warning(
                f"Corrupt meta for key: {key}",
                extra={"tier": self.tier.name, "detail": meta.reason},
            )
            return ReadResult(None, ReadStatus.DECODE_FAILED, meta)

        compression = None
        if meta.compressed and meta.codec:
            try:
                compression = CompressionFormat(meta.codec)
            except ValueError:
                logger.warning(
                    f"Unknown codec for key: {key}",
                    extra={"tier": self.tier.name, "codec": meta.codec},
                )
                return ReadResult(None, ReadStatus.DECODE_FAILED, meta)

        if isinstance(meta, InlineMeta):
            payload = meta.data
        else:
            try:
                chunks = await asyncio.gather(
                    *(self.tier.get(chunk_key) for chunk_key in meta.chunk_keys(key))
                )
            except TierError as e:
                logger.warning(f"Failed to read chunks for {key} from {self.tier.name}: {e}")
                return ReadResult(None, ReadStatus.TIER_ERROR, meta)

            try:
                payload = self.codec.join(
                    [c if isinstance(c, str) else None for c in chunks]
                )
            except MissingChunkError as e:
                logger.warning(
                    f"Missing chunks for key: {key}",
                    extra={"tier": self.tier.name, "revision": meta.revision, "index": e.index},
                )
                return ReadResult(None, ReadStatus.MISSING_CHUNK, meta)

        result = self.codec.decode(payload, meta.compressed, compression)
        if not result.ok:
            logger.warning(
                f"Decode failed for key: {key}",
                extra={"tier": self.tier.name, "error": result.error.value, "detail": result.message},
            )
            return ReadResult(None, ReadStatus.DECODE_FAILED, meta)

        return ReadResult(result.document, ReadStatus.OK, meta)

    async def clear(self, key: str) -> None:
        """Remove the meta record and every chunk it references."""
        async with self._key_lock(key):
            meta = await self.read_meta(key)
            await self._remove_chunks(key, meta)
            await self.tier.remove(key)

    async def sweep_orphans(self, key: str, revisions: Iterable[str], max_chunks: int = 64) -> int:
        """Remove chunks of revisions that are not the published one.

        Chunk sets are not enumerable through the tier contract, so the
        caller names the candidate revisions (e.g. from a failed write).

        Args:
            key: Logical key
            revisions: Candidate revision tokens
            max_chunks: Highest chunk index probed per revision

        Returns:
            Number of chunk keys removed
        """
        async with self._key_lock(key):
            meta = await self.read_meta(key)
            if isinstance(meta, CorruptMeta):
                logger.warning(f"Not sweeping {key}: published meta is corrupt ({meta.reason})")
                return 0
            current = meta.revision if isinstance(meta, ChunkedMeta) else None

            removed = 0
            for revision in revisions:
                if not revision or revision == current:
                    continue
                for index in range(max_chunks):
                    chunk_key = make_chunk_key(key, index, revision)
                    try:
                        if await self.tier.get(chunk_key) is None:
                            break
                        await self.tier.remove(chunk_key)
                        removed += 1
                    except TierError as e:
                        logger.warning(f"Failed to sweep orphan chunk {chunk_key}: {e}")
                        break
            return removed

    async def _remove_chunks(self, key: str, meta: Optional[Meta]) -> None:
        if meta is None:
            return
        await self._remove_keys(key, meta.chunk_keys(key))

    async def _remove_keys(self, key: str, chunk_keys: list[str]) -> None:
        """Best-effort removal; failures are logged only."""
        if not chunk_keys:
            return
        results = await asyncio.gather(
            *(self.tier.remove(chunk_key) for chunk_key in chunk_keys),
            return_exceptions=True,
        )
        failed = sum(1 for r in results if isinstance(r, BaseException))
        if failed:
            logger.warning(
                f"Failed to remove {failed} of {len(chunk_keys)} chunks for {key}",
                extra={"tier": self.tier.name},
            )
