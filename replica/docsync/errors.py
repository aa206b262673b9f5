"""
Error types for docsync.

This module defines the exceptions raised by the chunking and
synchronization layers:
- DocSyncError: Base exception
- QuotaViolationError: A chunk cannot be made to fit the tier quota
- ChunkWriteError: Writing the chunks of a new revision failed
- MissingChunkError: A chunk referenced by a meta record is absent
- DecodeError: Decompression or JSON parsing failed

Tier I/O errors live in tier.base next to the KeyValueTier protocol.

Invariants:
    - All errors inherit from DocSyncError
    - Errors carry a stable code for programmatic handling
    - Corruption is reported to callers as "no data", these exceptions
      only escape from the low-level codec functions
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DocSyncError(Exception):
    """Base exception for all docsync errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCSYNC_ERROR"
        self.details = details or {}


class QuotaViolationError(DocSyncError):
    """A chunk still exceeds the per-item byte budget.

    Raised when:
    - A single code point plus its chunk key overhead exceeds the budget
    - Fixed-length fallback slicing still produces an over-budget chunk

    This is a configuration error (quota or key too small), the document
    is left unchanged on every tier.
    """

    def __init__(
        self,
        message: str,
        chunk_index: Optional[int] = None,
        max_item_bytes: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="QUOTA_VIOLATION",
            details={"chunk_index": chunk_index, "max_item_bytes": max_item_bytes},
        )
        self.chunk_index = chunk_index
        self.max_item_bytes = max_item_bytes


class ChunkWriteError(DocSyncError):
    """Writing the chunks of a new revision failed.

    The previous meta record and its chunks are untouched, so the
    previously readable document stays readable.
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        revision: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CHUNK_WRITE_ERROR",
            details={"key": key, "revision": revision},
        )
        self.key = key
        self.revision = revision


class MissingChunkError(DocSyncError):
    """A chunk referenced by the meta record is missing."""

    def __init__(self, message: str, index: Optional[int] = None) -> None:
        super().__init__(message, code="MISSING_CHUNK", details={"index": index})
        self.index = index


class DecodeError(DocSyncError):
    """Payload could not be decompressed or parsed."""

    def __init__(self, message: str, kind: str) -> None:
        super().__init__(message, code="DECODE_ERROR", details={"kind": kind})
        self.kind = kind
