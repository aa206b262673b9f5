"""
Reconciliation module for docsync.

On session start the document may exist in several tiers with different
ages. This module picks the authoritative copy (last writer wins by
recorded timestamp), migrates the legacy format and writes the winner
back everywhere.

Invariants:
    - A corrupt or unreachable tier is treated exactly like an empty one
    - Equal timestamps keep the higher-priority tier's copy
    - Only a failure of the fast local tier reaches the caller
"""

from .defaults import (
    default_groups,
    document_from_backup,
    is_empty_document,
    migrate_legacy_apps,
    normalize_groups,
)
from .reconciler import RECONCILE_GUARD_KEY, ReconcileResult, TierReconciler
from .sources import (
    ChunkedCloudSource,
    FastLocalSource,
    LegacySource,
    SourceKind,
    TierRecord,
    TierSource,
    TimestampedSource,
)

__all__ = [
    "TierReconciler",
    "ReconcileResult",
    "RECONCILE_GUARD_KEY",
    "TierSource",
    "TierRecord",
    "SourceKind",
    "TimestampedSource",
    "ChunkedCloudSource",
    "FastLocalSource",
    "LegacySource",
    "default_groups",
    "migrate_legacy_apps",
    "normalize_groups",
    "document_from_backup",
    "is_empty_document",
]
