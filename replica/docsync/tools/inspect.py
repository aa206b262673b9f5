"""
Inspect CLI tool for docsync.

Works directly on the tier files of a stopped client, without a running
session:

    show      - meta record, chunk keys and sizes of the stored document
    read      - print the decoded document as JSON
    clear     - remove the document and every chunk it references
    reconcile - run a forced reconciliation across all tiers
    import    - load an exported backup file and push it to every tier

Usage:
    python -m replica.docsync.tools.inspect --data-dir <path> show

Invariants:
    - show and read never modify stored data
    - Exit status is 0 on success, 1 on failure

How to change safely:
    - Keep output lines stable; scripts grep them
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional

from ..chunk.budget import byte_length, compact_json, estimate_chunk_count
from ..chunk.meta import ChunkedMeta, CorruptMeta, InlineMeta, LegacyMeta
from ..config import EngineConfig, SqliteConfig, TierBackend
from ..main import setup_logging
from ..reconcile.defaults import document_from_backup
from ..session import SyncSession

logger = logging.getLogger(__name__)


@dataclass
class InspectResult:
    """Result of an inspect command.

    Attributes:
        success: Whether the command succeeded
        lines: Human-readable output
        error: Error message if failed
    """

    success: bool
    lines: List[str] = field(default_factory=list)
    error: Optional[str] = None


class InspectTool:
    """Runs inspect commands against one tier set.

    Example:
        >>> tool = InspectTool(config)
        >>> result = await tool.show()
        >>> print("\\n".join(result.lines))
    """

    def __init__(self, config: EngineConfig, session: Optional[SyncSession] = None) -> None:
        """Initialize the tool.

        Args:
            config: Engine configuration naming the tiers
            session: Pre-built session (tests); built from config otherwise
        """
        self.config = config
        self.session = session or SyncSession(config)
        self.key = config.reconcile.document_key

    async def show(self) -> InspectResult:
        """Describe how the document is stored on the cloud tier."""
        store = self.session.store
        meta = await store.read_meta(self.key)
        detail = await store.read_detailed(self.key)

        lines = [f"Key: {self.key}", f"Tier: {store.tier.name}"]
        if meta is None:
            lines.append("Format: absent")
        elif isinstance(meta, LegacyMeta):
            lines.append("Format: legacy (raw value)")
        elif isinstance(meta, CorruptMeta):
            lines.append(f"Format: corrupt ({meta.reason})")
        elif isinstance(meta, InlineMeta):
            lines.append(f"Format: inline (compressed={meta.compressed})")
            lines.append(f"  Payload bytes: {byte_length(meta.data)}")
        elif isinstance(meta, ChunkedMeta):
            lines.append(
                f"Format: chunked (compressed={meta.compressed}, chunks={meta.chunk_count})"
            )
            lines.append(f"  Revision: {meta.revision or 'none (unrevisioned)'}")
            for chunk_key in meta.chunk_keys(self.key):
                chunk = await store.tier.get(chunk_key)
                size = byte_length(chunk) if isinstance(chunk, str) else None
                lines.append(f"  {chunk_key}: {size if size is not None else 'MISSING'}")

        lines.append(f"Status: {detail.status.value}")
        if detail.document is not None:
            lines.append(f"Document bytes: {byte_length(compact_json(detail.document))}")
            lines.append(f"Estimated chunks: {estimate_chunk_count(detail.document, store.budget)}")
        return InspectResult(success=True, lines=lines)

    async def read(self) -> InspectResult:
        """Decode the document from the cloud tier."""
        detail = await self.session.store.read_detailed(self.key)
        if not detail.usable:
            return InspectResult(success=False, error=f"Document not readable: {detail.status.value}")
        return InspectResult(
            success=True,
            lines=[json.dumps(detail.document, ensure_ascii=False, indent=2)],
        )

    async def clear(self) -> InspectResult:
        """Remove the document and its chunks from the cloud tier."""
        await self.session.store.clear(self.key)
        return InspectResult(success=True, lines=[f"Cleared {self.key}"])

    async def reconcile(self) -> InspectResult:
        """Force a reconciliation across all tiers."""
        result = await self.session.start(force=True)
        await self.session.reconciler.drain()
        return InspectResult(
            success=True,
            lines=[
                f"Source: {result.source}",
                f"Timestamp: {result.timestamp}",
                f"Groups: {len(result.document) if isinstance(result.document, list) else 'n/a'}",
            ],
        )

    async def import_backup(self, path: Path) -> InspectResult:
        """Import an exported backup file."""
        data = json.loads(path.read_text(encoding="utf-8"))
        document = document_from_backup(data, self.config.reconcile.default_group_name)
        if document is None:
            return InspectResult(success=False, error=f"No document found in {path}")
        await self.session.import_document(document)
        return InspectResult(success=True, lines=[f"Imported {len(document)} groups"])

    async def run(self, command: str, backup: Optional[Path] = None) -> InspectResult:
        """Run one command, always releasing the tiers."""
        try:
            if command == "show":
                return await self.show()
            if command == "read":
                return await self.read()
            if command == "clear":
                return await self.clear()
            if command == "reconcile":
                return await self.reconcile()
            if command == "import":
                if backup is None:
                    return InspectResult(success=False, error="import requires a backup file")
                return await self.import_backup(backup)
            return InspectResult(success=False, error=f"Unknown command: {command}")
        except Exception as e:
            logger.error(f"Command {command} failed: {e}", exc_info=True)
            return InspectResult(success=False, error=str(e))
        finally:
            await self.session.stop()


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Engine configuration for SQLite tier files under args.data_dir."""
    base = EngineConfig.from_env()
    return replace(
        base,
        local_backend=TierBackend.SQLITE,
        cloud_backend=TierBackend.SQLITE,
        sqlite=replace(base.sqlite, data_dir=args.data_dir) if args.data_dir else base.sqlite,
        reconcile=replace(base.reconcile, document_key=args.key) if args.key else base.reconcile,
    )


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for the inspect tool."""
    parser = argparse.ArgumentParser(description="Inspect and repair a docsync tier set")
    parser.add_argument("--data-dir", help=f"Directory of the tier files (default {SqliteConfig.data_dir})")
    parser.add_argument("--key", help="Document key (default from DOCSYNC_DOCUMENT_KEY)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("show", help="Show how the document is stored")
    subparsers.add_parser("read", help="Print the decoded document")
    subparsers.add_parser("clear", help="Remove the document and its chunks")
    subparsers.add_parser("reconcile", help="Force a reconciliation")
    import_parser = subparsers.add_parser("import", help="Import an exported backup")
    import_parser.add_argument("backup", type=Path, help="Backup JSON file")

    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        replace(config.observability, log_level="DEBUG" if args.verbose else "WARNING")
    )

    tool = InspectTool(config)
    result = asyncio.run(tool.run(args.command, getattr(args, "backup", None)))

    if result.success:
        for line in result.lines:
            print(line)
        sys.exit(0)
    else:
        print(f"{args.command} failed: {result.error}")
        sys.exit(1)


if __name__ == "__main__":
    main()
