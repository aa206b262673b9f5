"""
docsync - Main entry point.

Runs one sync pass against the configured tiers: reconcile every tier,
write the authoritative document back everywhere, then exit.

Usage:
    python -m replica.docsync.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Configuration errors exit with status 1 before any tier is touched
    - Background write-backs are awaited before exit
"""

from __future__ import annotations

import asyncio
import logging
import sys

import json_log_formatter

from .config import EngineConfig, ObservabilityConfig
from .session import SyncSession

logger = logging.getLogger(__name__)


def setup_logging(observability: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        observability: Logging configuration
    """
    level = getattr(logging, observability.log_level.upper(), logging.INFO)

    if observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def run_once(config: EngineConfig) -> int:
    """Reconcile the tiers once.

    Returns:
        Process exit status
    """
    session = SyncSession(config)
    try:
        result = await session.start(force=True)
        await session.reconciler.drain()
        logger.info(
            f"Sync pass finished, document restored from {result.source}",
            extra={"source": result.source, "timestamp": result.timestamp},
        )
        return 0
    except Exception as e:
        logger.error(f"Sync pass failed: {e}", exc_info=True)
        return 1
    finally:
        await session.stop()


def main() -> None:
    """Main entry point."""
    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.observability)
    config.log_config()

    sys.exit(asyncio.run(run_once(config)))


if __name__ == "__main__":
    main()
