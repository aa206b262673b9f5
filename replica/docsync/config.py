"""
Configuration management for docsync.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Quota and margin defaults match the replicated tier's real limits
      (8192 bytes per item, 384 bytes kept in reserve)
    - Secrets (the HTTP tier token) are never logged

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Changing the document key or the legacy key orphans existing data
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class TierBackend(Enum):
    """Supported key-value tier backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    HTTP = "http"


@dataclass(frozen=True)
class ChunkConfig:
    """Chunking configuration for the quota-constrained tier.

    Attributes:
        quota_bytes_per_item: Per-item byte quota of the replicated tier
        safety_margin_bytes: Bytes held back from the quota
        min_item_bytes: Lower bound for the effective per-item budget
        compress: Whether documents are compressed before splitting
        compression: Compressor for new writes, "gzip" or "lz-utf16"
        fallback_chunk_chars: Slice length used by the fixed-width fallback
    """

    quota_bytes_per_item: int = 8192
    safety_margin_bytes: int = 384
    min_item_bytes: int = 1024
    compress: bool = True
    compression: str = "gzip"
    fallback_chunk_chars: int = 3000

    @classmethod
    def from_env(cls) -> ChunkConfig:
        """Load configuration from environment variables."""
        return cls(
            quota_bytes_per_item=int(os.getenv("DOCSYNC_QUOTA_BYTES_PER_ITEM", "8192")),
            safety_margin_bytes=int(os.getenv("DOCSYNC_SAFETY_MARGIN_BYTES", "384")),
            min_item_bytes=int(os.getenv("DOCSYNC_MIN_ITEM_BYTES", "1024")),
            compress=os.getenv("DOCSYNC_COMPRESS", "true").lower() == "true",
            compression=os.getenv("DOCSYNC_COMPRESSION", "gzip").lower(),
            fallback_chunk_chars=int(os.getenv("DOCSYNC_FALLBACK_CHUNK_CHARS", "3000")),
        )


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite tier configuration.

    Attributes:
        data_dir: Directory holding the tier database files
        fast_local_file: File name of the fast local cache
        durable_local_file: File name of the durable local store
        cloud_file: File name used when the cloud tier is SQLite-backed
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: SQLite WAL journal mode enabled
    """

    data_dir: str = "./.docsync"
    fast_local_file: str = "fast_local.db"
    durable_local_file: str = "durable_local.db"
    cloud_file: str = "cloud.db"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DOCSYNC_DATA_DIR", "./.docsync"),
            fast_local_file=os.getenv("DOCSYNC_FAST_LOCAL_FILE", "fast_local.db"),
            durable_local_file=os.getenv("DOCSYNC_DURABLE_LOCAL_FILE", "durable_local.db"),
            cloud_file=os.getenv("DOCSYNC_CLOUD_FILE", "cloud.db"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class HttpConfig:
    """Remote key-value storage server configuration.

    Attributes:
        base_url: Server base URL (the /api/storage routes hang off it)
        token: Bearer token (optional)
        timeout_seconds: Per-request timeout
        quota_bytes_per_item: Per-item byte quota enforced by the server (0 = none)
    """

    base_url: str = "http://localhost:3001"
    token: str | None = None
    timeout_seconds: float = 10.0
    quota_bytes_per_item: int = 8192

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            base_url=os.getenv("DOCSYNC_HTTP_BASE_URL", "http://localhost:3001"),
            token=os.getenv("DOCSYNC_HTTP_TOKEN"),
            timeout_seconds=float(os.getenv("DOCSYNC_HTTP_TIMEOUT", "10.0")),
            quota_bytes_per_item=int(os.getenv("DOCSYNC_HTTP_QUOTA_BYTES", "8192")),
        )


@dataclass(frozen=True)
class ReconcileConfig:
    """Startup reconciliation configuration.

    Attributes:
        document_key: Logical key the document is stored under
        legacy_key: Key of the old flat item list
        throttle_ms: Minimum interval between two full reconciliations
        trust_fast_local_timestamp: Rank the fast local copy by its stored timestamp
        default_group_name: Name of the group legacy items are migrated into
    """

    document_key: str = "quickLaunchGroups"
    legacy_key: str = "quickLaunchApps"
    throttle_ms: int = 3000
    trust_fast_local_timestamp: bool = False
    default_group_name: str = "Default"

    @classmethod
    def from_env(cls) -> ReconcileConfig:
        """Load configuration from environment variables."""
        return cls(
            document_key=os.getenv("DOCSYNC_DOCUMENT_KEY", "quickLaunchGroups"),
            legacy_key=os.getenv("DOCSYNC_LEGACY_KEY", "quickLaunchApps"),
            throttle_ms=int(os.getenv("DOCSYNC_RECONCILE_THROTTLE_MS", "3000")),
            trust_fast_local_timestamp=os.getenv(
                "DOCSYNC_TRUST_FAST_LOCAL_TIMESTAMP", "false"
            ).lower() == "true",
            default_group_name=os.getenv("DOCSYNC_DEFAULT_GROUP_NAME", "Default"),
        )


@dataclass(frozen=True)
class SchedulerConfig:
    """Debounced background sync configuration.

    Attributes:
        debounce_seconds: Quiet period before a mutation is persisted
        idle_timeout_seconds: Upper bound on waiting for idle time
        persist_state: Mirror scheduler bookkeeping into the fast local tier
    """

    debounce_seconds: float = 2.0
    idle_timeout_seconds: float = 2.0
    persist_state: bool = True

    @classmethod
    def from_env(cls) -> SchedulerConfig:
        """Load configuration from environment variables."""
        return cls(
            debounce_seconds=float(os.getenv("DOCSYNC_DEBOUNCE_SECONDS", "2.0")),
            idle_timeout_seconds=float(os.getenv("DOCSYNC_IDLE_TIMEOUT_SECONDS", "2.0")),
            persist_state=os.getenv("DOCSYNC_PERSIST_STATE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class EngineConfig:
    """Complete engine configuration.

    Attributes:
        local_backend: Backend for the fast local and durable local tiers
        cloud_backend: Backend for the quota-constrained replicated tier
        chunk: Chunking configuration
        sqlite: SQLite tier configuration
        http: HTTP tier configuration
        reconcile: Reconciliation configuration
        scheduler: Background sync configuration
        observability: Logging configuration
    """

    local_backend: TierBackend = TierBackend.SQLITE
    cloud_backend: TierBackend = TierBackend.SQLITE
    chunk: ChunkConfig = field(default_factory=ChunkConfig)
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load complete configuration from environment variables.

        Returns:
            EngineConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        local_backend = _parse_backend("DOCSYNC_LOCAL_BACKEND", "sqlite")
        cloud_backend = _parse_backend("DOCSYNC_CLOUD_BACKEND", "sqlite")

        config = cls(
            local_backend=local_backend,
            cloud_backend=cloud_backend,
            chunk=ChunkConfig.from_env(),
            sqlite=SqliteConfig.from_env(),
            http=HttpConfig.from_env(),
            reconcile=ReconcileConfig.from_env(),
            scheduler=SchedulerConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.local_backend == TierBackend.HTTP:
            raise ValueError("DOCSYNC_LOCAL_BACKEND cannot be http; local tiers must be local")

        if self.chunk.quota_bytes_per_item < 0:
            raise ValueError("DOCSYNC_QUOTA_BYTES_PER_ITEM must be >= 0")
        if self.chunk.safety_margin_bytes < 0:
            raise ValueError("DOCSYNC_SAFETY_MARGIN_BYTES must be >= 0")
        if self.chunk.fallback_chunk_chars <= 0:
            raise ValueError("DOCSYNC_FALLBACK_CHUNK_CHARS must be > 0")
        if self.chunk.compression not in ("gzip", "lz-utf16"):
            raise ValueError(
                f"DOCSYNC_COMPRESSION must be gzip or lz-utf16, got {self.chunk.compression!r}"
            )

        if self.cloud_backend == TierBackend.HTTP and not self.http.base_url:
            raise ValueError("DOCSYNC_HTTP_BASE_URL is required when DOCSYNC_CLOUD_BACKEND=http")

        if not self.reconcile.document_key:
            raise ValueError("DOCSYNC_DOCUMENT_KEY must not be empty")
        if self.reconcile.throttle_ms < 0:
            raise ValueError("DOCSYNC_RECONCILE_THROTTLE_MS must be >= 0")

        if self.scheduler.debounce_seconds < 0:
            raise ValueError("DOCSYNC_DEBOUNCE_SECONDS must be >= 0")

        if TierBackend.SQLITE in (self.local_backend, self.cloud_backend):
            if not os.path.exists(self.sqlite.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.sqlite.data_dir}. "
                    "It will be created on first write."
                )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Engine configuration loaded",
            extra={
                "local_backend": self.local_backend.value,
                "cloud_backend": self.cloud_backend.value,
                "quota_bytes_per_item": self.chunk.quota_bytes_per_item,
                "safety_margin_bytes": self.chunk.safety_margin_bytes,
                "compress": self.chunk.compress,
                "compression": self.chunk.compression,
                "data_dir": self.sqlite.data_dir,
                "http_base_url": self.http.base_url
                if self.cloud_backend == TierBackend.HTTP
                else None,
                "document_key": self.reconcile.document_key,
                "debounce_seconds": self.scheduler.debounce_seconds,
                "log_level": self.observability.log_level,
            },
        )


def _parse_backend(env_name: str, default: str) -> TierBackend:
    raw = os.getenv(env_name, default).lower()
    try:
        return TierBackend(raw)
    except ValueError:
        raise ValueError(f"Invalid {env_name} '{raw}'. Must be one of: memory, sqlite, http")
