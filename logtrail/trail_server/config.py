"""
Configuration management for the LogTrail gateway.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for OPENSEARCH_HOST
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class LogBackendKind(Enum):
    """Supported search backends for tenant log indexes."""

    OPENSEARCH = "opensearch"
    MEMORY = "memory"


@dataclass(frozen=True)
class OpenSearchConfig:
    """OpenSearch connection configuration.

    Attributes:
        host: Node URL (scheme://host:port)
        username: Basic-auth username (optional)
        password: Basic-auth password (optional)
        secure: Whether to use TLS
        verify_certs: Whether to verify server certificates
        index_prefix: Prefix of per-application index names
        timeout_seconds: Per-request timeout
    """

    host: str = "http://localhost:9200"
    username: str | None = None
    password: str | None = None
    secure: bool = False
    verify_certs: bool = False
    index_prefix: str = "syslog-"
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> OpenSearchConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("OPENSEARCH_HOST", "http://localhost:9200"),
            username=os.getenv("OPENSEARCH_USERNAME"),
            password=os.getenv("OPENSEARCH_PASSWORD"),
            secure=_env_bool("OPENSEARCH_SECURE", "false"),
            verify_certs=_env_bool("OPENSEARCH_VERIFY_CERTS", "false"),
            index_prefix=os.getenv("OPENSEARCH_INDEX_PREFIX", "syslog-"),
            timeout_seconds=float(os.getenv("OPENSEARCH_TIMEOUT_SECONDS", "10")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Relational store configuration.

    Attributes:
        db_path: SQLite database file holding applications and teams
        busy_timeout_ms: SQLite busy timeout
        wal_mode: Enable SQLite WAL journal mode
    """

    db_path: str = "/var/lib/logtrail/tenants.db"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("LOGTRAIL_DB_PATH", "/var/lib/logtrail/tenants.db"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
        )


@dataclass(frozen=True)
class CacheConfig:
    """Application record cache.

    Attributes:
        ttl_seconds: Upper bound on staleness of a cached Application
        max_size: Maximum number of cached Applications
    """

    ttl_seconds: float = 30.0
    max_size: int = 10_000

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Load configuration from environment variables."""
        return cls(
            ttl_seconds=float(os.getenv("APPLICATION_CACHE_TTL_SECONDS", "30")),
            max_size=int(os.getenv("APPLICATION_CACHE_MAX_SIZE", "10000")),
        )


@dataclass(frozen=True)
class QueryConfig:
    """Query engine limits.

    Attributes:
        search_size: Max hits returned by full-text search
        recent_size: Max hits returned by the recent window
        history_size: Page size of history pagination
        minimum_should_match: Share of query terms that must match
        reconcile_missing_indexes: Re-provision a tenant index found missing on read
    """

    search_size: int = 100
    recent_size: int = 75
    history_size: int = 100
    minimum_should_match: str = "80%"
    reconcile_missing_indexes: bool = True

    @classmethod
    def from_env(cls) -> QueryConfig:
        """Load configuration from environment variables."""
        return cls(
            search_size=int(os.getenv("SEARCH_PAGE_SIZE", "100")),
            recent_size=int(os.getenv("RECENT_PAGE_SIZE", "75")),
            history_size=int(os.getenv("HISTORY_PAGE_SIZE", "100")),
            minimum_should_match=os.getenv("MINIMUM_SHOULD_MATCH", "80%"),
            reconcile_missing_indexes=_env_bool("RECONCILE_MISSING_INDEXES", "true"),
        )


@dataclass(frozen=True)
class TrailConfig:
    """Live tail configuration.

    Attributes:
        queue_size: Per-subscriber buffer; records beyond it are dropped
    """

    queue_size: int = 1000

    @classmethod
    def from_env(cls) -> TrailConfig:
        """Load configuration from environment variables."""
        return cls(queue_size=int(os.getenv("TRAIL_QUEUE_SIZE", "1000")))


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        log_backend: Which search backend holds tenant logs
        opensearch: OpenSearch configuration (if log_backend is OPENSEARCH)
        storage: Relational store configuration
        cache: Application cache configuration
        query: Query engine limits
        trail: Live tail configuration
        observability: Observability configuration
    """

    log_backend: LogBackendKind = LogBackendKind.OPENSEARCH
    opensearch: OpenSearchConfig = field(default_factory=OpenSearchConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    trail: TrailConfig = field(default_factory=TrailConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("LOG_BACKEND", "opensearch").lower()
        try:
            log_backend = LogBackendKind(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid LOG_BACKEND '{backend_str}'. Must be one of: opensearch, memory"
            )

        config = cls(
            log_backend=log_backend,
            opensearch=OpenSearchConfig.from_env(),
            storage=StorageConfig.from_env(),
            cache=CacheConfig.from_env(),
            query=QueryConfig.from_env(),
            trail=TrailConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.log_backend == LogBackendKind.OPENSEARCH and not self.opensearch.host:
            raise ValueError("OPENSEARCH_HOST is required when LOG_BACKEND=opensearch")

        if not self.opensearch.index_prefix:
            raise ValueError("OPENSEARCH_INDEX_PREFIX must not be empty")

        for name in ("search_size", "recent_size", "history_size"):
            if getattr(self.query, name) <= 0:
                raise ValueError(f"Query {name} must be positive")

        if not self.query.minimum_should_match.endswith("%"):
            raise ValueError("MINIMUM_SHOULD_MATCH must be a percentage, e.g. 80%")

        if self.cache.ttl_seconds < 0:
            raise ValueError("APPLICATION_CACHE_TTL_SECONDS must not be negative")

        if self.trail.queue_size <= 0:
            raise ValueError("TRAIL_QUEUE_SIZE must be positive")

        data_dir = os.path.dirname(self.storage.db_path)
        if data_dir and not os.path.exists(data_dir):
            logger.warning(
                f"Database directory does not exist: {data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "log_backend": self.log_backend.value,
                "opensearch_host": self.opensearch.host
                if self.log_backend == LogBackendKind.OPENSEARCH
                else None,
                "opensearch_auth": "***" if self.opensearch.password else None,
                "index_prefix": self.opensearch.index_prefix,
                "db_path": self.storage.db_path,
                "cache_ttl_seconds": self.cache.ttl_seconds,
                "trail_queue_size": self.trail.queue_size,
                "log_level": self.observability.log_level,
            },
        )
