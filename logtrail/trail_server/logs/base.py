"""
Base protocol and types for the per-tenant log index backend.

This module defines the LogBackend protocol that all search backends must
implement, the shape of a search hit, and the one place where an
application id is turned into an index name.

Invariants:
    - index_name_for() is the only mapping from application id to index
    - A backend never reads or writes an index other than the one named
      for the application it was called with
    - Backend failures surface as BackendUnavailableError

How to change safely:
    - Protocol changes require updating all implementations
    - Query bodies are plain OpenSearch DSL dicts; the in-memory backend
      must keep evaluating every construct the query engine emits
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import ServerConfig

DEFAULT_INDEX_PREFIX = "syslog-"

LOG_INDEX_BODY: dict[str, Any] = {
    "settings": {
        "index.number_of_shards": 1,
        "index.number_of_replicas": 1,
        "index.refresh_interval": "1s",
    },
    "mappings": {
        # Records carry arbitrary extra fields from the ingestion path.
        "dynamic": True,
        "properties": {
            "time": {"type": "date", "format": "epoch_millis||strict_date_optional_time"},
            "message": {"type": "text"},
        },
    },
}


def index_name_for(application_id: str, prefix: str = DEFAULT_INDEX_PREFIX) -> str:
    """Name of the log index owned by an application."""
    return f"{prefix}{application_id}"


@dataclass(frozen=True)
class LogHit:
    """One search hit.

    Attributes:
        doc_id: Backend-assigned document id
        source: Stored log record
    """

    doc_id: str
    source: dict[str, Any]

    def to_record(self) -> dict[str, Any]:
        """The record body with the backend id merged in as ``_id``."""
        record = dict(self.source)
        record["_id"] = self.doc_id
        return record


@runtime_checkable
class LogBackend(Protocol):
    """Protocol for tenant log index backends.

    Every method takes the application id, not an index name; the backend
    derives the index with index_name_for() and its configured prefix.

    Example:
        >>> backend = OpenSearchLogBackend(config.opensearch)
        >>> await backend.create_index(app.id)
        >>> hits = await backend.search(app.id, {"query": {"match_all": {}}, "size": 75})
    """

    @abstractmethod
    async def index_exists(self, application_id: str) -> bool:
        """Whether the application's index exists."""
        ...

    @abstractmethod
    async def create_index(self, application_id: str) -> bool:
        """Create the application's index.

        Idempotent: creating an index that already exists is not an error.

        Returns:
            True if the index was created by this call, False if it existed
        """
        ...

    @abstractmethod
    async def search(self, application_id: str, body: dict[str, Any]) -> list[LogHit]:
        """Run a query body against the application's index.

        Args:
            application_id: Owning application
            body: OpenSearch search body (query, sort, size)

        Returns:
            Hits in backend order
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release client resources."""
        ...


def create_log_backend(config: "ServerConfig") -> LogBackend:
    """Factory function to create a log backend from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import LogBackendKind
    from .memory import InMemoryLogBackend
    from .opensearch import OpenSearchLogBackend

    if config.log_backend == LogBackendKind.OPENSEARCH:
        return OpenSearchLogBackend(config.opensearch)
    elif config.log_backend == LogBackendKind.MEMORY:
        return InMemoryLogBackend(index_prefix=config.opensearch.index_prefix)
    else:
        raise ValueError(f"Unsupported log backend: {config.log_backend}")
