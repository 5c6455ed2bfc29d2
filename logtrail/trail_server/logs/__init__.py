"""
Log index module for LogTrail - per-tenant indexes and the query engine.

This module provides a pluggable backend interface supporting:
- OpenSearch (production)
- In-memory (for testing)

Invariants:
    - One index per application, named only by index_name_for()
    - Readers treat a missing index as an empty log
    - Queries are plain OpenSearch DSL bodies built by the engine

How to change safely:
    - New backends must implement the LogBackend protocol
    - Keep the in-memory evaluator in step with the bodies the engine emits
"""

from .base import LogBackend, LogHit, create_log_backend, index_name_for
from .engine import QueryEngine
from .memory import InMemoryLogBackend
from .opensearch import OpenSearchLogBackend

__all__ = [
    # Protocol and types
    "LogBackend",
    "LogHit",
    "index_name_for",
    # Factory
    "create_log_backend",
    # Implementations
    "InMemoryLogBackend",
    "OpenSearchLogBackend",
    "QueryEngine",
]
