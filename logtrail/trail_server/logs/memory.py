"""
In-memory log backend implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without an OpenSearch cluster

It evaluates the subset of the OpenSearch query DSL that the query engine
emits: match_all, match (with minimum_should_match), range and bool
(must / filter), plus field sorting and size.

Invariants:
    - All data is lost on process exit
    - Indexes are isolated exactly like real per-tenant indexes
    - Unsupported DSL raises ValueError instead of silently matching
    - A non-numeric range bound on a numeric field raises ValidationError
    - search_calls keeps only the last SEARCH_CALL_HISTORY queries

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with LogBackend protocol
    - When the engine emits a new construct, teach _matches() about it
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError
from .base import DEFAULT_INDEX_PREFIX, LogHit, index_name_for

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

SEARCH_CALL_HISTORY = 1000


def _tokens(text: Any) -> list[str]:
    return _TOKEN_RE.findall(str(text).lower())


def _required_terms(term_count: int, minimum_should_match: Any) -> int:
    if minimum_should_match is None:
        return 1
    text = str(minimum_should_match).strip()
    if text.endswith("%"):
        required = math.floor(term_count * float(text[:-1]) / 100)
    else:
        required = int(text)
    return min(term_count, max(1, required))


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value))
    except ValueError:
        return None


def _compare(left: Any, right: Any) -> int:
    """Three-way compare, numeric when both sides are numeric."""
    ln, rn = _as_number(left), _as_number(right)
    if ln is not None and rn is not None:
        a, b = ln, rn
    else:
        a, b = str(left), str(right)
    return (a > b) - (a < b)


def _as_list(clause: Any) -> list[Any]:
    if clause is None:
        return []
    return clause if isinstance(clause, list) else [clause]


@dataclass
class InMemoryIndex:
    """In-memory index storage."""

    docs: dict[str, dict[str, Any]] = field(default_factory=dict)


class InMemoryLogBackend:
    """In-memory implementation of LogBackend for testing.

    Thread safety:
        Single event loop only; a lock serializes index creation.

    Example:
        >>> backend = InMemoryLogBackend()
        >>> await backend.create_index("app1")
        >>> backend.add_record("app1", {"id": 1, "time": 1000, "message": "disk full"})
        >>> await backend.search("app1", {"query": {"match_all": {}}})
    """

    def __init__(self, index_prefix: str = DEFAULT_INDEX_PREFIX) -> None:
        self.index_prefix = index_prefix
        self._indexes: dict[str, InMemoryIndex] = {}
        self._lock = asyncio.Lock()
        self.search_calls: deque[tuple[str, dict[str, Any]]] = deque(maxlen=SEARCH_CALL_HISTORY)

    def _index(self, application_id: str) -> str:
        return index_name_for(application_id, self.index_prefix)

    async def index_exists(self, application_id: str) -> bool:
        return self._index(application_id) in self._indexes

    async def create_index(self, application_id: str) -> bool:
        name = self._index(application_id)
        async with self._lock:
            if name in self._indexes:
                return False
            self._indexes[name] = InMemoryIndex()
        logger.debug(f"InMemoryLogBackend created index {name}")
        return True

    async def search(self, application_id: str, body: dict[str, Any]) -> list[LogHit]:
        name = self._index(application_id)
        self.search_calls.append((name, body))
        index = self._indexes.get(name)
        if index is None:
            return []

        query = body.get("query", {"match_all": {}})
        hits = [
            LogHit(doc_id=doc_id, source=dict(source))
            for doc_id, source in index.docs.items()
            if self._matches(query, source)
        ]

        for field_name, descending in reversed(self._sort_keys(body.get("sort"))):
            present = [h for h in hits if field_name in h.source]
            missing = [h for h in hits if field_name not in h.source]
            present.sort(
                key=_SortKey.factory(field_name),
                reverse=descending,
            )
            hits = present + missing

        return hits[: body.get("size", 10)]

    async def close(self) -> None:
        self._indexes.clear()

    # =========================================================================
    # Testing helpers
    # =========================================================================

    def add_record(
        self,
        application_id: str,
        record: dict[str, Any],
        doc_id: str | None = None,
    ) -> str:
        """Store a record, creating the index on first write like OpenSearch does."""
        index = self._indexes.setdefault(self._index(application_id), InMemoryIndex())
        doc_id = doc_id or uuid.uuid4().hex
        index.docs[doc_id] = dict(record)
        return doc_id

    def drop_index(self, application_id: str) -> None:
        self._indexes.pop(self._index(application_id), None)

    def index_names(self) -> list[str]:
        return sorted(self._indexes)

    # =========================================================================
    # DSL evaluation
    # =========================================================================

    @staticmethod
    def _sort_keys(sort: Any) -> list[tuple[str, bool]]:
        keys: list[tuple[str, bool]] = []
        for item in _as_list(sort):
            if isinstance(item, str):
                name, _, order = item.partition(":")
                keys.append((name, order == "desc"))
            elif isinstance(item, dict):
                for name, opts in item.items():
                    order = opts.get("order", "asc") if isinstance(opts, dict) else opts
                    keys.append((name, order == "desc"))
            else:
                raise ValueError(f"Unsupported sort clause: {item!r}")
        return keys

    def _matches(self, query: dict[str, Any], source: dict[str, Any]) -> bool:
        if len(query) != 1:
            raise ValueError(f"Query clause must have exactly one key: {query!r}")
        (kind, clause), = query.items()

        if kind == "match_all":
            return True

        if kind == "match":
            (field_name, opts), = clause.items()
            if not isinstance(opts, dict):
                opts = {"query": opts}
            terms = _tokens(opts["query"])
            if not terms:
                return False
            doc_terms = set(_tokens(source.get(field_name, "")))
            matched = sum(1 for t in terms if t in doc_terms)
            return matched >= _required_terms(len(terms), opts.get("minimum_should_match"))

        if kind == "range":
            (field_name, bounds), = clause.items()
            if field_name not in source:
                return False
            value = source[field_name]
            checks = {
                "lt": lambda c: c < 0,
                "lte": lambda c: c <= 0,
                "gt": lambda c: c > 0,
                "gte": lambda c: c >= 0,
            }
            for op, bound in bounds.items():
                if op not in checks:
                    raise ValueError(f"Unsupported range operator: {op}")
                if _as_number(value) is not None and _as_number(bound) is None:
                    # A numeric field cannot be bounded by a non-numeric value.
                    raise ValidationError("Invalid query", field_name=field_name)
                if not checks[op](_compare(value, bound)):
                    return False
            return True

        if kind == "bool":
            required = _as_list(clause.get("must")) + _as_list(clause.get("filter"))
            return all(self._matches(q, source) for q in required)

        raise ValueError(f"Unsupported query type: {kind}")


class _SortKey:
    """Orders field values with the same numeric-first rule as range checks."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    def __lt__(self, other: _SortKey) -> bool:
        return _compare(self.value, other.value) < 0

    @classmethod
    def factory(cls, field_name: str):
        return lambda hit: cls(hit.source[field_name])
