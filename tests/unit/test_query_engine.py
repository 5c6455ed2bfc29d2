"""
Unit tests for the query engine.

Tests cover:
- Query body construction for search / recent / history
- Missing parameter validation
- Missing index handling and reconciliation
- History pagination
"""

import pytest

from logtrail.trail_server.access.resolver import ApplicationContext
from logtrail.trail_server.config import QueryConfig
from logtrail.trail_server.errors import (
    BackendUnavailableError,
    MissingParameterError,
    ValidationError,
)
from logtrail.trail_server.logs.engine import QueryEngine, decode_uri
from logtrail.trail_server.logs.memory import InMemoryLogBackend
from logtrail.trail_server.tenants.models import Application


def make_ctx(app_id="a1"):
    app = Application(
        id=app_id, name="api", key="k" * 20, owner_id="u1", team_id=None,
        created_at=1, updated_at=1,
    )
    return ApplicationContext(application=app, user_id="u1")


class TestQueryBodies:
    """Generated OpenSearch bodies."""

    @pytest.fixture
    def engine(self):
        return QueryEngine(InMemoryLogBackend())

    def test_search_body(self, engine):
        assert engine.search_body("disk full") == {
            "query": {
                "match": {"message": {"query": "disk full", "minimum_should_match": "80%"}}
            },
            "sort": [{"time": {"order": "desc"}}],
            "size": 100,
        }

    def test_recent_body(self, engine):
        assert engine.recent_body() == {
            "query": {"match_all": {}},
            "sort": [{"time": {"order": "desc"}}],
            "size": 75,
        }

    def test_history_body_without_content(self, engine):
        assert engine.history_body("150") == {
            "query": {"bool": {"filter": {"range": {"id": {"lt": "150"}}}}},
            "sort": [{"time": {"order": "desc"}}],
            "size": 100,
        }

    def test_history_body_with_content(self, engine):
        body = engine.history_body("150", "timeout")
        assert body["query"]["bool"]["must"] == {
            "match": {"message": {"query": "timeout", "minimum_should_match": "80%"}}
        }
        assert body["query"]["bool"]["filter"] == {"range": {"id": {"lt": "150"}}}

    def test_sizes_from_config(self):
        engine = QueryEngine(InMemoryLogBackend(), config=QueryConfig(search_size=5, recent_size=3))
        assert engine.search_body("x")["size"] == 5
        assert engine.recent_body()["size"] == 3


class TestReadModes:
    """Tests for search / recent / history against the in-memory backend."""

    @pytest.fixture
    def backend(self):
        backend = InMemoryLogBackend()
        for i in range(1, 251):
            backend.add_record(
                "a1",
                {"id": i, "time": 1_000 + i, "message": "timeout" if i % 2 else "ok"},
                doc_id=f"d{i}",
            )
        backend.add_record("a2", {"id": 1, "time": 5_000, "message": "timeout elsewhere"})
        return backend

    @pytest.fixture
    def engine(self, backend):
        return QueryEngine(backend)

    @pytest.mark.asyncio
    async def test_recent(self, engine):
        records = await engine.recent(make_ctx())

        assert len(records) == 75
        assert records[0]["id"] == 250
        assert records[0]["_id"] == "d250"
        assert records[-1]["id"] == 176

    @pytest.mark.asyncio
    async def test_search(self, engine):
        records = await engine.search(make_ctx(), "timeout")

        assert len(records) == 100
        assert all(r["message"] == "timeout" for r in records)
        assert [r["time"] for r in records] == sorted((r["time"] for r in records), reverse=True)

    @pytest.mark.asyncio
    async def test_search_decodes_content(self, engine, backend):
        await engine.search(make_ctx(), "disk%20full")
        _, body = backend.search_calls[-1]
        assert body["query"]["match"]["message"]["query"] == "disk full"

    @pytest.mark.asyncio
    async def test_search_keeps_reserved_escapes(self, engine, backend):
        await engine.search(make_ctx(), "c%2B%2B%20build%23")
        _, body = backend.search_calls[-1]
        assert body["query"]["match"]["message"]["query"] == "c%2B%2B build%23"

    @pytest.mark.asyncio
    async def test_whitespace_content_is_searched(self, engine, backend):
        """Only an absent or empty value counts as missing."""
        assert await engine.search(make_ctx(), "   ") == []
        assert len(backend.search_calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, ""])
    async def test_search_requires_content(self, engine, backend, content):
        with pytest.raises(MissingParameterError) as exc_info:
            await engine.search(make_ctx(), content)
        assert exc_info.value.message == 'Missing "content" parameter'
        assert len(backend.search_calls) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("before", [None, ""])
    async def test_history_requires_before(self, engine, before):
        with pytest.raises(MissingParameterError) as exc_info:
            await engine.history(make_ctx(), before)
        assert exc_info.value.message == 'Missing "before" parameter'

    @pytest.mark.asyncio
    async def test_history_non_numeric_cursor(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            await engine.history(make_ctx(), "abc")
        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    async def test_history_pages_are_disjoint(self, engine):
        """Walking pages with before = min(id) covers everything exactly once."""
        seen = []
        before = "251"
        while True:
            page = await engine.history(make_ctx(), before)
            seen.extend(r["id"] for r in page)
            if len(page) < 100:
                break
            before = str(min(r["id"] for r in page))

        assert sorted(seen) == list(range(1, 251))
        assert len(seen) == len(set(seen))

    @pytest.mark.asyncio
    async def test_history_with_content(self, engine):
        page = await engine.history(make_ctx(), "100", "timeout")

        assert len(page) == 50
        assert all(r["id"] < 100 and r["message"] == "timeout" for r in page)

    @pytest.mark.asyncio
    async def test_empty_history_content_ignored(self, engine, backend):
        await engine.history(make_ctx(), "10", "")
        _, body = backend.search_calls[-1]
        assert "must" not in body["query"]["bool"]

    @pytest.mark.asyncio
    async def test_scoped_to_application(self, engine, backend):
        records = await engine.search(make_ctx("a2"), "timeout")

        assert [r["message"] for r in records] == ["timeout elsewhere"]
        assert {name for name, _ in backend.search_calls} == {"syslog-a2"}


class TestMissingIndex:
    """A missing index reads as no logs and triggers reconciliation."""

    @pytest.mark.asyncio
    async def test_empty_and_reconciled(self, registry, backend, engine, resolver):
        app = await registry.create_application("u1", name="api")
        backend.drop_index(app.id)
        ctx = await resolver.resolve_application(app.id, "u1")

        assert await engine.recent(ctx) == []
        assert await backend.index_exists(app.id)
        assert len(backend.search_calls) == 0

    @pytest.mark.asyncio
    async def test_reconciliation_disabled(self, registry, backend, resolver):
        engine = QueryEngine(backend, registry, QueryConfig(reconcile_missing_indexes=False))
        app = await registry.create_application("u1", name="api")
        backend.drop_index(app.id)
        ctx = await resolver.resolve_application(app.id, "u1")

        assert await engine.recent(ctx) == []
        assert not await backend.index_exists(app.id)

    @pytest.mark.asyncio
    async def test_reconciliation_failure_still_empty(self):
        class Unavailable(InMemoryLogBackend):
            async def create_index(self, application_id):
                raise BackendUnavailableError("opensearch")

        class Registry:
            def __init__(self, backend):
                self.backend = backend

            async def ensure_index(self, application_id):
                return await self.backend.create_index(application_id)

        backend = Unavailable()
        engine = QueryEngine(backend, Registry(backend))

        assert await engine.recent(make_ctx()) == []


class TestDecodeUri:
    """Percent-decoding of search content."""

    @pytest.mark.parametrize(
        "raw,decoded",
        [
            ("disk%20full", "disk full"),
            ("caf%C3%A9", "café"),
            ("a%2Fb%3Fc%23d", "a%2Fb%3Fc%23d"),
            ("1%2B1%3D2", "1%2B1%3D2"),
            ("%E2%82%AC%2B%E2%82%AC", "€%2B€"),
            ("100%", "100%"),
            ("%zz%4", "%zz%4"),
            ("%C3%28", "%C3%28"),
        ],
    )
    def test_decode(self, raw, decoded):
        assert decode_uri(raw) == decoded
