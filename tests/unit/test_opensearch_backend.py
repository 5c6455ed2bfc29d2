"""
Unit tests for the OpenSearch log backend.

The opensearch-py client is replaced by a recording stub; no cluster is needed.
"""

import pytest
from opensearchpy import ConnectionError as OpenSearchConnectionError
from opensearchpy import NotFoundError as OpenSearchNotFoundError
from opensearchpy import RequestError

from logtrail.trail_server.config import OpenSearchConfig
from logtrail.trail_server.errors import BackendUnavailableError, ValidationError
from logtrail.trail_server.logs.base import LOG_INDEX_BODY, LogBackend
from logtrail.trail_server.logs.opensearch import OpenSearchLogBackend


class StubIndices:
    def __init__(self, client):
        self.client = client

    def exists(self, index):
        self.client.calls.append(("exists", index))
        if self.client.error:
            raise self.client.error
        return index in self.client.indexes

    def create(self, index, body):
        self.client.calls.append(("create", index))
        if self.client.error:
            raise self.client.error
        self.client.indexes[index] = body
        return {"acknowledged": True}


class StubClient:
    """Records calls; raises ``error`` when set."""

    def __init__(self):
        self.calls = []
        self.indexes = {}
        self.error = None
        self.response = {"hits": {"hits": []}}
        self.closed = False
        self.indices = StubIndices(self)

    def search(self, index, body):
        self.calls.append(("search", index, body))
        if self.error:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


class TestOpenSearchLogBackend:
    """Tests for OpenSearchLogBackend."""

    @pytest.fixture
    def client(self):
        return StubClient()

    @pytest.fixture
    def backend(self, client):
        return OpenSearchLogBackend(OpenSearchConfig(index_prefix="syslog-"), client=client)

    def test_implements_protocol(self, backend):
        assert isinstance(backend, LogBackend)

    @pytest.mark.asyncio
    async def test_create_index_uses_mapping(self, backend, client):
        assert await backend.create_index("a1") is True
        assert client.indexes["syslog-a1"] == LOG_INDEX_BODY

    @pytest.mark.asyncio
    async def test_create_index_already_exists(self, backend, client):
        client.error = RequestError(400, "resource_already_exists_exception", {})
        assert await backend.create_index("a1") is False

    @pytest.mark.asyncio
    async def test_create_index_other_request_error(self, backend, client):
        client.error = RequestError(400, "illegal_argument_exception", {})
        with pytest.raises(BackendUnavailableError):
            await backend.create_index("a1")

    @pytest.mark.asyncio
    async def test_index_exists(self, backend, client):
        assert await backend.index_exists("a1") is False
        client.indexes["syslog-a1"] = {}
        assert await backend.index_exists("a1") is True
        assert client.calls[-1] == ("exists", "syslog-a1")

    @pytest.mark.asyncio
    async def test_search_maps_hits(self, backend, client):
        client.response = {
            "hits": {
                "hits": [
                    {"_id": "d2", "_source": {"id": 2, "message": "b"}},
                    {"_id": "d1", "_source": {"id": 1, "message": "a"}},
                ]
            }
        }
        body = {"query": {"match_all": {}}, "size": 75}

        hits = await backend.search("a1", body)

        assert [h.to_record() for h in hits] == [
            {"id": 2, "message": "b", "_id": "d2"},
            {"id": 1, "message": "a", "_id": "d1"},
        ]
        assert client.calls[-1] == ("search", "syslog-a1", body)

    @pytest.mark.asyncio
    async def test_search_vanished_index(self, backend, client):
        client.error = OpenSearchNotFoundError(404, "index_not_found_exception", {})
        assert await backend.search("a1", {"query": {"match_all": {}}}) == []

    @pytest.mark.asyncio
    async def test_rejected_query_is_validation_error(self, backend, client):
        """A malformed cursor is the caller's fault, not an outage."""
        client.error = RequestError(
            400, "search_phase_execution_exception", {"error": "failed to parse 'abc'"}
        )
        body = {"query": {"bool": {"filter": {"range": {"id": {"lt": "abc"}}}}}}

        with pytest.raises(ValidationError) as exc_info:
            await backend.search("a1", body)

        assert exc_info.value.status == 400
        assert exc_info.value.message == "Invalid query"

    @pytest.mark.asyncio
    async def test_connection_failure(self, backend, client):
        client.error = OpenSearchConnectionError("N/A", "connection refused", Exception())
        with pytest.raises(BackendUnavailableError) as exc_info:
            await backend.search("a1", {"query": {"match_all": {}}})
        assert exc_info.value.status == 503
        with pytest.raises(BackendUnavailableError):
            await backend.index_exists("a1")

    @pytest.mark.asyncio
    async def test_close(self, backend, client):
        await backend.close()
        assert client.closed
