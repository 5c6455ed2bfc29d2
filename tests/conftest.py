"""
Shared fixtures for LogTrail tests.
"""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from logtrail.trail_server.config import CacheConfig, QueryConfig
from logtrail.trail_server.logs.engine import QueryEngine
from logtrail.trail_server.logs.memory import InMemoryLogBackend
from logtrail.trail_server.access.resolver import AccessResolver
from logtrail.trail_server.tenants.cache import ApplicationCache
from logtrail.trail_server.tenants.registry import TenantRegistry
from logtrail.trail_server.tenants.store import TenantStore


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest_asyncio.fixture
async def store(data_dir):
    """Initialized tenant store in a temp directory."""
    store = TenantStore(str(Path(data_dir) / "tenants.db"), wal_mode=False)
    await store.initialize()
    return store


@pytest.fixture
def backend():
    """Fresh in-memory log backend."""
    return InMemoryLogBackend()


@pytest.fixture
def cache(store):
    """Application cache over the store."""
    config = CacheConfig()
    return ApplicationCache(store.get_application, ttl_seconds=config.ttl_seconds)


@pytest.fixture
def registry(store, cache, backend):
    return TenantRegistry(store, cache, backend)


@pytest.fixture
def resolver(registry, store):
    return AccessResolver(registry, store)


@pytest.fixture
def engine(backend, registry):
    return QueryEngine(backend, registry, QueryConfig())
