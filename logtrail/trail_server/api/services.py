"""Wiring of the gateway components shared by all routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..access.resolver import AccessResolver
from ..config import ServerConfig
from ..logs.base import LogBackend, create_log_backend
from ..logs.engine import QueryEngine
from ..tenants.cache import ApplicationCache
from ..tenants.registry import TenantRegistry
from ..tenants.store import TenantStore
from ..trail.hub import TrailHub

logger = logging.getLogger(__name__)


@dataclass
class GatewayServices:
    """Everything a request handler may call.

    Attributes:
        store: Application/Team record store
        log_backend: Tenant log index backend
        cache: Application record cache
        registry: Tenant registry
        resolver: Access gate
        engine: Log query engine
        hub: Live tail fan-out
    """

    store: TenantStore
    log_backend: LogBackend
    cache: ApplicationCache
    registry: TenantRegistry
    resolver: AccessResolver
    engine: QueryEngine
    hub: TrailHub

    @classmethod
    def assemble(
        cls,
        config: ServerConfig,
        store: TenantStore,
        log_backend: LogBackend,
    ) -> GatewayServices:
        """Wire components around an existing store and backend."""
        cache = ApplicationCache(
            store.get_application,
            ttl_seconds=config.cache.ttl_seconds,
            max_size=config.cache.max_size,
        )
        registry = TenantRegistry(store, cache, log_backend)
        return cls(
            store=store,
            log_backend=log_backend,
            cache=cache,
            registry=registry,
            resolver=AccessResolver(registry, store),
            engine=QueryEngine(log_backend, registry, config.query),
            hub=TrailHub(queue_size=config.trail.queue_size),
        )

    @classmethod
    async def start(cls, config: ServerConfig) -> GatewayServices:
        """Build services from configuration and initialize storage."""
        Path(config.storage.db_path).parent.mkdir(parents=True, exist_ok=True)
        store = TenantStore(
            config.storage.db_path,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
        await store.initialize()
        services = cls.assemble(config, store, create_log_backend(config))
        logger.info("Gateway services started")
        return services

    async def stop(self) -> None:
        self.hub.close()
        await self.log_backend.close()
        logger.info("Gateway services stopped")
