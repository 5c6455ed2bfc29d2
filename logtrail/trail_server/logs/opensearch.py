"""
OpenSearch implementation of the tenant log backend.

One index per application, named by index_name_for(). The opensearch-py
client is synchronous; every call runs in the default executor.

Notes:
    - Index creation races (two creators) are resolved by treating
      resource_already_exists_exception as success.
    - A search against an index deleted between the existence check and
      the query yields no hits rather than an error.
    - A query OpenSearch rejects as malformed (400, e.g. a non-numeric
      history cursor) is a ValidationError, not an outage.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from opensearchpy import NotFoundError as OpenSearchNotFoundError
from opensearchpy import OpenSearch, OpenSearchException, RequestError, RequestsHttpConnection

from ..config import OpenSearchConfig
from ..errors import BackendUnavailableError, ValidationError
from .base import LOG_INDEX_BODY, LogHit, index_name_for

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OpenSearchLogBackend:
    """OpenSearch-backed tenant log indexes.

    Attributes:
        config: Connection settings
        client: opensearch-py client

    Example:
        >>> backend = OpenSearchLogBackend(OpenSearchConfig(host="http://os:9200"))
        >>> await backend.index_exists("b1c4...")
        False
    """

    def __init__(self, config: OpenSearchConfig, client: OpenSearch | None = None) -> None:
        self.config = config
        self.index_prefix = config.index_prefix
        self.client = client or OpenSearch(
            config.host,
            http_auth=(config.username, config.password) if config.username else None,
            use_ssl=config.secure,
            verify_certs=config.verify_certs,
            connection_class=RequestsHttpConnection,
            ssl_show_warn=False,
            timeout=config.timeout_seconds,
        )

    def _index(self, application_id: str) -> str:
        return index_name_for(application_id, self.index_prefix)

    async def _run(self, fn: Callable[..., T], **kwargs: Any) -> T:
        return await asyncio.get_event_loop().run_in_executor(None, functools.partial(fn, **kwargs))

    async def index_exists(self, application_id: str) -> bool:
        index = self._index(application_id)
        try:
            return bool(await self._run(self.client.indices.exists, index=index))
        except OpenSearchException as e:
            logger.error(f"[LOGS] exists check failed for '{index}': {e}")
            raise BackendUnavailableError("opensearch", e) from e

    async def create_index(self, application_id: str) -> bool:
        index = self._index(application_id)
        try:
            await self._run(self.client.indices.create, index=index, body=LOG_INDEX_BODY)
        except RequestError as e:
            if e.error == "resource_already_exists_exception":
                logger.debug(f"[LOGS] index '{index}' already exists")
                return False
            logger.error(f"[LOGS] create failed for '{index}': {e}")
            raise BackendUnavailableError("opensearch", e) from e
        except OpenSearchException as e:
            logger.error(f"[LOGS] create failed for '{index}': {e}")
            raise BackendUnavailableError("opensearch", e) from e

        logger.info(f"[LOGS] created index '{index}'")
        return True

    async def search(self, application_id: str, body: dict[str, Any]) -> list[LogHit]:
        index = self._index(application_id)
        try:
            resp = await self._run(self.client.search, index=index, body=body)
        except OpenSearchNotFoundError:
            logger.warning(f"[LOGS] index '{index}' vanished before search")
            return []
        except RequestError as e:
            logger.warning(f"[LOGS] rejected query on '{index}': {e.error}")
            raise ValidationError("Invalid query") from e
        except OpenSearchException as e:
            logger.error(f"[LOGS] search failed on '{index}': {e}")
            raise BackendUnavailableError("opensearch", e) from e

        hits = resp.get("hits", {}).get("hits", [])
        return [LogHit(doc_id=h["_id"], source=h.get("_source", {})) for h in hits]

    async def close(self) -> None:
        await self._run(self.client.close)
