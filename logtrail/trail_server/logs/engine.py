"""
Query engine for tenant log indexes.

Three read modes, all scoped to the index of one resolved application:

- search:  full-text match on ``message`` (80% of terms), newest first, 100 hits
- recent:  the 75 newest records
- history: records strictly older than a cursor, optionally text-filtered,
           newest first, 100 per page

Pagination contract for history:
    Call again with ``before`` set to the smallest ``id`` of the previous
    page. The range filter is exclusive (``id < before``), so consecutive
    pages never overlap and always make progress. A page shorter than the
    page size is the last one.

Invariants:
    - Every query targets exactly ctx.application_id's index
    - A missing index reads as "no logs yet" (empty list), never an error
    - Returned records are the stored body plus the backend id as ``_id``
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

from ..config import QueryConfig
from ..errors import BackendUnavailableError, MissingParameterError
from .base import LogBackend

if TYPE_CHECKING:
    from ..access.resolver import ApplicationContext
    from ..tenants.registry import TenantRegistry

logger = logging.getLogger(__name__)

TIME_DESC: list[dict[str, Any]] = [{"time": {"order": "desc"}}]

URI_RESERVED = frozenset(";/?:@&=+$,#")
_ESCAPE_RUN_RE = re.compile(r"(?:%[0-9A-Fa-f]{2})+")


def _decode_escapes(escapes: list[str]) -> str:
    joined = "".join(escapes)
    try:
        return unquote(joined, errors="strict")
    except UnicodeDecodeError:
        return joined


def decode_uri(value: str) -> str:
    """Percent-decode the way a browser's decodeURI does.

    Escapes of reserved characters (``%2B``, ``%2F``, ``%23`` ...) stay
    encoded. Runs that are not valid UTF-8 are left untouched.
    """

    def replace(match: re.Match[str]) -> str:
        run = match.group(0)
        out: list[str] = []
        pending: list[str] = []
        for i in range(0, len(run), 3):
            escape = run[i : i + 3]
            if chr(int(escape[1:], 16)) in URI_RESERVED:
                out.append(_decode_escapes(pending))
                out.append(escape)
                pending = []
            else:
                pending.append(escape)
        out.append(_decode_escapes(pending))
        return "".join(out)

    return _ESCAPE_RUN_RE.sub(replace, value)


def match_message(content: str, minimum_should_match: str) -> dict[str, Any]:
    return {
        "match": {
            "message": {
                "query": content,
                "minimum_should_match": minimum_should_match,
            }
        }
    }


def before_cursor(before: Any) -> dict[str, Any]:
    return {"range": {"id": {"lt": before}}}


class QueryEngine:
    """Builds and runs the search / recent / history queries.

    Example:
        >>> engine = QueryEngine(backend, registry, QueryConfig())
        >>> ctx = await resolver.resolve_application(app_id, user_id)
        >>> page = await engine.history(ctx, before="1700000000123")
    """

    def __init__(
        self,
        log_backend: LogBackend,
        registry: TenantRegistry | None = None,
        config: QueryConfig | None = None,
    ) -> None:
        self.log_backend = log_backend
        self.registry = registry
        self.config = config or QueryConfig()

    # -- query bodies ---------------------------------------------------------

    def search_body(self, content: str) -> dict[str, Any]:
        return {
            "query": match_message(content, self.config.minimum_should_match),
            "sort": TIME_DESC,
            "size": self.config.search_size,
        }

    def recent_body(self) -> dict[str, Any]:
        return {
            "query": {"match_all": {}},
            "sort": TIME_DESC,
            "size": self.config.recent_size,
        }

    def history_body(self, before: Any, content: str | None = None) -> dict[str, Any]:
        query: dict[str, Any] = {"bool": {"filter": before_cursor(before)}}
        if content:
            query["bool"]["must"] = match_message(content, self.config.minimum_should_match)
        return {
            "query": query,
            "sort": TIME_DESC,
            "size": self.config.history_size,
        }

    # -- read modes -----------------------------------------------------------

    async def search(self, ctx: ApplicationContext, content: str | None) -> list[dict[str, Any]]:
        """Full-text search over the application's logs.

        Raises:
            MissingParameterError: If content is missing or empty
        """
        if not content:
            raise MissingParameterError("content")
        return await self._execute(ctx, self.search_body(decode_uri(content)))

    async def recent(self, ctx: ApplicationContext) -> list[dict[str, Any]]:
        """The most recent records of the application."""
        return await self._execute(ctx, self.recent_body())

    async def history(
        self,
        ctx: ApplicationContext,
        before: Any,
        content: str | None = None,
    ) -> list[dict[str, Any]]:
        """One page of records strictly older than ``before``.

        Raises:
            MissingParameterError: If before is missing
            ValidationError: If the cursor does not fit the ``id`` field
        """
        if before is None or before == "":
            raise MissingParameterError("before")
        content = content or None
        return await self._execute(ctx, self.history_body(before, content))

    async def _execute(self, ctx: ApplicationContext, body: dict[str, Any]) -> list[dict[str, Any]]:
        application_id = ctx.application_id
        if not await self.log_backend.index_exists(application_id):
            await self._reconcile(application_id)
            return []

        hits = await self.log_backend.search(application_id, body)
        return [hit.to_record() for hit in hits]

    async def _reconcile(self, application_id: str) -> None:
        if self.registry is None or not self.config.reconcile_missing_indexes:
            return
        try:
            await self.registry.ensure_index(application_id)
        except BackendUnavailableError:
            logger.warning(
                f"Could not reconcile index for application {application_id}", exc_info=True
            )
