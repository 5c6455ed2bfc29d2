"""
Access resolution for tenant-scoped requests.

Every tenant-scoped operation passes through resolve_application() first.
The result is an ApplicationContext that handlers thread explicitly into
the query engine and the live tail; nothing is stashed on the request or
in module state.

Invariants:
    - Owner always has access
    - A team-owned application is visible to current team members only
    - The decision is recomputed on every call; only the Application
      record itself may come from the cache
    - Timing telemetry never changes the outcome

How to change safely:
    - New grant paths must be additive and re-read their source of truth
    - Keep denial messages stable, clients match on them
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..errors import ForbiddenError, NotFoundError
from ..tenants.models import Application

if TYPE_CHECKING:
    from ..tenants.registry import TenantRegistry
    from ..tenants.store import TenantStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplicationContext:
    """An application the caller has just been granted access to.

    Attributes:
        application: The loaded Application record
        user_id: Caller the grant was made for
        via_team: Whether access came from team membership
    """

    application: Application
    user_id: str
    via_team: bool = False

    @property
    def application_id(self) -> str:
        return self.application.id


class AccessResolver:
    """Grant/deny gate for tenant-scoped operations.

    Example:
        >>> resolver = AccessResolver(registry, store)
        >>> ctx = await resolver.resolve_application(app_id, "user-1")
        >>> await engine.recent(ctx)
    """

    def __init__(self, registry: TenantRegistry, store: TenantStore) -> None:
        self.registry = registry
        self.store = store

    async def resolve_application(self, application_id: str, user_id: str) -> ApplicationContext:
        """Load an application and check the caller may use it.

        Args:
            application_id: Application to resolve
            user_id: Caller identity

        Returns:
            ApplicationContext for downstream operations

        Raises:
            NotFoundError: If the application does not exist
            ForbiddenError: If the caller is neither owner nor team member
        """
        started = time.perf_counter()
        outcome = "error"
        try:
            ctx = await self._resolve(application_id, user_id)
            outcome = "team" if ctx.via_team else "owner"
            return ctx
        except NotFoundError:
            outcome = "not_found"
            raise
        except ForbiddenError:
            outcome = "denied"
            raise
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.debug(
                f"applicationParam: {elapsed_ms:.2f}ms",
                extra={
                    "application_id": application_id,
                    "user_id": user_id,
                    "outcome": outcome,
                    "elapsed_ms": round(elapsed_ms, 3),
                },
            )

    async def _resolve(self, application_id: str, user_id: str) -> ApplicationContext:
        application = await self.registry.get_application(application_id)
        if application is None:
            raise NotFoundError("Unknown application", "application", application_id)

        if application.owner_id is not None and application.owner_id == user_id:
            return ApplicationContext(application=application, user_id=user_id)

        if application.team_id:
            team = await self.store.get_team(application.team_id)
            if team is not None and team.has_member(user_id):
                return ApplicationContext(application=application, user_id=user_id, via_team=True)

        raise ForbiddenError(
            "You have no access to this application",
            user_id=user_id,
            resource_id=application_id,
        )
