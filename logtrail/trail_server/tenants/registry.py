"""
Tenant registry: the only writer of Application and Team records.

Responsibilities:
- List the applications a user can see (owned + through team membership)
- Create applications, generating their ingestion key
- Provision each application's log index after the record is persisted
- Team creation and membership edits; application rename

Invariants:
    - Exactly one of owner_id / team_id is set on every application
    - A caller can only attach an application to a team they belong to
    - Keys are generated with the secrets module and never change
    - Every write to an application invalidates its cache entry

Consistency:
    Creating an application is "persist record, then provision index".
    The two are not atomic. If provisioning fails the record stands and
    ensure_index() repairs the index later; readers treat a missing index
    as "no logs yet".
"""

from __future__ import annotations

import logging
import secrets
import string
import time
import uuid
from collections.abc import Iterable

from ..errors import (
    BackendUnavailableError,
    ForbiddenError,
    NotFoundError,
    UnknownTeamError,
    ValidationError,
)
from ..logs.base import LogBackend
from .cache import ApplicationCache
from .models import Application, Team
from .store import TenantStore

logger = logging.getLogger(__name__)

KEY_LENGTH = 20
KEY_ALPHABET = string.ascii_letters + string.digits


def generate_application_key(length: int = KEY_LENGTH) -> str:
    """Random opaque credential drawn from a CSPRNG."""
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(length))


def _now_ms() -> int:
    return int(time.time() * 1000)


def _clean_name(name: str | None, field_name: str = "name") -> str:
    if name is None or not str(name).strip():
        raise ValidationError(f'"{field_name}" is required', field_name=field_name)
    return str(name).strip()


class TenantRegistry:
    """Creates, lists and looks up applications and teams.

    Example:
        >>> registry = TenantRegistry(store, cache, backend)
        >>> app = await registry.create_application("user-1", name="billing-api")
        >>> [a["id"] for a in await registry.list_applications_for("user-1")]
        [app.id]
    """

    def __init__(
        self,
        store: TenantStore,
        cache: ApplicationCache,
        log_backend: LogBackend,
    ) -> None:
        self.store = store
        self.cache = cache
        self.log_backend = log_backend

    # -- applications ---------------------------------------------------------

    async def list_applications_for(self, user_id: str) -> list[dict]:
        """Summaries of every application the user owns or reaches via a team.

        De-duplicated by id, ordered by creation. Keys are never included.
        """
        team_ids = await self.store.find_team_ids_for_member(user_id)
        applications = await self.store.find_applications(owner_id=user_id, team_ids=team_ids)

        seen: set[str] = set()
        summaries = []
        for app in applications:
            if app.id in seen:
                continue
            seen.add(app.id)
            summaries.append(app.to_summary())
        return summaries

    async def get_application(self, application_id: str) -> Application | None:
        """Cache-accelerated lookup."""
        return await self.cache.get(application_id)

    async def create_application(
        self,
        user_id: str,
        name: str | None,
        team_id: str | None = None,
    ) -> Application:
        """Create an application owned by the caller or by one of their teams.

        Args:
            user_id: Caller
            name: Application name (required, non-blank)
            team_id: Optional owning team; the caller must be a member

        Returns:
            The full Application, key included

        Raises:
            ValidationError: If name is missing
            UnknownTeamError: If team_id does not exist
            ForbiddenError: If the caller is not a member of the team
        """
        name = _clean_name(name)

        owner_id: str | None = user_id
        if team_id:
            team = await self.store.get_team(team_id)
            if team is None:
                raise UnknownTeamError(team_id)
            if not team.has_member(user_id):
                raise ForbiddenError(
                    "You don't have access to this team", user_id=user_id, resource_id=team_id
                )
            owner_id = None
        else:
            team_id = None

        now = _now_ms()
        app = Application(
            id=str(uuid.uuid4()),
            name=name,
            key=generate_application_key(),
            owner_id=owner_id,
            team_id=team_id,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert_application(app)
        logger.info(
            "Application created",
            extra={"application_id": app.id, "owner_id": owner_id, "team_id": team_id},
        )

        await self._provision(app)
        return app

    async def _provision(self, app: Application) -> None:
        try:
            await self.log_backend.create_index(app.id)
        except BackendUnavailableError:
            logger.warning(
                f"Index provisioning failed for application {app.id}; "
                "it will be retried on first read",
                exc_info=True,
            )

    async def ensure_index(self, application_id: str) -> bool:
        """Idempotently create the application's index.

        Returns:
            True if the index was missing and has now been created
        """
        if await self.log_backend.index_exists(application_id):
            return False
        created = await self.log_backend.create_index(application_id)
        if created:
            logger.info(f"Reconciled missing index for application {application_id}")
        return created

    async def rename_application(self, application_id: str, name: str | None) -> Application:
        """Rename an application and drop its cached record.

        Raises:
            ValidationError: If name is missing
            NotFoundError: If the application does not exist
        """
        name = _clean_name(name)
        app = await self.store.update_application_name(application_id, name, _now_ms())
        self.cache.invalidate(application_id)
        if app is None:
            raise NotFoundError("Unknown application", "application", application_id)
        return app

    # -- teams ----------------------------------------------------------------

    async def create_team(
        self,
        user_id: str,
        name: str | None = None,
        member_ids: Iterable[str] = (),
    ) -> Team:
        """Create a team. The creator is always a member."""
        members = {m for m in member_ids if m}
        members.add(user_id)
        now = _now_ms()
        team = Team(
            id=str(uuid.uuid4()),
            name=name.strip() if name and name.strip() else None,
            member_ids=members,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert_team(team)
        logger.info("Team created", extra={"team_id": team.id, "members": len(members)})
        return team

    async def _team_for_member(self, team_id: str, user_id: str) -> Team:
        team = await self.store.get_team(team_id)
        if team is None:
            raise NotFoundError("Unknown team", "team", team_id)
        if not team.has_member(user_id):
            raise ForbiddenError(
                "You don't have access to this team", user_id=user_id, resource_id=team_id
            )
        return team

    async def add_team_member(self, user_id: str, team_id: str, member_id: str | None) -> Team:
        """Add ``member_id`` to a team the caller belongs to."""
        member_id = _clean_name(member_id, "userId")
        await self._team_for_member(team_id, user_id)
        await self.store.add_team_member(team_id, member_id, _now_ms())
        return await self._team_for_member(team_id, user_id)

    async def remove_team_member(self, user_id: str, team_id: str, member_id: str) -> Team:
        """Remove ``member_id`` from a team the caller belongs to.

        Takes effect on the very next access check; membership is never cached.
        """
        team = await self._team_for_member(team_id, user_id)
        removed = await self.store.remove_team_member(team_id, member_id, _now_ms())
        if removed:
            team.member_ids.discard(member_id)
            logger.info("Team member removed", extra={"team_id": team_id, "user_id": member_id})
        return team
