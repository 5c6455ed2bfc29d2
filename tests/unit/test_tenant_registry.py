"""
Unit tests for the tenant registry.

Tests cover:
- Application creation (owner vs team, validation, key generation)
- Index provisioning and its failure path
- Visibility listing through ownership and team membership
- Rename with cache invalidation
- Team creation and membership edits
"""

import string

import pytest

from logtrail.trail_server.errors import (
    BackendUnavailableError,
    ForbiddenError,
    NotFoundError,
    UnknownTeamError,
    ValidationError,
)
from logtrail.trail_server.logs.memory import InMemoryLogBackend
from logtrail.trail_server.tenants.registry import (
    KEY_LENGTH,
    TenantRegistry,
    generate_application_key,
)


class UnavailableBackend(InMemoryLogBackend):
    """Backend whose index creation always fails."""

    async def create_index(self, application_id):
        raise BackendUnavailableError("opensearch", RuntimeError("cluster red"))


class TestKeyGeneration:
    """Application keys."""

    def test_length_and_alphabet(self):
        key = generate_application_key()
        assert len(key) == KEY_LENGTH == 20
        assert set(key) <= set(string.ascii_letters + string.digits)

    def test_keys_differ(self):
        keys = {generate_application_key() for _ in range(100)}
        assert len(keys) == 100


class TestCreateApplication:
    """Tests for TenantRegistry.create_application."""

    @pytest.mark.asyncio
    async def test_owned_by_caller(self, registry, backend):
        app = await registry.create_application("u1", name="billing")

        assert app.owner_id == "u1"
        assert app.team_id is None
        assert app.name == "billing"
        assert len(app.key) == 20
        assert app.created_at == app.updated_at
        assert await backend.index_exists(app.id)
        assert backend.index_names() == [f"syslog-{app.id}"]

    @pytest.mark.asyncio
    async def test_owned_by_team(self, registry):
        team = await registry.create_team("u1", name="ops")

        app = await registry.create_application("u1", name="api", team_id=team.id)

        assert app.team_id == team.id
        assert app.owner_id is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", [None, "", "   "])
    async def test_name_required(self, registry, name):
        with pytest.raises(ValidationError):
            await registry.create_application("u1", name=name)

    @pytest.mark.asyncio
    async def test_name_is_trimmed(self, registry):
        app = await registry.create_application("u1", name="  api  ")
        assert app.name == "api"

    @pytest.mark.asyncio
    async def test_unknown_team(self, registry):
        with pytest.raises(UnknownTeamError):
            await registry.create_application("u1", name="api", team_id="ghost")

    @pytest.mark.asyncio
    async def test_non_member_team(self, registry):
        team = await registry.create_team("u2")

        with pytest.raises(ForbiddenError) as exc_info:
            await registry.create_application("u1", name="api", team_id=team.id)

        assert exc_info.value.message == "You don't have access to this team"
        assert await registry.list_applications_for("u2") == []

    @pytest.mark.asyncio
    async def test_provisioning_failure_keeps_record(self, store, cache):
        registry = TenantRegistry(store, cache, UnavailableBackend())

        app = await registry.create_application("u1", name="api")

        assert await store.get_application(app.id) is not None

    @pytest.mark.asyncio
    async def test_ensure_index_repairs(self, registry, backend):
        app = await registry.create_application("u1", name="api")
        backend.drop_index(app.id)

        assert await registry.ensure_index(app.id) is True
        assert await registry.ensure_index(app.id) is False
        assert await backend.index_exists(app.id)


class TestListApplications:
    """Visibility through ownership and team membership."""

    @pytest.mark.asyncio
    async def test_owned_and_team(self, registry):
        team = await registry.create_team("u1", member_ids=["u2"])
        owned = await registry.create_application("u2", name="mine")
        shared = await registry.create_application("u1", name="shared", team_id=team.id)
        await registry.create_application("u3", name="other")

        listing = await registry.list_applications_for("u2")

        assert {a["id"] for a in listing} == {owned.id, shared.id}
        assert len(listing) == 2

    @pytest.mark.asyncio
    async def test_summaries_omit_key(self, registry):
        await registry.create_application("u1", name="api")

        listing = await registry.list_applications_for("u1")

        assert "key" not in listing[0]
        assert set(listing[0]) == {"id", "name", "teamId", "ownerId", "createdAt", "updatedAt"}

    @pytest.mark.asyncio
    async def test_no_duplicates_across_teams(self, registry):
        """An app reached through two paths is listed once."""
        team = await registry.create_team("u1")
        await registry.create_team("u1")
        await registry.create_application("u1", name="api", team_id=team.id)
        await registry.create_application("u1", name="own")

        listing = await registry.list_applications_for("u1")

        assert len(listing) == len({a["id"] for a in listing}) == 2

    @pytest.mark.asyncio
    async def test_empty(self, registry):
        assert await registry.list_applications_for("nobody") == []


class TestRename:
    """Tests for TenantRegistry.rename_application."""

    @pytest.mark.asyncio
    async def test_rename_invalidates_cache(self, registry):
        app = await registry.create_application("u1", name="old")
        assert (await registry.get_application(app.id)).name == "old"

        renamed = await registry.rename_application(app.id, "new")

        assert renamed.name == "new"
        assert renamed.key == app.key
        assert (await registry.get_application(app.id)).name == "new"

    @pytest.mark.asyncio
    async def test_rename_missing(self, registry):
        with pytest.raises(NotFoundError):
            await registry.rename_application("ghost", "x")

    @pytest.mark.asyncio
    async def test_rename_requires_name(self, registry):
        app = await registry.create_application("u1", name="old")
        with pytest.raises(ValidationError):
            await registry.rename_application(app.id, " ")


class TestTeams:
    """Team creation and membership."""

    @pytest.mark.asyncio
    async def test_creator_is_member(self, registry):
        team = await registry.create_team("u1", name=" ops ", member_ids=["u2", ""])

        assert team.member_ids == {"u1", "u2"}
        assert team.name == "ops"

    @pytest.mark.asyncio
    async def test_add_member(self, registry):
        team = await registry.create_team("u1")

        updated = await registry.add_team_member("u1", team.id, "u2")

        assert updated.member_ids == {"u1", "u2"}

    @pytest.mark.asyncio
    async def test_add_member_requires_membership(self, registry):
        team = await registry.create_team("u1")
        with pytest.raises(ForbiddenError):
            await registry.add_team_member("u9", team.id, "u9")

    @pytest.mark.asyncio
    async def test_add_member_unknown_team(self, registry):
        with pytest.raises(NotFoundError):
            await registry.add_team_member("u1", "ghost", "u2")

    @pytest.mark.asyncio
    async def test_add_member_requires_id(self, registry):
        team = await registry.create_team("u1")
        with pytest.raises(ValidationError):
            await registry.add_team_member("u1", team.id, None)

    @pytest.mark.asyncio
    async def test_remove_member(self, registry):
        team = await registry.create_team("u1", member_ids=["u2"])

        updated = await registry.remove_team_member("u1", team.id, "u2")

        assert updated.member_ids == {"u1"}
        assert await registry.store.find_team_ids_for_member("u2") == []

    @pytest.mark.asyncio
    async def test_remove_non_member_is_noop(self, registry):
        team = await registry.create_team("u1")
        updated = await registry.remove_team_member("u1", team.id, "u5")
        assert updated.member_ids == {"u1"}
