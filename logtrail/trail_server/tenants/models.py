"""Application and Team records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Application:
    """A tenant: an owned log stream.

    Attributes:
        id: Unique application identifier (UUID)
        name: Display name
        key: 20-character ingestion credential, set once at creation
        owner_id: Owning user, mutually exclusive with team_id
        team_id: Owning team, mutually exclusive with owner_id
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
    """

    id: str
    name: str
    key: str
    owner_id: str | None
    team_id: str | None
    created_at: int
    updated_at: int

    def __post_init__(self) -> None:
        if (self.owner_id is None) == (self.team_id is None):
            raise ValueError(
                f"Application {self.id} must have exactly one of owner_id or team_id"
            )

    def to_summary(self) -> dict[str, Any]:
        """External shape used by listings and lookups. Never includes the key."""
        return {
            "id": self.id,
            "name": self.name,
            "teamId": self.team_id,
            "ownerId": self.owner_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_dict(self) -> dict[str, Any]:
        """Full shape, returned to the creator only."""
        return {**self.to_summary(), "key": self.key}


@dataclass
class Team:
    """A group of users sharing access to the team's applications.

    Attributes:
        id: Unique team identifier (UUID)
        name: Optional label
        member_ids: Current members; membership is the only semantic
        created_at: Creation timestamp (Unix ms)
        updated_at: Last update timestamp (Unix ms)
    """

    id: str
    name: str | None
    member_ids: set[str] = field(default_factory=set)
    created_at: int = 0
    updated_at: int = 0

    def has_member(self, user_id: str) -> bool:
        return user_id in self.member_ids

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "memberIds": sorted(self.member_ids),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
