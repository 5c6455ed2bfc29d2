"""
Error types for the LogTrail gateway.

Every failure a request can hit is one of the variants below. Each carries
the HTTP status it maps to and a user-safe message; the API layer has a
single translator that turns them into the wire envelope
``{"code": <status>, "message": <message>}``.

Invariants:
    - All errors inherit from TrailError
    - ``message`` never contains backend diagnostics
    - ``details`` is for logs only and is never serialized to clients

How to change safely:
    - New variants must pick an existing HTTP status family
    - Keep messages stable, clients match on them
"""

from __future__ import annotations

from typing import Any


class TrailError(Exception):
    """Base exception for all gateway errors.

    Attributes:
        message: User-visible message
        status: HTTP status code the error maps to
        details: Additional context for logging
    """

    status: int = 500

    def __init__(
        self,
        message: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.details = details or {}

    def to_envelope(self) -> dict[str, Any]:
        """Wire representation of the error."""
        return {"code": self.status, "message": self.message}


class ValidationError(TrailError):
    """Malformed or missing required input."""

    status = 400

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(message, details={"field": field_name})
        self.field_name = field_name


class MissingParameterError(ValidationError):
    """A required query parameter was not supplied."""

    def __init__(self, parameter: str) -> None:
        super().__init__(f'Missing "{parameter}" parameter', field_name=parameter)
        self.parameter = parameter


class UnknownTeamError(TrailError):
    """Referenced team does not exist."""

    status = 400

    def __init__(self, team_id: str) -> None:
        super().__init__("Unknown team", details={"team_id": team_id})
        self.team_id = team_id


class NotFoundError(TrailError):
    """Resource not found.

    Raised when:
    - Application doesn't exist
    - Team doesn't exist on a team-scoped route
    """

    status = 404

    def __init__(self, message: str, resource_type: str, resource_id: str) -> None:
        super().__init__(
            message,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ForbiddenError(TrailError):
    """Authenticated, but not allowed to touch the resource."""

    status = 403

    def __init__(self, message: str, user_id: str | None = None, resource_id: str | None = None) -> None:
        super().__init__(message, details={"user_id": user_id, "resource_id": resource_id})
        self.user_id = user_id
        self.resource_id = resource_id


class UnauthenticatedError(TrailError):
    """No caller identity on the request."""

    status = 403

    def __init__(self, message: str = "Not logged in") -> None:
        super().__init__(message)


class BackendUnavailableError(TrailError):
    """Relational store or search backend failed.

    The original exception is kept in ``details`` and on ``__cause__``; the
    client only ever sees the generic message.
    """

    status = 503

    def __init__(self, backend: str, cause: BaseException | None = None) -> None:
        super().__init__(
            "Service temporarily unavailable",
            details={"backend": backend, "cause": repr(cause) if cause else None},
        )
        self.backend = backend
