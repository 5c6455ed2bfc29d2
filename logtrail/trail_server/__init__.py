"""
LogTrail Gateway - multi-tenant access to application logs.

Each application (tenant) owns one isolated log index. Users reach an
application either as its owner or as a member of the team that owns it.
Logs can be searched, paged backward through history, or tailed live.

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌────────────────┐
    │   Client    │────▶│  HTTP / WS   │────▶│ AccessResolver │
    │ (dashboard) │     │   (FastAPI)  │     └───────┬────────┘
    └─────────────┘     └──────────────┘             │ ApplicationContext
                                        ┌────────────┼─────────────┐
                                        ▼            ▼             ▼
                                 ┌───────────┐ ┌───────────┐ ┌──────────┐
                                 │ Registry  │ │QueryEngine│ │ TrailHub │
                                 └─────┬─────┘ └─────┬─────┘ └──────────┘
                                       ▼             ▼
                                 ┌───────────┐ ┌────────────────┐
                                 │  SQLite   │ │   OpenSearch   │
                                 │ (tenants) │ │ syslog-<appId> │
                                 └───────────┘ └────────────────┘

Invariants:
    - Every tenant-scoped operation is preceded by a fresh access check
    - Queries only ever touch the resolved application's index
    - Exactly one of owner_id / team_id is set on every application

Modules:
    - config: Environment-driven configuration
    - errors: Error taxonomy mapped to HTTP statuses
    - tenants: Application/Team records, cache and registry
    - access: Access resolution
    - logs: Log backends and the query engine
    - trail: Live tail fan-out
    - api: FastAPI app and routes
"""

__version__ = "1.0.0"

from .access import AccessResolver, ApplicationContext
from .config import ServerConfig
from .errors import (
    BackendUnavailableError,
    ForbiddenError,
    MissingParameterError,
    NotFoundError,
    TrailError,
    UnauthenticatedError,
    UnknownTeamError,
    ValidationError,
)
from .logs import QueryEngine, index_name_for
from .tenants import Application, Team, TenantRegistry, TenantStore
from .trail import TrailHub

__all__ = [
    "AccessResolver",
    "ApplicationContext",
    "ServerConfig",
    "TrailError",
    "ValidationError",
    "MissingParameterError",
    "UnknownTeamError",
    "NotFoundError",
    "ForbiddenError",
    "UnauthenticatedError",
    "BackendUnavailableError",
    "QueryEngine",
    "index_name_for",
    "Application",
    "Team",
    "TenantRegistry",
    "TenantStore",
    "TrailHub",
]
