"""
Tenant module for LogTrail - applications, teams and their storage.

This module handles:
- Application and Team records (SQLite)
- Read-through cache of Application records
- The registry that creates tenants and provisions their log indexes

Invariants:
    - Exactly one of owner_id / team_id is set on every application
    - Only the registry writes application and team records
    - Team membership is always read from the store, never cached

How to change safely:
    - Any new application write must invalidate the cache entry
    - Test schema migrations against a copy of production data
"""

from .cache import ApplicationCache
from .models import Application, Team
from .registry import TenantRegistry, generate_application_key
from .store import TenantStore

__all__ = [
    "Application",
    "Team",
    "ApplicationCache",
    "TenantStore",
    "TenantRegistry",
    "generate_application_key",
]
