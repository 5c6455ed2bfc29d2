"""
API module for the LogTrail gateway.

This module provides the external interface:
- HTTP routes for listing, creating and querying applications
- WebSocket live tail

Invariants:
    - Every route requires a caller identity
    - Tenant-scoped routes go through the AccessResolver first
    - Errors leave as ``{code, message}``

How to change safely:
    - Add routes above ``/{application_id}`` when they share its prefix
    - Keep response shapes stable; the dashboard depends on them
"""

from .http_server import create_app
from .routes import router
from .services import GatewayServices
from .settings import Settings

__all__ = ["create_app", "router", "GatewayServices", "Settings"]
