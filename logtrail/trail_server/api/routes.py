"""
API routes for the LogTrail gateway.

Every route requires a caller identity. Tenant-scoped routes additionally
resolve the application through the AccessResolver and hand the resulting
ApplicationContext to the operation; the ingestion hook is the exception
and authenticates with the application key instead.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field
from starlette.requests import HTTPConnection
from starlette.websockets import WebSocketState

from ..access.resolver import ApplicationContext
from ..errors import ForbiddenError, NotFoundError, TrailError, UnauthenticatedError
from ..trail.hub import Subscription
from .services import GatewayServices

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Applications"])


# --- Request Models ---


class ApplicationCreateRequest(BaseModel):
    """Request to create an application."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(None, description="Application name")
    team_id: str | None = Field(None, alias="teamId", description="Owning team")


class ApplicationUpdateRequest(BaseModel):
    """Request to rename an application."""

    name: str | None = Field(None, description="New application name")


class TeamCreateRequest(BaseModel):
    """Request to create a team."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(None, description="Team label")
    member_ids: list[str] = Field(default_factory=list, alias="memberIds")


class TeamMemberRequest(BaseModel):
    """Request to add a team member."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str | None = Field(None, alias="userId")


# --- Dependencies ---


def get_services(conn: HTTPConnection) -> GatewayServices:
    """Get gateway services from app state."""
    return conn.app.state.services


def identify(conn: HTTPConnection) -> str | None:
    return conn.headers.get(conn.app.state.settings.user_header) or None


def get_user_id(conn: HTTPConnection) -> str:
    """Caller identity; 403 when absent."""
    user_id = identify(conn)
    if not user_id:
        raise UnauthenticatedError()
    return user_id


async def resolve_context(
    application_id: str,
    user_id: str = Depends(get_user_id),
    services: GatewayServices = Depends(get_services),
) -> ApplicationContext:
    return await services.resolver.resolve_application(application_id, user_id)


# --- Application Routes ---


@router.get("/list")
async def list_applications(
    user_id: str = Depends(get_user_id),
    services: GatewayServices = Depends(get_services),
) -> list[dict[str, Any]]:
    """Applications the caller owns or reaches through a team."""
    return await services.registry.list_applications_for(user_id)


@router.post("/create")
async def create_application(
    request: ApplicationCreateRequest,
    user_id: str = Depends(get_user_id),
    services: GatewayServices = Depends(get_services),
) -> dict[str, Any]:
    """
    Create an application.

    The response is the only place the application key is ever returned.
    """
    app = await services.registry.create_application(
        user_id, name=request.name, team_id=request.team_id
    )
    return app.to_dict()


# --- Team Routes ---


@router.post("/teams")
async def create_team(
    request: TeamCreateRequest,
    user_id: str = Depends(get_user_id),
    services: GatewayServices = Depends(get_services),
) -> dict[str, Any]:
    team = await services.registry.create_team(
        user_id, name=request.name, member_ids=request.member_ids
    )
    return team.to_dict()


@router.post("/teams/{team_id}/members")
async def add_team_member(
    team_id: str,
    request: TeamMemberRequest,
    user_id: str = Depends(get_user_id),
    services: GatewayServices = Depends(get_services),
) -> dict[str, Any]:
    team = await services.registry.add_team_member(user_id, team_id, request.user_id)
    return team.to_dict()


@router.delete("/teams/{team_id}/members/{member_id}")
async def remove_team_member(
    team_id: str,
    member_id: str,
    user_id: str = Depends(get_user_id),
    services: GatewayServices = Depends(get_services),
) -> dict[str, Any]:
    team = await services.registry.remove_team_member(user_id, team_id, member_id)
    return team.to_dict()


# --- Tenant-scoped Routes ---


@router.get("/{application_id}")
async def get_application(ctx: ApplicationContext = Depends(resolve_context)) -> dict[str, Any]:
    return ctx.application.to_summary()


@router.patch("/{application_id}")
async def rename_application(
    request: ApplicationUpdateRequest,
    ctx: ApplicationContext = Depends(resolve_context),
    services: GatewayServices = Depends(get_services),
) -> dict[str, Any]:
    app = await services.registry.rename_application(ctx.application_id, request.name)
    return app.to_summary()


@router.get("/{application_id}/logs/search")
async def search_logs(
    content: str | None = Query(None, description="Text to match against log messages"),
    ctx: ApplicationContext = Depends(resolve_context),
    services: GatewayServices = Depends(get_services),
) -> list[dict[str, Any]]:
    """Up to 100 newest records matching at least 80% of the query terms."""
    return await services.engine.search(ctx, content)


@router.get("/{application_id}/logs/recent")
async def recent_logs(
    ctx: ApplicationContext = Depends(resolve_context),
    services: GatewayServices = Depends(get_services),
) -> list[dict[str, Any]]:
    """The 75 newest records."""
    return await services.engine.recent(ctx)


@router.get("/{application_id}/logs/history")
async def history_logs(
    before: str | None = Query(None, description="Exclusive upper bound on record id"),
    content: str | None = Query(None, description="Optional text filter"),
    ctx: ApplicationContext = Depends(resolve_context),
    services: GatewayServices = Depends(get_services),
) -> list[dict[str, Any]]:
    """
    One page of older records.

    Page backward by passing the smallest ``id`` of the previous page as
    ``before``; a page with fewer than 100 records is the last one.
    """
    return await services.engine.history(ctx, before, content)


# --- Live Tail ---


@router.post("/{application_id}/trail")
async def publish_records(
    application_id: str,
    records: dict[str, Any] | list[dict[str, Any]],
    request: Request,
    services: GatewayServices = Depends(get_services),
) -> dict[str, int]:
    """
    Ingestion notification hook.

    Fans records out to live subscribers of the application, in body
    order. Nothing is written to the index here.
    """
    key = request.headers.get(request.app.state.settings.key_header)
    app = await services.registry.get_application(application_id)
    if app is None:
        raise NotFoundError("Unknown application", "application", application_id)
    if not key or not secrets.compare_digest(key, app.key):
        raise ForbiddenError("Invalid application key", resource_id=application_id)

    batch = records if isinstance(records, list) else [records]
    delivered = sum(services.hub.publish(app.id, record) for record in batch)
    return {"records": len(batch), "delivered": delivered}


async def _watch_disconnect(websocket: WebSocket, sub: Subscription) -> None:
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
    finally:
        sub.close()


@router.websocket("/{application_id}/trail")
async def trail(websocket: WebSocket, application_id: str) -> None:
    """
    Live tail of an application's records.

    Authorization happens before the handshake is accepted; a refused
    connection is closed with 1008 and the denial message as reason.
    """
    services: GatewayServices = websocket.app.state.services

    try:
        user_id = identify(websocket)
        if not user_id:
            raise UnauthenticatedError()
        ctx = await services.resolver.resolve_application(application_id, user_id)
    except TrailError as e:
        logger.info(
            f"Live tail refused: {e.message}",
            extra={"application_id": application_id, "status": e.status},
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    # Subscribe before accepting so nothing published after the handshake is missed.
    sub = services.hub.subscribe(ctx.application_id)
    watcher: asyncio.Task | None = None
    try:
        await websocket.accept()
        watcher = asyncio.create_task(_watch_disconnect(websocket, sub))
        async for record in sub:
            await websocket.send_json(record)
    except WebSocketDisconnect:
        logger.debug("Client disconnected from live tail")
    finally:
        sub.close()
        if watcher is not None:
            watcher.cancel()
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=status.WS_1001_GOING_AWAY)
