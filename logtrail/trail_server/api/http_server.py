"""
FastAPI application factory for the LogTrail gateway.

This module creates the app with:
- CORS configuration for the dashboard frontend
- Gateway services lifecycle (store, log backend, live tail hub)
- Application routes under the configured prefix
- A single translator from errors to the ``{code, message}`` envelope

Invariants:
    - Every error response, including framework validation errors and
      unexpected failures, uses the ``{code, message}`` envelope
    - 5xx responses never include backend diagnostics

How to change safely:
    - Register new error types under TrailError, not as new handlers
    - Keep the health endpoint free of authentication
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import ServerConfig
from ..errors import TrailError
from .routes import router
from .services import GatewayServices
from .settings import Settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage gateway services lifecycle."""
    services = await GatewayServices.start(app.state.config)
    app.state.services = services

    yield

    await services.stop()


def _envelope(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"code": status, "message": message})


async def handle_trail_error(request: Request, exc: TrailError) -> JSONResponse:
    if exc.status >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}", extra=exc.details)
    return JSONResponse(status_code=exc.status, content=exc.to_envelope())


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return _envelope(400, message)


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope(exc.status_code, str(exc.detail))


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    return _envelope(500, "Internal server error")


def create_app(
    config: ServerConfig | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or ServerConfig.from_env()
    settings = settings or Settings()

    app = FastAPI(
        title="LogTrail Gateway",
        description=(
            "Multi-tenant log access: per-application search, history "
            "pagination and live tail."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(TrailError, handle_trail_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unexpected)

    app.include_router(router, prefix=settings.route_prefix)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "logtrail-gateway"}

    return app
