"""
Ore API

FastAPI application for the Sponge plugin repository.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ore.api.routes import channels, health, invites, pages, projects, versions
from ore.config import settings
from ore.db import close_db, init_db


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        response = await call_next(request)

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Permissions policy (disable unnecessary features)
        response.headers["Permissions-Policy"] = (
            "accelerometer=(), camera=(), geolocation=(), "
            "gyroscope=(), magnetometer=(), microphone=(), "
            "payment=(), usb=()"
        )
        return response


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Rate limiter - uses IP address as key
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler."""
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    logger.info("Uploads directory: %s", settings.uploads_dir)
    logger.info("Forums: %s", settings.forum_base_url if settings.forums_enabled else "disabled")

    try:
        await init_db()
    except Exception as e:
        logger.error("❌ Failed to initialize database: %s", e)
        raise

    yield

    logger.info("Shutting down...")
    await close_db()


app = FastAPI(
    title="Ore API",
    version=settings.app_version,
    description=(
        "**Ore** — the plugin repository for Sponge.\n\n"
        "Upload plugin jars, organise them into release channels and move projects "
        "through review.\n\n"
        "## Authentication\n\n"
        "Write endpoints require a **Bearer JWT** in the `Authorization` header. "
        "Public project reads accept unauthenticated requests."
    ),
    lifespan=lifespan,
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# Adapter: FastAPI expects (Request, Exception) but slowapi's handler
# takes (Request, RateLimitExceeded).
def _handle_rate_limit(request: Request, exc: Exception) -> Response:
    if isinstance(exc, RateLimitExceeded):
        return _rate_limit_exceeded_handler(request, exc)
    raise exc


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _handle_rate_limit)

# Security headers middleware (added first, runs last)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(projects.router, prefix="/api/v1", tags=["projects"])
app.include_router(versions.router, prefix="/api/v1", tags=["versions"])
app.include_router(channels.router, prefix="/api/v1", tags=["channels"])
app.include_router(invites.router, prefix="/api/v1", tags=["invites"])
app.include_router(pages.router, prefix="/api/v1", tags=["pages"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with service info."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
