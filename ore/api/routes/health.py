"""Health check endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from typing_extensions import TypedDict

from ore.config import settings
from ore.db import get_db

router = APIRouter()
logger = logging.getLogger(__name__)


class FullHealthCheckDict(TypedDict):
    """Response shape for ``GET /health/full``."""

    status: str             # "ok" | "degraded"
    service: str
    version: str
    dependencies: dict[str, str]


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Basic health check."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@router.get("/health/full")
async def full_health_check(db: AsyncSession = Depends(get_db)) -> FullHealthCheckDict:
    """Health check including the database and the forum integration."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "ok"
    except SQLAlchemyError as e:
        logger.error("❌ Database health check failed: %s", e)
        db_status = "unavailable"

    forums_status = "ok" if settings.forums_enabled and settings.forum_api_key else "disabled"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "dependencies": {"database": db_status, "forums": forums_status},
    }
