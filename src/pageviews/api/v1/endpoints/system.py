"""Health and configuration endpoints for the Pageviews API."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pageviews.core.settings import settings
from pageviews.db.session import get_db
from pageviews.repositories.views_repo import ViewsRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])

SessionDep = Annotated[Session, Depends(get_db)]


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@router.get("/health/db", response_model=None)
def database_health(db: SessionDep) -> dict[str, object] | JSONResponse:
    """Probe the counter table and report a sample slug."""
    try:
        sample = ViewsRepository(db).sample_slug()
    except SQLAlchemyError as exc:
        logger.warning("Database health probe failed: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"ok": False, "error": str(exc)},
        )
    return {"ok": True, "sample": sample}


@router.get("/system/config")
async def get_public_config() -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes connection strings; clients use it to align their TTL and limits.
    """
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "views": {
            "cache_ttl_ms": settings.views_cache_ttl_ms,
            "popular_default_limit": settings.views_popular_default_limit,
            "popular_max_limit": settings.views_popular_max_limit,
            "increment_delay_seconds": settings.views_increment_delay_seconds,
        },
    }
