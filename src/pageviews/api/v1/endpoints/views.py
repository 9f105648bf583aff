# src/pageviews/api/v1/endpoints/views.py
"""View counter endpoints: read, increment and top-N."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pageviews.core.settings import settings
from pageviews.db.session import get_db
from pageviews.repositories.views_repo import ViewsRepository
from pageviews.schemas.views import (
    ErrorResponse,
    PopularEntry,
    PopularResponse,
    ViewCountResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/views", tags=["views"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0, s-maxage=0",
}
ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


def get_views_repository(db: Annotated[Session, Depends(get_db)]) -> ViewsRepository:
    """Return a repository bound to the request's database session."""
    return ViewsRepository(db)


RepoDep = Annotated[ViewsRepository, Depends(get_views_repository)]


def _error(message: str, *, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error=message).model_dump(),
        headers=headers,
    )


# Declared before /{slug} so "popular" is never captured as a slug.
@router.get("/popular", response_model=PopularResponse, responses=ERROR_RESPONSES)
def get_popular(
    repo: RepoDep,
    limit: Annotated[int, Query()] = settings.views_popular_default_limit,
) -> PopularResponse | JSONResponse:
    """Return the most viewed content keys, highest count first.

    ``limit`` is clamped to ``[1, VIEWS_POPULAR_MAX_LIMIT]`` rather than rejected.
    """
    bounded = settings.clamp_popular_limit(limit)
    try:
        rows = repo.popular(bounded)
    except SQLAlchemyError as exc:
        logger.error("Failed to fetch popular views: %s", exc)
        return _error("Failed to fetch popular posts", headers=NO_STORE_HEADERS)

    payload = PopularResponse(popular=[PopularEntry(slug=slug, views=views) for slug, views in rows])
    return JSONResponse(content=payload.model_dump(), headers=NO_STORE_HEADERS)


@router.get("/{slug}", response_model=ViewCountResponse, responses=ERROR_RESPONSES)
def get_view_count(slug: str, repo: RepoDep) -> ViewCountResponse | JSONResponse:
    """Return the authoritative count for ``slug`` (0 if never viewed)."""
    try:
        count = repo.get_count(slug)
    except SQLAlchemyError as exc:
        logger.error("Failed to fetch view count for %s: %s", slug, exc)
        return _error("Failed to fetch view count")
    return ViewCountResponse(slug=slug, count=count)


@router.post("/{slug}", response_model=ViewCountResponse, responses=ERROR_RESPONSES)
def increment_view_count(slug: str, repo: RepoDep) -> ViewCountResponse | JSONResponse:
    """Record one view for ``slug`` and return the new authoritative count."""
    try:
        count = repo.increment(slug)
    except SQLAlchemyError as exc:
        repo.session.rollback()
        logger.error("Failed to increment view count for %s: %s", slug, exc)
        return _error("Failed to increment view count")
    logger.debug("Recorded view for %s (now %d)", slug, count)
    return ViewCountResponse(slug=slug, count=count)
