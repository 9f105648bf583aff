"""Schemas for view counter endpoints."""
from __future__ import annotations

from pydantic import BaseModel, Field


class ViewCountResponse(BaseModel):
    """Authoritative count for a single content key."""

    success: bool = True
    slug: str = Field(..., description="Content key the count belongs to.")
    count: int = Field(..., ge=0)


class PopularEntry(BaseModel):
    """One row of a top-N query."""

    slug: str
    views: int = Field(..., ge=0)


class PopularResponse(BaseModel):
    """Top-N content keys ordered by descending view count."""

    success: bool = True
    popular: list[PopularEntry]


class ErrorResponse(BaseModel):
    """Error payload returned when the counter store fails."""

    error: str
