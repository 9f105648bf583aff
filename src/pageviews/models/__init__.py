# src/pageviews/models/__init__.py
"""SQLAlchemy models for the Pageviews service."""

from .view_count import ViewCount

__all__ = ["ViewCount"]
