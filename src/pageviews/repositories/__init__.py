"""Data access layer for the counter service."""

from .views_repo import ViewsRepository

__all__ = ["ViewsRepository"]
