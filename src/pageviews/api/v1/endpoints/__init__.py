# src/pageviews/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .system import router as system_router
from .views import router as views_router

__all__ = [
    "system_router",
    "views_router",
]
