# src/pageviews/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the JSON shapes exchanged with the counter service.
"""

from .views import ErrorResponse, PopularEntry, PopularResponse, ViewCountResponse

__all__ = [
    "ErrorResponse",
    "PopularEntry",
    "PopularResponse",
    "ViewCountResponse",
]
