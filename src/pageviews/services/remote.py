"""HTTP client for the authoritative counter service.

``RemoteCounterClient`` wraps the three operations the client core consumes:
reading a count, incrementing it and fetching the top-N list. Any transport
failure, non-success status or malformed payload surfaces as
``RemoteCounterError``; absorbing it is the caller's job.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from pageviews.core.settings import settings

logger = logging.getLogger(__name__)


class RemoteCounterError(RuntimeError):
    """Raised when the counter service cannot satisfy a request."""


@dataclass(frozen=True)
class RemoteConfig:
    """Immutable configuration for the counter service client."""

    base_url: str
    timeout_seconds: float
    max_popular_limit: int


def load_remote_config() -> RemoteConfig:
    """Build configuration object from global settings."""

    return RemoteConfig(
        base_url=settings.remote_base_url,
        timeout_seconds=float(settings.remote_timeout_seconds),
        max_popular_limit=settings.views_popular_max_limit,
    )


class RemoteCounterClient:
    """Async JSON-over-HTTP client for ``/views`` endpoints."""

    def __init__(
        self,
        config: RemoteConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or load_remote_config()
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, path: str, *, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        client = await self._ensure_client()
        try:
            response = await client.request(method, path, params=params)
        except httpx.HTTPError as exc:
            raise RemoteCounterError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            raise RemoteCounterError(
                f"Counter service responded with {response.status_code} for {method} {path}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteCounterError(f"Malformed response for {method} {path}") from exc
        if not isinstance(body, dict):
            raise RemoteCounterError(f"Unexpected payload for {method} {path}")
        return body

    @staticmethod
    def _count_path(key: str) -> str:
        return f"views/{quote(key, safe='')}"

    @staticmethod
    def _parse_count(body: dict[str, Any]) -> int:
        try:
            count = int(body.get("count", 0))
        except (TypeError, ValueError) as exc:
            raise RemoteCounterError(f"Invalid count in response: {body!r}") from exc
        return max(0, count)

    async def count(self, key: str) -> int:
        """Return the authoritative count for ``key`` (0 when unknown)."""
        body = await self._request("GET", self._count_path(key))
        return self._parse_count(body)

    async def increment(self, key: str) -> int:
        """Record one view for ``key`` and return the new authoritative count."""
        body = await self._request("POST", self._count_path(key))
        count = self._parse_count(body)
        logger.debug("Remote increment for %s -> %d", key, count)
        return count

    async def popular(self, limit: int) -> list[tuple[str, int]]:
        """Return up to ``limit`` ``(key, count)`` pairs, highest first."""
        bounded = max(1, min(self.config.max_popular_limit, int(limit)))
        body = await self._request("GET", "views/popular", params={"limit": bounded})
        rows = body.get("popular")
        if not isinstance(rows, list):
            raise RemoteCounterError(f"Invalid popular payload: {body!r}")

        entries: list[tuple[str, int]] = []
        for row in rows:
            try:
                entries.append((str(row["slug"]), max(0, int(row["views"]))))
            except (KeyError, TypeError, ValueError) as exc:
                raise RemoteCounterError(f"Invalid popular entry: {row!r}") from exc
        return entries
