"""TTL-gated reconciliation of local counters with the counter service.

Reads always answer immediately from the local store. When the last remote
fetch for the same key (or the same top-N limit) started longer ago than the
TTL, a background fetch is scheduled; while it is in flight no second fetch
for that key is started. Successful fetches are merged monotonically into the
local store, which publishes the change. Failures leave local state alone and
are reported to telemetry; the TTL window consumed by a failed or hung fetch
is not retried early.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, Protocol

from pageviews.core.settings import settings
from pageviews.services.local_store import LocalCounterStore
from pageviews.services.telemetry import LoggingTelemetry, TelemetrySink

logger = logging.getLogger(__name__)

COUNT = "count"
POPULAR = "popular"

FetchKey = tuple[str, str]


class CounterSource(Protocol):
    """Read side of the counter service consumed by the reconciler."""

    async def count(self, key: str) -> int: ...

    async def popular(self, limit: int) -> list[tuple[str, int]]: ...


@dataclass
class PendingFetch:
    """An in-flight remote read, keyed by ``(key, kind)``."""

    key: str
    kind: str
    started_at: float
    task: asyncio.Task[None] | None = None


@dataclass(frozen=True)
class PopularSnapshot:
    """Last successful top-N result for one ``limit``."""

    limit: int
    entries: tuple[tuple[str, int], ...]
    fetched_at: float


@dataclass
class _Caches:
    last_started: dict[FetchKey, float] = field(default_factory=dict)
    pending: dict[FetchKey, PendingFetch] = field(default_factory=dict)
    popular: dict[int, PopularSnapshot] = field(default_factory=dict)


class Reconciler:
    """Keeps a ``LocalCounterStore`` approximately fresh with the service."""

    def __init__(
        self,
        store: LocalCounterStore,
        remote: CounterSource,
        *,
        ttl_ms: int | None = None,
        max_popular_limit: int | None = None,
        telemetry: TelemetrySink | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.remote = remote
        self.ttl_ms = settings.views_cache_ttl_ms if ttl_ms is None else ttl_ms
        self.max_popular_limit = max_popular_limit or settings.views_popular_max_limit
        self.telemetry = telemetry or LoggingTelemetry()
        self._clock = clock
        self._caches = _Caches()

    def read_through_count(self, key: str, ttl_ms: int | None = None) -> int:
        """Return the local count for ``key``; refresh from remote if stale."""
        value = self.store.get(key)
        self._maybe_fetch(
            (key, COUNT),
            ttl_ms,
            lambda: self._fetch_count(key),
        )
        return value

    def read_through_popular(
        self, limit: int, ttl_ms: int | None = None
    ) -> list[tuple[str, int]]:
        """Return the local top-``limit``; refresh the remote top-N if stale.

        Ties keep the store's insertion order.
        """
        limit = max(1, min(self.max_popular_limit, int(limit)))
        counts = self.store.all_counts()
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:limit]
        self._maybe_fetch(
            (str(limit), POPULAR),
            ttl_ms,
            lambda: self._fetch_popular(limit),
        )
        return ranked

    def snapshot(self, limit: int) -> PopularSnapshot | None:
        return self._caches.popular.get(limit)

    def pending(self) -> list[FetchKey]:
        return list(self._caches.pending)

    async def wait_idle(self) -> None:
        """Wait until every in-flight fetch has settled."""
        while self._caches.pending:
            tasks = [p.task for p in self._caches.pending.values() if p.task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def _maybe_fetch(
        self,
        fetch_key: FetchKey,
        ttl_ms: int | None,
        factory: Callable[[], Coroutine[Any, Any, None]],
    ) -> None:
        if fetch_key in self._caches.pending:
            return

        ttl = (self.ttl_ms if ttl_ms is None else ttl_ms) / 1000.0
        now = self._clock()
        started = self._caches.last_started.get(fetch_key)
        if started is not None and now - started < ttl:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping refresh of %s", fetch_key)
            return

        self._caches.last_started[fetch_key] = now
        pending = PendingFetch(key=fetch_key[0], kind=fetch_key[1], started_at=now)
        self._caches.pending[fetch_key] = pending
        pending.task = loop.create_task(self._settle(fetch_key, factory()))

    async def _settle(
        self, fetch_key: FetchKey, work: Coroutine[Any, Any, None]
    ) -> None:
        try:
            await work
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.telemetry.record_failure(f"fetch-{fetch_key[1]}", fetch_key[0], exc)
        finally:
            self._caches.pending.pop(fetch_key, None)

    async def _fetch_count(self, key: str) -> None:
        remote_count = await self.remote.count(key)
        merged = self.store.merge(key, remote_count)
        logger.debug("Reconciled %s: remote=%d local=%d", key, remote_count, merged)

    async def _fetch_popular(self, limit: int) -> None:
        entries = await self.remote.popular(limit)
        for key, count in entries:
            self.store.merge(key, count)
        self._caches.popular[limit] = PopularSnapshot(
            limit=limit,
            entries=tuple(entries),
            fetched_at=self._clock(),
        )
