"""UI-facing entry points of the view counting core.

``ViewCounter`` composes the local store, session gate and reconciler behind
the operations display code calls. Neither the recording nor the display path
raises: failures inside this subsystem are logged or reported to telemetry
and the caller gets the best local value available.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pageviews.core.settings import Settings, settings as default_settings
from pageviews.services.change_bus import ChangeBus, build_change_bus
from pageviews.services.formatting import format_count
from pageviews.services.local_store import LocalCounterStore
from pageviews.services.reconciler import CounterSource, Reconciler
from pageviews.services.remote import RemoteConfig, RemoteCounterClient
from pageviews.services.session_gate import SessionGate
from pageviews.services.storage import JsonFileStorage, MemoryStorage, StorageBackend
from pageviews.services.telemetry import LoggingTelemetry, TelemetrySink

logger = logging.getLogger(__name__)


class CounterService(CounterSource, Protocol):
    """Full counter service surface, including increments."""

    async def increment(self, key: str) -> int: ...


@dataclass(frozen=True)
class TrackedCount:
    """Result of a recording read."""

    count: int
    just_incremented: bool

    @property
    def label(self) -> str:
        return format_count(self.count)


@dataclass(frozen=True)
class PopularEntry:
    key: str
    count: int

    @property
    def label(self) -> str:
        return format_count(self.count)


class CountWatcher:
    """Follows one key's local count through change notifications.

    ``callback(count, incremented)`` fires after every notification for the
    store's storage key; ``incremented`` is true when the count grew since
    the previous observation.
    """

    def __init__(
        self,
        store: LocalCounterStore,
        bus: ChangeBus,
        key: str,
        callback: Callable[[int, bool], None],
    ) -> None:
        self.store = store
        self.key = key
        self.callback = callback
        self.last = store.get(key)
        self._unsubscribe: Callable[[], None] | None = bus.subscribe(self._on_change)

    def _on_change(self, storage_key: str) -> None:
        if storage_key and storage_key != self.store.storage_key:
            return
        current = self.store.get(self.key)
        incremented = current > self.last
        self.last = current
        self.callback(current, incremented)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


class ViewCounter:
    """Facade used by display components."""

    def __init__(
        self,
        store: LocalCounterStore,
        gate: SessionGate,
        reconciler: Reconciler,
        remote: CounterService,
        bus: ChangeBus,
        *,
        config: Settings | None = None,
    ) -> None:
        self.store = store
        self.gate = gate
        self.reconciler = reconciler
        self.remote = remote
        self.bus = bus
        self.config = config or default_settings

    def display_count(self, key: str) -> int:
        """Non-recording read; schedules background reconciliation."""
        try:
            return self.reconciler.read_through_count(key, self.config.views_cache_ttl_ms)
        except Exception:
            logger.exception("display_count failed for %s", key)
            return 0

    def track_and_display_count(self, key: str) -> TrackedCount:
        """Recording read.

        The first call for ``key`` in this session bumps the local count and
        sends one remote increment; later calls only read.
        """
        try:
            dispatched = self.gate.try_mark_and_dispatch(
                key, lambda: self._remote_increment(key)
            )
            if dispatched:
                return TrackedCount(count=self.store.increment(key), just_incremented=True)
            return TrackedCount(count=self.display_count(key), just_incremented=False)
        except Exception:
            logger.exception("track_and_display_count failed for %s", key)
            return TrackedCount(count=self.store.get(key), just_incremented=False)

    async def track_after_delay(self, key: str, delay: float | None = None) -> TrackedCount:
        """Record a view once the reader has stayed for ``delay`` seconds.

        Cancelling the awaiting task before the delay elapses records nothing.
        """
        wait = self.config.views_increment_delay_seconds if delay is None else delay
        await asyncio.sleep(max(0.0, wait))
        return self.track_and_display_count(key)

    def popular(self, limit: int | None = None) -> list[PopularEntry]:
        bounded = self.config.clamp_popular_limit(limit)
        try:
            ranked = self.reconciler.read_through_popular(bounded, self.config.views_cache_ttl_ms)
        except Exception:
            logger.exception("popular failed for limit %d", bounded)
            return []
        return [PopularEntry(key=key, count=count) for key, count in ranked]

    def watch(self, key: str, callback: Callable[[int, bool], None]) -> CountWatcher:
        return CountWatcher(self.store, self.bus, key, callback)

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback`` whenever the view-count storage key changes."""

        def _filtered(storage_key: str) -> None:
            if storage_key == self.store.storage_key:
                callback()

        return self.bus.subscribe(_filtered)

    def clear(self) -> None:
        """Wipe local counts and this session's recorded views."""
        self.gate.clear()
        self.store.clear()

    async def wait_idle(self) -> None:
        await self.gate.wait_idle()
        await self.reconciler.wait_idle()

    async def aclose(self) -> None:
        await self.wait_idle()
        close = getattr(self.remote, "close", None)
        if close is not None:
            await close()
        stop = getattr(self.bus, "stop", None)
        if stop is not None:
            stop()

    async def _remote_increment(self, key: str) -> None:
        count = await self.remote.increment(key)
        self.store.merge(key, count)


def build_view_counter(
    config: Settings | None = None,
    *,
    remote: CounterService | None = None,
    storage: StorageBackend | None = None,
    session_storage: StorageBackend | None = None,
    bus: ChangeBus | None = None,
    telemetry: TelemetrySink | None = None,
) -> ViewCounter:
    """Assemble a ``ViewCounter`` from settings, overriding any collaborator."""
    config = config or default_settings
    telemetry = telemetry or LoggingTelemetry()
    if bus is None:
        bus = build_change_bus(
            config.change_bus_backend,
            redis_url=config.redis_url,
            channel=config.change_bus_channel,
        )
    if storage is None:
        storage = JsonFileStorage(config.views_local_path) if config.views_local_path else MemoryStorage()

    store = LocalCounterStore(storage, storage_key=config.views_storage_key, bus=bus)
    gate = SessionGate(
        session_storage,
        session_key=config.views_session_key,
        telemetry=telemetry,
        retry_failed=config.views_retry_failed_increments,
    )
    remote = remote or RemoteCounterClient(
        RemoteConfig(
            base_url=config.remote_base_url,
            timeout_seconds=float(config.remote_timeout_seconds),
            max_popular_limit=config.views_popular_max_limit,
        )
    )
    reconciler = Reconciler(
        store,
        remote,
        ttl_ms=config.views_cache_ttl_ms,
        max_popular_limit=config.views_popular_max_limit,
        telemetry=telemetry,
    )
    return ViewCounter(store, gate, reconciler, remote, bus, config=config)


__all__ = [
    "CountWatcher",
    "PopularEntry",
    "TrackedCount",
    "ViewCounter",
    "build_view_counter",
]
