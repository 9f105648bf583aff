"""At-most-once-per-session dispatch of remote increments.

The gate's check-and-set runs synchronously, with no suspension point between
reading and writing the session flag, so two callers on the same event loop
can never both pass for one key. The dispatch itself is fire-and-forget: it
is scheduled on the running loop and its failures are reported to telemetry,
never to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pageviews.services.storage import MemoryStorage, StorageBackend, StorageUnavailableError
from pageviews.services.telemetry import LoggingTelemetry, TelemetrySink

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "current-session-views"

Dispatch = Callable[[], Awaitable[Any]]


class SessionGate:
    """Session-scoped set of keys whose increment has already been sent."""

    def __init__(
        self,
        storage: StorageBackend | None = None,
        *,
        session_key: str = DEFAULT_SESSION_KEY,
        telemetry: TelemetrySink | None = None,
        retry_failed: bool = False,
    ) -> None:
        """Initialize the gate.

        Args:
            storage: Session-scoped medium for the flags. Defaults to a fresh
                ``MemoryStorage``, i.e. one session per gate instance.
            session_key: Storage entry holding the marked keys.
            telemetry: Sink receiving swallowed dispatch failures.
            retry_failed: When true, a failed dispatch clears the key's flag so
                a later visit in the same session may try again.
        """
        self.storage = storage if storage is not None else MemoryStorage()
        self.session_key = session_key
        self.telemetry = telemetry or LoggingTelemetry()
        self.retry_failed = retry_failed
        self._marked: set[str] = self._load()
        self._tasks: set[asyncio.Task[None]] = set()

    def is_marked(self, key: str) -> bool:
        return key in self._marked

    def try_mark_and_dispatch(self, key: str, dispatch: Dispatch) -> bool:
        """Send ``dispatch`` once per session for ``key``.

        Returns True when this call passed the gate (the flag was set and the
        dispatch scheduled), False when the key was already marked.
        """
        if key in self._marked:
            return False
        self._marked.add(key)
        self._persist()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            self._on_failure(key, exc)
            return True

        task = loop.create_task(self._run(key, dispatch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def wait_idle(self) -> None:
        """Wait for every scheduled dispatch to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        """Forget every marked key so the next visit counts again."""
        self._marked.clear()
        try:
            self.storage.remove_item(self.session_key)
        except (StorageUnavailableError, OSError) as exc:
            logger.debug("Could not clear session flags: %s", exc)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def _run(self, key: str, dispatch: Dispatch) -> None:
        try:
            await dispatch()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._on_failure(key, exc)

    def _on_failure(self, key: str, exc: BaseException) -> None:
        self.telemetry.record_failure("increment", key, exc)
        if self.retry_failed:
            self._marked.discard(key)
            self._persist()

    def _load(self) -> set[str]:
        try:
            raw = self.storage.get_item(self.session_key)
        except (StorageUnavailableError, OSError) as exc:
            logger.debug("Session storage unavailable: %s", exc)
            return set()
        if not raw:
            return set()
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed session data under %s", self.session_key)
            return set()
        if not isinstance(data, list):
            return set()
        return {str(item) for item in data}

    def _persist(self) -> None:
        try:
            self.storage.set_item(self.session_key, json.dumps(sorted(self._marked)))
        except (StorageUnavailableError, OSError) as exc:
            logger.debug("Could not persist session flags: %s", exc)
