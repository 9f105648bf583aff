"""Change notifications for the local counter store.

Publications carry only the storage key that changed; subscribers re-read the
store themselves. ``InProcessChangeBus`` delivers synchronously inside one
process. ``RedisChangeBus`` additionally fans notifications out to other
processes sharing the same storage through a Redis pub/sub channel.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from threading import Lock
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], None]
Unsubscribe = Callable[[], None]


class ChangeBus(Protocol):
    """Publish/subscribe channel for "storage key changed" signals."""

    def publish(self, storage_key: str) -> None: ...

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe: ...


class InProcessChangeBus:
    """Synchronous fan-out to subscribers in the current process."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []
        self._lock = Lock()

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, storage_key: str) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(storage_key)
            except Exception:
                logger.exception("Change subscriber failed for %s", storage_key)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class RedisChangeBus:
    """Change bus bridged over a Redis pub/sub channel.

    Local subscribers are notified synchronously on ``publish``; the Redis
    listener thread forwards messages from other instances and drops echoes
    of this instance's own publications.
    """

    def __init__(
        self,
        client: redis.Redis,
        channel: str,
        *,
        local: InProcessChangeBus | None = None,
    ) -> None:
        self.client = client
        self.channel = channel
        self.instance_id = uuid.uuid4().hex
        self._local = local or InProcessChangeBus()
        self._pubsub: Any = None
        self._thread: Any = None

    @classmethod
    def from_url(cls, url: str, channel: str) -> RedisChangeBus:
        return cls(redis.from_url(url, decode_responses=True), channel)

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        return self._local.subscribe(callback)

    def publish(self, storage_key: str) -> None:
        self._local.publish(storage_key)
        message = json.dumps({"key": storage_key, "origin": self.instance_id})
        try:
            self.client.publish(self.channel, message)
        except redis.RedisError as exc:
            logger.warning("Could not publish change for %s: %s", storage_key, exc)

    def start(self, *, sleep_time: float = 0.1) -> None:
        """Begin forwarding remote notifications on a daemon thread."""
        if self._thread is not None:
            return
        try:
            self._pubsub = self.client.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(**{self.channel: self.handle_message})
            self._thread = self._pubsub.run_in_thread(sleep_time=sleep_time, daemon=True)
        except redis.RedisError as exc:
            logger.warning("Change bus listener unavailable: %s", exc)
            self._pubsub = None
            self._thread = None

    def stop(self) -> None:
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None

    def handle_message(self, message: dict[str, Any]) -> None:
        """Forward one pub/sub message to local subscribers."""
        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        try:
            payload = json.loads(data)
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed change message: %r", data)
            return
        if not isinstance(payload, dict) or payload.get("origin") == self.instance_id:
            return
        key = payload.get("key")
        if isinstance(key, str):
            self._local.publish(key)


def build_change_bus(backend: str, *, redis_url: str, channel: str) -> ChangeBus:
    """Return the configured change bus implementation."""
    if backend == "redis":
        bus = RedisChangeBus.from_url(redis_url, channel)
        bus.start()
        return bus
    if backend != "memory":
        logger.warning("Unknown change bus backend %r; using in-process delivery", backend)
    return InProcessChangeBus()
