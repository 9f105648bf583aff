"""Device-local optimistic view counters.

``LocalCounterStore`` is the sole owner of ``ViewRecord`` objects on a client.
Every operation is synchronous and never raises. Records are mirrored in
memory, so an unavailable storage medium degrades to in-memory-only counting:
failed writes are logged and reads are served from the mirror. Corrupt stored
data reads as "no data".
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any

from pageviews.services.change_bus import ChangeBus
from pageviews.services.storage import MemoryStorage, StorageBackend, StorageUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "blog-view-counts"

# Anything a misbehaving storage medium may throw on access.
_STORAGE_ERRORS = (StorageUnavailableError, OSError)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ViewRecord:
    """Locally observed view state for one content key."""

    key: str
    count: int = 0
    last_updated: str = ""
    session_incremented: bool = False

    @classmethod
    def from_payload(cls, key: str, payload: Any) -> ViewRecord | None:
        # Flat legacy layout: {"slug": 5}
        if isinstance(payload, int) and not isinstance(payload, bool):
            return cls(key=key, count=max(0, payload))
        if not isinstance(payload, dict):
            return None
        try:
            count = int(payload.get("count", 0))
        except (TypeError, ValueError):
            return None
        return cls(
            key=key,
            count=max(0, count),
            last_updated=str(payload.get("last_updated", "")),
            session_incremented=bool(payload.get("session_incremented", False)),
        )


class LocalCounterStore:
    """Synchronous key -> ``ViewRecord`` map persisted to a storage medium."""

    def __init__(
        self,
        storage: StorageBackend | None = None,
        *,
        storage_key: str = DEFAULT_STORAGE_KEY,
        bus: ChangeBus | None = None,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self.storage_key = storage_key
        self.bus = bus
        self._mirror: dict[str, ViewRecord] = {}
        # Set while the mirror holds changes the medium failed to store.
        self._unsaved = False

    def get(self, key: str) -> int:
        """Return the local count for ``key``, or 0 when unknown."""
        record = self._load().get(key)
        return record.count if record else 0

    def increment(self, key: str) -> int:
        """Add one optimistic view to ``key`` and return the new count."""
        records = self._load()
        record = records.get(key) or ViewRecord(key=key)
        record.count += 1
        record.last_updated = _now_iso()
        record.session_incremented = True
        records[key] = record
        self._save(records)
        return record.count

    def merge(self, key: str, remote_count: int) -> int:
        """Fold an authoritative count into ``key`` without ever lowering it."""
        records = self._load()
        record = records.get(key) or ViewRecord(key=key)
        record.count = max(record.count, max(0, int(remote_count)))
        record.last_updated = _now_iso()
        records[key] = record
        self._save(records)
        return record.count

    def all_counts(self) -> dict[str, int]:
        """Snapshot of every local count, in storage insertion order."""
        return {key: record.count for key, record in self._load().items()}

    def records(self) -> dict[str, ViewRecord]:
        return self._load()

    def clear(self) -> None:
        """Drop every local record."""
        self._mirror = {}
        try:
            self.storage.remove_item(self.storage_key)
        except _STORAGE_ERRORS as exc:
            self._unsaved = True
            logger.warning("Could not clear view data: %s", exc)
            return
        self._unsaved = False
        self._notify()

    def export(self) -> str:
        """Pretty-printed JSON dump of all records, for backup or analysis."""
        payload = {key: asdict(record) for key, record in self._load().items()}
        return json.dumps(payload, indent=2)

    def _load(self) -> dict[str, ViewRecord]:
        stored = self._read()
        if stored is None:
            return _copy(self._mirror)
        if self._unsaved:
            # Stored data may lag behind writes that failed; counts never go back.
            for key, record in self._mirror.items():
                current = stored.get(key)
                if current is None or record.count > current.count:
                    stored[key] = replace(record)
        self._mirror = _copy(stored)
        return stored

    def _read(self) -> dict[str, ViewRecord] | None:
        """Records held by the medium, or None when it cannot be read."""
        try:
            raw = self.storage.get_item(self.storage_key)
        except _STORAGE_ERRORS as exc:
            logger.debug("View storage unavailable: %s", exc)
            return None
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed view data under %s", self.storage_key)
            return {}
        if not isinstance(data, dict):
            return {}

        records: dict[str, ViewRecord] = {}
        for key, payload in data.items():
            record = ViewRecord.from_payload(str(key), payload)
            if record is not None:
                records[record.key] = record
        return records

    def _save(self, records: dict[str, ViewRecord]) -> None:
        self._mirror = _copy(records)
        payload = {
            key: {
                "count": record.count,
                "last_updated": record.last_updated,
                "session_incremented": record.session_incremented,
            }
            for key, record in records.items()
        }
        try:
            self.storage.set_item(self.storage_key, json.dumps(payload))
        except _STORAGE_ERRORS as exc:
            self._unsaved = True
            logger.warning("Could not save view data: %s", exc)
            return
        self._unsaved = False
        self._notify()

    def _notify(self) -> None:
        if self.bus is not None:
            self.bus.publish(self.storage_key)


def _copy(records: dict[str, ViewRecord]) -> dict[str, ViewRecord]:
    return {key: replace(record) for key, record in records.items()}
