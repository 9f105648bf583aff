"""Key/value storage media for client-side counters.

The counter store and the session gate persist through a small
Web-Storage-shaped interface so the same code runs against a durable JSON
file (device-local storage that survives restarts) or a process-scoped
dictionary (session storage).
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Protocol

logger = logging.getLogger(__name__)


class StorageUnavailableError(RuntimeError):
    """Raised when a storage medium cannot be read or written."""


class StorageBackend(Protocol):
    """Minimal string key/value medium."""

    def get_item(self, name: str) -> str | None: ...

    def set_item(self, name: str, value: str) -> None: ...

    def remove_item(self, name: str) -> None: ...


class MemoryStorage:
    """Process-scoped storage; contents vanish with the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, name: str) -> str | None:
        return self._items.get(name)

    def set_item(self, name: str, value: str) -> None:
        self._items[name] = value

    def remove_item(self, name: str) -> None:
        self._items.pop(name, None)


class JsonFileStorage:
    """Durable storage backed by a single JSON object on disk.

    Writes go to a temporary file that is atomically renamed over the target,
    so a crash mid-write leaves the previous contents intact. Other processes
    sharing the file observe changes on their next read.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = Lock()

    def get_item(self, name: str) -> str | None:
        return self._load().get(name)

    def set_item(self, name: str, value: str) -> None:
        with self._lock:
            items = self._load()
            items[name] = value
            self._dump(items)

    def remove_item(self, name: str) -> None:
        with self._lock:
            items = self._load()
            if items.pop(name, None) is not None:
                self._dump(items)

    def _load(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot read {self.path}: {exc}") from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt storage file %s", self.path)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, items: dict[str, str]) -> None:
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(items, fh)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_name)
            raise StorageUnavailableError(f"Cannot write {self.path}: {exc}") from exc
