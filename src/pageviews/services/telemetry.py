"""Failure reporting for best-effort view counting.

Remote failures never reach callers of the client core; they are handed to a
telemetry sink instead. The default sink logs them.
"""

from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    """Receiver for absorbed failures."""

    def record_failure(self, operation: str, key: str, error: BaseException) -> None: ...


class LoggingTelemetry:
    """Report absorbed failures through the standard logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def record_failure(self, operation: str, key: str, error: BaseException) -> None:
        self._log.warning("View counter %s failed for %s: %s", operation, key, error)
