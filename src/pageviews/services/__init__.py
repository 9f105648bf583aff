# src/pageviews/services/__init__.py
"""Client-side view counting core and its collaborators."""

from .formatting import format_count
from .local_store import LocalCounterStore, ViewRecord
from .reconciler import PendingFetch, PopularSnapshot, Reconciler
from .session_gate import SessionGate
from .view_counter import CountWatcher, TrackedCount, ViewCounter, build_view_counter

__all__ = [
    "CountWatcher",
    "LocalCounterStore",
    "PendingFetch",
    "PopularSnapshot",
    "Reconciler",
    "SessionGate",
    "TrackedCount",
    "ViewCounter",
    "ViewRecord",
    "build_view_counter",
    "format_count",
]
