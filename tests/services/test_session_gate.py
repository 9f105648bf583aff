# tests/services/test_session_gate.py
"""Tests for at-most-once-per-session increment dispatch."""

import asyncio
import json

import pytest

from pageviews.services.session_gate import SessionGate
from pageviews.services.storage import MemoryStorage


@pytest.mark.asyncio
async def test_dispatches_once_per_key(gate: SessionGate) -> None:
    sent: list[str] = []

    async def dispatch() -> None:
        sent.append("post-x")

    assert gate.try_mark_and_dispatch("post-x", dispatch) is True
    assert gate.try_mark_and_dispatch("post-x", dispatch) is False
    await gate.wait_idle()

    assert sent == ["post-x"]
    assert gate.is_marked("post-x")


@pytest.mark.asyncio
async def test_flag_is_set_before_dispatch_runs(gate: SessionGate) -> None:
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow_dispatch() -> None:
        started.set()
        await release.wait()

    gate.try_mark_and_dispatch("k", slow_dispatch)
    await started.wait()
    # Still in flight: a second caller must not pass.
    assert gate.try_mark_and_dispatch("k", slow_dispatch) is False
    assert gate.in_flight == 1
    release.set()
    await gate.wait_idle()
    assert gate.in_flight == 0


@pytest.mark.asyncio
async def test_does_not_wait_for_dispatch(gate: SessionGate) -> None:
    release = asyncio.Event()

    async def never_done() -> None:
        await release.wait()

    # Returns synchronously even though the dispatch is blocked.
    assert gate.try_mark_and_dispatch("k", never_done) is True
    release.set()
    await gate.wait_idle()


@pytest.mark.asyncio
async def test_failures_are_swallowed_and_reported(gate: SessionGate, telemetry) -> None:
    async def failing() -> None:
        raise ConnectionError("offline")

    assert gate.try_mark_and_dispatch("k", failing) is True
    await gate.wait_idle()

    assert len(telemetry.failures) == 1
    operation, key, error = telemetry.failures[0]
    assert (operation, key) == ("increment", "k")
    assert isinstance(error, ConnectionError)
    # Default policy keeps the flag after a failure.
    assert gate.is_marked("k")


@pytest.mark.asyncio
async def test_retry_policy_unmarks_after_failure(telemetry) -> None:
    gate = SessionGate(telemetry=telemetry, retry_failed=True)
    attempts: list[int] = []

    async def flaky() -> None:
        attempts.append(1)
        if len(attempts) == 1:
            raise TimeoutError("slow network")

    gate.try_mark_and_dispatch("k", flaky)
    await gate.wait_idle()
    assert not gate.is_marked("k")

    assert gate.try_mark_and_dispatch("k", flaky) is True
    await gate.wait_idle()
    assert gate.is_marked("k")
    assert len(attempts) == 2


def test_session_flags_persist_in_session_storage() -> None:
    storage = MemoryStorage()

    async def noop() -> None:
        return None

    first = SessionGate(storage)
    first.try_mark_and_dispatch("seen", noop)

    second = SessionGate(storage)
    assert second.is_marked("seen")
    assert second.try_mark_and_dispatch("seen", noop) is False
    assert json.loads(storage.get_item(second.session_key)) == ["seen"]


def test_without_running_loop_marks_and_reports(telemetry) -> None:
    gate = SessionGate(telemetry=telemetry)

    async def dispatch() -> None:
        raise AssertionError("must not run")

    assert gate.try_mark_and_dispatch("k", dispatch) is True
    assert gate.is_marked("k")
    assert telemetry.failures[0][1] == "k"


def test_malformed_session_data_is_ignored() -> None:
    storage = MemoryStorage({"current-session-views": "not-json"})
    assert not SessionGate(storage).is_marked("anything")


def test_clear_forgets_marked_keys() -> None:
    storage = MemoryStorage({"current-session-views": json.dumps(["a", "b"])})
    gate = SessionGate(storage)
    assert gate.is_marked("a")

    gate.clear()
    assert not gate.is_marked("a")
    assert storage.get_item(gate.session_key) is None
    assert not SessionGate(storage).is_marked("b")
