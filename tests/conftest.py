# tests/conftest.py
from __future__ import annotations

import asyncio
import os
from collections.abc import Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

from pageviews.core.settings import Settings  # noqa: E402
from pageviews.db.session import Base  # noqa: E402
from pageviews.db.session import get_db as app_get_session  # noqa: E402
from pageviews.main import app as fastapi_app  # noqa: E402
from pageviews.services.change_bus import InProcessChangeBus  # noqa: E402
from pageviews.services.local_store import LocalCounterStore  # noqa: E402
from pageviews.services.reconciler import Reconciler  # noqa: E402
from pageviews.services.session_gate import SessionGate  # noqa: E402
from pageviews.services.storage import MemoryStorage, StorageUnavailableError  # noqa: E402
from pageviews.services.view_counter import ViewCounter  # noqa: E402

TEST_DB_URL = "sqlite://"


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def test_settings() -> Settings:
    """Settings with a zero increment delay and a one-minute TTL."""
    return Settings(VIEWS_INCREMENT_DELAY_SECONDS=0.0, VIEWS_CACHE_TTL_MS=60_000)


class RecordingTelemetry:
    """Telemetry sink that keeps every absorbed failure."""

    def __init__(self) -> None:
        self.failures: list[tuple[str, str, BaseException]] = []

    def record_failure(self, operation: str, key: str, error: BaseException) -> None:
        self.failures.append((operation, key, error))


class FakeCounterService:
    """In-memory stand-in for the remote counter service.

    ``hold()`` keeps every subsequent call suspended until ``release()``, which
    lets tests observe requests while they are in flight.
    """

    def __init__(self, counts: dict[str, int] | None = None) -> None:
        self.counts: dict[str, int] = dict(counts or {})
        self.calls: list[tuple[str, object]] = []
        self.fail_with: Exception | None = None
        self._gate = asyncio.Event()
        self._gate.set()

    def hold(self) -> None:
        self._gate.clear()

    def release(self) -> None:
        self._gate.set()

    def calls_to(self, operation: str) -> list[object]:
        return [arg for op, arg in self.calls if op == operation]

    async def _enter(self, operation: str, arg: object) -> None:
        self.calls.append((operation, arg))
        await self._gate.wait()
        if self.fail_with is not None:
            raise self.fail_with

    async def count(self, key: str) -> int:
        await self._enter("count", key)
        return self.counts.get(key, 0)

    async def increment(self, key: str) -> int:
        await self._enter("increment", key)
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def popular(self, limit: int) -> list[tuple[str, int]]:
        await self._enter("popular", limit)
        ranked = sorted(self.counts.items(), key=lambda item: item[1], reverse=True)
        return ranked[:limit]


@pytest.fixture()
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture()
def remote() -> FakeCounterService:
    return FakeCounterService()


@pytest.fixture()
def bus() -> InProcessChangeBus:
    return InProcessChangeBus()


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


class BrokenStorage:
    """Storage medium that refuses every operation."""

    def get_item(self, name: str) -> str | None:
        raise StorageUnavailableError("storage disabled")

    def set_item(self, name: str, value: str) -> None:
        raise StorageUnavailableError("quota exceeded")

    def remove_item(self, name: str) -> None:
        raise StorageUnavailableError("storage disabled")


@pytest.fixture()
def broken_storage() -> BrokenStorage:
    return BrokenStorage()


@pytest.fixture()
def store(storage: MemoryStorage, bus: InProcessChangeBus) -> LocalCounterStore:
    return LocalCounterStore(storage, bus=bus)


@pytest.fixture()
def reconciler(
    store: LocalCounterStore, remote: FakeCounterService, telemetry: RecordingTelemetry
) -> Reconciler:
    return Reconciler(store, remote, ttl_ms=60_000, telemetry=telemetry)


@pytest.fixture()
def gate(telemetry: RecordingTelemetry) -> SessionGate:
    return SessionGate(telemetry=telemetry)


@pytest.fixture()
def view_counter(
    store: LocalCounterStore,
    gate: SessionGate,
    reconciler: Reconciler,
    remote: FakeCounterService,
    bus: InProcessChangeBus,
    test_settings: Settings,
) -> ViewCounter:
    return ViewCounter(store, gate, reconciler, remote, bus, config=test_settings)
