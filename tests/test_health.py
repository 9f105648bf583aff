# tests/test_health.py
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError


def test_root_responds(client: TestClient) -> None:
    """Verify that the root endpoint describes the service."""
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["name"] == "Pageviews API"


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/api/v1/health").json() == {"status": "ok"}


def test_db_health_reports_sample(client: TestClient) -> None:
    empty = client.get("/api/v1/health/db")
    assert empty.status_code == 200
    assert empty.json() == {"ok": True, "sample": None}

    client.post("/api/v1/views/hello-world")
    body = client.get("/api/v1/health/db").json()
    assert body == {"ok": True, "sample": "hello-world"}


def test_public_config_exposes_view_policy(client: TestClient) -> None:
    body = client.get("/api/v1/system/config").json()
    assert body["views"]["popular_max_limit"] == 50
    assert "database_url" not in str(body)


def test_db_health_reports_failure(client: TestClient) -> None:
    failure = OperationalError("SELECT", {}, Exception("unable to open database file"))
    with patch(
        "pageviews.api.v1.endpoints.system.ViewsRepository.sample_slug",
        side_effect=failure,
    ):
        response = client.get("/api/v1/health/db")

    assert response.status_code == 500
    body = response.json()
    assert body["ok"] is False
    assert "unable to open database file" in body["error"]
