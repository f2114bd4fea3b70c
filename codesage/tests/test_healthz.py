from fastapi.testclient import TestClient

import codesage.api.health as health_api
from codesage.core.database import local_snapshots
from codesage.features.persistence.storage import MemoryStorage
from codesage.main import create_app
from codesage.tests.mocks import FakeLimiter


def _client() -> TestClient:
    return TestClient(create_app(limiter=FakeLimiter(), snapshot_storage=MemoryStorage()))


def test_healthz_always_ok():
    resp = _client().get("/healthz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_ok_with_schema(sqlite_db):
    resp = _client().get("/readyz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_reports_missing_tables(sqlite_db):
    local_snapshots.drop(health_api.get_engine())
    resp = _client().get("/readyz")
    assert resp.status_code == 503
    assert "local_snapshots" in resp.json()["detail"]


def test_readyz_handles_db_down(monkeypatch):
    monkeypatch.setattr(health_api, "check_connection", lambda: False)

    resp = _client().get("/readyz")
    body = resp.json()
    assert resp.status_code == 503
    assert body.get("status") == "error"
    assert "database" in body.get("detail", "")
