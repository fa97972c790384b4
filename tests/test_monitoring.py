import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from conftest import SUPER_ADMIN
from familytrips import __version__
from familytrips.database import get_db
from familytrips.main import create_app


def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert "timestamp" in body
    assert body["uptime"] >= 0


def test_detailed_health_reports_cache_entries(client, clock):
    client.get("/api/families", headers=SUPER_ADMIN)
    clock.advance(3)

    body = client.get("/health/detailed").json()

    assert body["status"] == "ok"
    assert body["checks"]["database"] == {"status": "ok"}
    cache_report = body["checks"]["cache"]
    assert cache_report["status"] == "ok"
    assert cache_report["size"] == 1
    assert cache_report["misses"] == 1
    assert cache_report["entries"] == [
        {"key": "GET:/api/families:admin-1|SUPER_ADMIN:{}", "age_seconds": 3.0, "ttl_seconds": 300}
    ]


def test_detailed_health_with_cache_disabled(session_factory):
    app = create_app(cache_enabled=False, init_database=False)
    app.dependency_overrides[get_db] = lambda: session_factory()

    with TestClient(app) as test_client:
        body = test_client.get("/health/detailed").json()

    assert app.state.response_cache is None
    assert body["checks"]["cache"] == {"status": "disabled"}


def test_ready_and_live(client):
    assert client.get("/ready").json() == {"ready": True}
    assert client.get("/live").json() == {"alive": True}


class UnreachableSession:
    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_ready_returns_503_when_database_is_down(client):
    client.app.dependency_overrides[get_db] = lambda: UnreachableSession()

    resp = client.get("/ready")
    detailed = client.get("/health/detailed").json()

    assert resp.status_code == 503
    assert resp.json()["ready"] is False
    assert detailed["status"] == "degraded"
    assert detailed["checks"]["database"]["status"] == "error"


def test_version(client):
    body = client.get("/version").json()

    assert body["version"] == __version__
    assert body["name"] == "Family Trips"


def test_explicit_zero_sweep_interval_is_rejected(cache):
    with pytest.raises(ValueError):
        create_app(cache=cache, cache_enabled=True, sweep_interval=0, init_database=False)
