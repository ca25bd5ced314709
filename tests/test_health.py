import pytest
from fastapi.testclient import TestClient

from zariya.core import health as health_module
from zariya.main import app

client = TestClient(app)


def _stub(monkeypatch, name: str, result: dict) -> None:
    async def check():
        return result

    monkeypatch.setattr(health_module, name, check)


def test_live_needs_no_database() -> None:
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload["status"] == "ok"
    assert "timestamp" in payload


def test_ready_when_database_and_schema_answer(monkeypatch) -> None:
    _stub(monkeypatch, "_check_db", {"status": "ok"})
    _stub(monkeypatch, "_check_schema", {"status": "ok", "counters": 3})

    payload = client.get("/api/v1/health/ready").json()["data"]

    assert payload["status"] == "ok"
    assert payload["ready"] is True
    assert payload["checks"]["schema"]["counters"] == 3
    assert payload["reporting_timezone"] == "Asia/Kolkata"


def test_unmigrated_schema_is_degraded(monkeypatch) -> None:
    _stub(monkeypatch, "_check_db", {"status": "ok"})
    _stub(monkeypatch, "_check_schema", {"status": "error", "error": "no such table: sequence_counters"})

    payload = client.get("/api/v1/health/ready").json()["data"]

    assert payload["status"] == "degraded"
    assert payload["ready"] is False


def test_unreachable_database_skips_schema_check(monkeypatch) -> None:
    _stub(monkeypatch, "_check_db", {"status": "error", "error": "unreachable"})

    async def must_not_run():
        pytest.fail("schema check ran without a database")

    monkeypatch.setattr(health_module, "_check_schema", must_not_run)

    response = client.get("/api/v1/health")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload["status"] == "degraded"
    assert payload["checks"]["database"]["status"] == "error"
    assert "schema" not in payload["checks"]
