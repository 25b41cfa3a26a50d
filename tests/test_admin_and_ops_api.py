from __future__ import annotations

from fastapi.testclient import TestClient

from trackledger.apps.api import deps
from trackledger.apps.api.main import app

ADMIN = {
    "X-User-Id": "u-admin",
    "X-User-Name": "admin",
    "X-User-Role": "admin",
    "X-User-Location": "EU",
    "X-User-Permissions": "EU,USA,IL",
}
MANAGER = {"X-User-Id": "u-eu", "X-User-Role": "data_manager", "X-User-Location": "EU"}


def test_user_admin_flow() -> None:
    with TestClient(app) as client:
        created = client.post(
            "/admin/users",
            json={"username": "boss", "role": "admin", "location": "USA"},
            headers=ADMIN,
        )
        assert created.status_code == 200
        user_id = created.json()["data"]["id"]

        listed = client.get("/admin/users", headers=ADMIN).json()["data"]
        assert [item["username"] for item in listed] == ["boss"]

        last_admin = client.put(f"/admin/users/{user_id}", json={"role": "viewer"}, headers=ADMIN)
        assert last_admin.status_code == 409
        assert last_admin.json()["error"] == "conflict"

        assert client.delete(f"/admin/users/{user_id}", headers=ADMIN).status_code == 409
        assert client.get("/admin/users", headers=MANAGER).status_code == 403
        assert client.get("/admin/users/nobody", headers=ADMIN).status_code == 404


def test_doctor_endpoint_is_admin_only() -> None:
    with TestClient(app) as client:
        assert client.get("/ops/doctor", headers=MANAGER).status_code == 403
        response = client.get("/ops/doctor", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["ok"] is True


def test_integrity_job_scheduled_when_enabled(monkeypatch) -> None:
    monkeypatch.setenv("TRACKLEDGER_INTEGRITY_CHECK", "on")
    monkeypatch.setenv("TRACKLEDGER_INTEGRITY_EVERY_MINUTES", "15")

    with TestClient(app):
        assert "integrity-check" in deps.get_scheduler_service().job_ids()


def test_correlation_id_is_echoed() -> None:
    with TestClient(app) as client:
        response = client.get("/healthz", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"
        assert response.json() == {"ok": True}
