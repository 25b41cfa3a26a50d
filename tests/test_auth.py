from __future__ import annotations

from fastapi.testclient import TestClient

from trackledger.apps.api.main import app

VIEWER = {"X-User-Id": "u-view", "X-User-Role": "viewer", "X-User-Location": "EU"}


def test_requests_without_gateway_token_are_rejected(monkeypatch) -> None:
    monkeypatch.setenv("TRACKLEDGER_AUTH_MODE", "token")
    monkeypatch.setenv("TRACKLEDGER_AUTH_TOKEN", "secret-token")

    with TestClient(app) as client:
        response = client.get("/tasks/tt", headers=VIEWER)
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"


def test_requests_with_gateway_token_succeed(monkeypatch) -> None:
    monkeypatch.setenv("TRACKLEDGER_AUTH_MODE", "token")
    monkeypatch.setenv("TRACKLEDGER_AUTH_TOKEN", "secret-token")

    with TestClient(app) as client:
        response = client.get("/tasks/tt", headers={**VIEWER, "X-TRACKLEDGER-TOKEN": "secret-token"})
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": []}


def test_wrong_token_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("TRACKLEDGER_AUTH_MODE", "token")
    monkeypatch.setenv("TRACKLEDGER_AUTH_TOKEN", "secret-token")

    with TestClient(app) as client:
        response = client.get("/tasks/tt", headers={**VIEWER, "X-TRACKLEDGER-TOKEN": "guess"})
        assert response.status_code == 401


def test_healthz_always_unauthenticated(monkeypatch) -> None:
    monkeypatch.setenv("TRACKLEDGER_AUTH_MODE", "token")
    monkeypatch.delenv("TRACKLEDGER_AUTH_TOKEN", raising=False)

    with TestClient(app) as client:
        assert client.get("/healthz").json() == {"ok": True}
        assert client.get("/health").json() == {"status": "ok"}


def test_unknown_role_header_is_unauthorized() -> None:
    with TestClient(app) as client:
        response = client.get("/tasks/tt", headers={**VIEWER, "X-User-Role": "superuser"})
        assert response.status_code == 401


def test_permissions_header_defaults_only_when_absent(seed_task) -> None:
    seed_task("T1", location="EU")

    with TestClient(app) as client:
        listed = client.get("/tasks/tt", headers=VIEWER)
        assert [task["id"] for task in listed.json()["data"]] == ["T1"]

        empty = client.get("/tasks/tt", headers={**VIEWER, "X-User-Permissions": ""})
        assert empty.status_code == 200
        assert empty.json()["data"] == []
