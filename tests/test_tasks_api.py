from __future__ import annotations

from fastapi.testclient import TestClient

from trackledger.apps.api.main import app

EU_MANAGER = {
    "X-User-Id": "u-eu",
    "X-User-Name": "eu.manager",
    "X-User-Role": "data_manager",
    "X-User-Location": "EU",
}
USA_MANAGER = {
    "X-User-Id": "u-usa",
    "X-User-Name": "usa.manager",
    "X-User-Role": "data_manager",
    "X-User-Location": "USA",
}
EU_VIEWER = {"X-User-Id": "u-view", "X-User-Role": "viewer", "X-User-Location": "EU"}


def _create_tt(client: TestClient) -> dict:
    response = client.post(
        "/tasks/tt",
        json={
            "title": "Night sweep",
            "location": "EU",
            "subtasks": [
                {"id": "s100", "jiraSubtaskNumber": "100", "category": "LKA"},
                {"id": "s101", "jiraSubtaskNumber": "101", "category": "ACC"},
            ],
        },
        headers=EU_MANAGER,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    return body["data"]


def _vehicle_data(*numbers: str) -> dict:
    return {"disks": [{"id": "D1", "sessions": [{"S1": {"subtasks": list(numbers), "drops": 2, "cores": 1}}]}]}


def test_vehicle_data_flow() -> None:
    with TestClient(app) as client:
        task = _create_tt(client)
        assert task["progress"] == 0
        assert task["totalSubtasks"] == 2

        processed = client.post(
            "/tasks/process-vehicle-data",
            json={"taskId": task["id"], "vehicleData": _vehicle_data("100")},
            headers=EU_MANAGER,
        )
        assert processed.status_code == 200
        data = processed.json()["data"]
        assert data["processedSubtasks"] == 1
        assert data["taskProgress"] == {"completedSubtasks": 1, "totalSubtasks": 2, "progress": 50}

        fetched = client.get(f"/tasks/tt/{task['id']}", headers=EU_VIEWER).json()["data"]
        assert fetched["subtasks"][0]["isExecuted"] is True
        assert fetched["subtasks"][0]["vehicleDataMetadata"]["diskId"] == "D1"
        assert len(fetched["vehicleDataScans"]) == 1

        searched = client.post("/tasks/search-subtasks", json={"subtaskNumbers": ["100"]}, headers=EU_VIEWER)
        assert searched.status_code == 200
        assert searched.json()["data"]["totalMatches"] == 1


def test_error_envelopes() -> None:
    with TestClient(app) as client:
        task = _create_tt(client)

        forbidden = client.post(
            "/tasks/process-vehicle-data",
            json={"taskId": task["id"], "vehicleData": _vehicle_data("100")},
            headers=USA_MANAGER,
        )
        assert forbidden.status_code == 403
        assert forbidden.json()["success"] is False
        assert forbidden.json()["error"] == "forbidden"

        invalid = client.post(
            "/tasks/process-vehicle-data",
            json={"taskId": task["id"], "vehicleData": {"disks": "nope"}},
            headers=EU_MANAGER,
        )
        assert invalid.status_code == 400
        assert invalid.json()["error"] == "invalid_payload"

        missing_task_id = client.post(
            "/tasks/process-vehicle-data",
            json={"vehicleData": _vehicle_data("100")},
            headers=EU_MANAGER,
        )
        assert missing_task_id.status_code == 400

        not_found = client.delete(f"/tasks/tt/{task['id']}/subtasks/nope", headers=EU_MANAGER)
        assert not_found.status_code == 404
        assert not_found.json()["error"] == "not_found"

        empty_search = client.post("/tasks/search-subtasks", json={"subtaskNumbers": []}, headers=EU_VIEWER)
        assert empty_search.status_code == 400


def test_missing_principal_headers_is_unauthorized() -> None:
    with TestClient(app) as client:
        response = client.get("/tasks/tt")
        assert response.status_code == 401


def test_tt_list_is_read_filtered_and_summarised() -> None:
    with TestClient(app) as client:
        task = _create_tt(client)

        listed = client.get("/tasks/tt", headers=EU_VIEWER).json()["data"]
        assert [item["id"] for item in listed] == [task["id"]]
        assert "subtasks" not in listed[0]
        assert listed[0]["subtaskCount"] == 2

        full = client.get("/tasks/tt", params={"includeSubtasks": "true"}, headers=EU_VIEWER).json()["data"]
        assert len(full[0]["subtasks"]) == 2

        assert client.get("/tasks/tt", headers=USA_MANAGER).json()["data"] == []
        assert client.get("/tasks/tt", params={"lighting": "night"}, headers=EU_VIEWER).json()["data"] == []

        counts = client.get("/tasks/counts", headers=EU_VIEWER).json()["data"]
        assert counts == {"DC": 0, "TT": 1}


def test_subtask_routes() -> None:
    with TestClient(app) as client:
        task = _create_tt(client)
        base = f"/tasks/tt/{task['id']}"

        updated = client.put(f"{base}/subtasks/s101", json={"status": "completed"}, headers=EU_MANAGER)
        assert updated.status_code == 200
        assert updated.json()["data"]["status"] == "completed"
        assert updated.json()["taskProgress"]["progress"] == 50

        added = client.post(f"{base}/subtasks", json={"subtasks": [{"jiraSubtaskNumber": "102"}]}, headers=EU_MANAGER)
        assert added.json()["data"]["taskProgress"]["totalSubtasks"] == 3

        assigned = client.post(
            f"{base}/assignments",
            json={"date": "2024-06-01", "subtaskIds": ["s100"]},
            headers=EU_MANAGER,
        )
        assert assigned.status_code == 200
        assert assigned.json()["data"]["assignedSubtasks"] == 1

        deleted = client.delete(f"{base}/subtasks/s101", headers=EU_MANAGER)
        assert deleted.status_code == 200
        assert deleted.json()["taskProgress"] == {"completedSubtasks": 0, "totalSubtasks": 2, "progress": 0}


def test_dc_task_crud() -> None:
    with TestClient(app) as client:
        created = client.post("/tasks", json={"title": "Collect rain", "location": "EU"}, headers=EU_MANAGER)
        assert created.status_code == 200
        task_id = created.json()["data"]["id"]

        updated = client.put(f"/tasks/{task_id}", json={"priority": "high"}, headers=EU_MANAGER)
        assert updated.json()["data"]["priority"] == "high"
        assert updated.json()["data"]["changeLog"][-1]["fieldChanged"] == "priority"

        assert client.get(f"/tasks/{task_id}", headers=EU_VIEWER).status_code == 200
        assert client.get(f"/tasks/{task_id}", headers=USA_MANAGER).status_code == 403
        assert client.delete(f"/tasks/{task_id}", headers=EU_MANAGER).status_code == 200
        assert client.get(f"/tasks/{task_id}", headers=EU_VIEWER).status_code == 404


def test_vehicle_data_stats_route() -> None:
    with TestClient(app) as client:
        response = client.post("/tasks/vehicle-data/stats", json=_vehicle_data("1", "2"), headers=EU_VIEWER)
        assert response.status_code == 200
        assert response.json()["data"]["totalSubtasks"] == 2
