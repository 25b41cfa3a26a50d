from __future__ import annotations

import json

from trackledger.core.ops.doctor import run_doctor
from trackledger.core.store import RecordStore


def _task_row(task_id: str, **fields) -> dict:
    row = {"id": task_id, "title": task_id, "category": "TT", "location": "EU"}
    row.update(fields)
    return row


def test_doctor_reports_ok_on_empty_state(tmp_path) -> None:
    report = run_doctor(state_dir=tmp_path)

    assert report.ok is True
    assert report.summary.total_files == 3
    assert report.summary.missing == 3
    assert {item.name for item in report.files} == {"tasks", "ttTasks", "users"}


def test_doctor_detects_problems_without_touching_files(tmp_path) -> None:
    path = tmp_path / "tt_tasks.json"
    document = {
        "version": 4,
        "records": [
            _task_row("t1", subtasks=[{"id": "s1", "isExecuted": True}], progress=0, totalSubtasks=1),
            _task_row("t1"),
            {"id": "broken"},
        ],
    }
    path.write_text(json.dumps(document), encoding="utf-8")
    before = path.read_bytes()

    report = run_doctor(state_dir=tmp_path)

    tt = next(item for item in report.files if item.name == "ttTasks")
    assert report.ok is False
    assert tt.version == 4
    assert tt.record_count == 3
    assert tt.invalid_count == 1
    assert tt.duplicate_ids == ["t1"]
    assert tt.inconsistent_progress == ["t1"]
    assert path.read_bytes() == before


def test_doctor_repairs_with_backup(tmp_path) -> None:
    path = tmp_path / "tt_tasks.json"
    document = {
        "version": 4,
        "records": [
            _task_row("t1", subtasks=[{"id": "s1", "isExecuted": True}, {"id": "s2"}]),
            _task_row("t1"),
            {"id": "broken"},
        ],
    }
    path.write_text(json.dumps(document), encoding="utf-8")

    report = run_doctor(state_dir=tmp_path, repair=True)

    assert report.ok is True
    backups = list(tmp_path.glob("tt_tasks.json.bak.*"))
    assert len(backups) == 1
    assert json.loads(backups[0].read_text(encoding="utf-8")) == document

    tasks = RecordStore(state_dir=tmp_path).load("ttTasks")
    assert [task.id for task in tasks] == ["t1"]
    assert (tasks[0].completed_subtasks, tasks[0].total_subtasks, tasks[0].progress) == (1, 2, 50)
    assert RecordStore(state_dir=tmp_path).version("ttTasks") == 5


def test_doctor_rewrites_legacy_layout(tmp_path) -> None:
    (tmp_path / "tasks.json").write_text(json.dumps({"tasks": [_task_row("d1", category="DC")]}), encoding="utf-8")

    before = run_doctor(state_dir=tmp_path)
    assert "legacy layout" in next(item for item in before.files if item.name == "tasks").notes

    run_doctor(state_dir=tmp_path, repair=True)
    document = json.loads((tmp_path / "tasks.json").read_text(encoding="utf-8"))
    assert document["version"] == 1
    assert document["records"][0]["id"] == "d1"


def test_doctor_cannot_repair_invalid_json(tmp_path) -> None:
    path = tmp_path / "users.json"
    path.write_text("{oops", encoding="utf-8")

    report = run_doctor(state_dir=tmp_path, repair=True)

    users = next(item for item in report.files if item.name == "users")
    assert report.ok is False
    assert users.invalid_count == 1
    assert any("not repairable" in note for note in users.notes)
    assert path.read_text(encoding="utf-8") == "{oops"
