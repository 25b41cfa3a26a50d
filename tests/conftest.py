from __future__ import annotations

from typing import Any, Callable

import pytest

from trackledger.apps.api import deps
from trackledger.core.security.principal import Principal
from trackledger.core.store import RecordStore
from trackledger.core.tasks.progress import recompute
from trackledger.core.tasks.schemas import Collection, Subtask, Task
from trackledger.core.tasks.service import TaskLedger


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRACKLEDGER_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("TRACKLEDGER_TEST_MODE", "1")
    monkeypatch.setenv("TRACKLEDGER_LOG_TO_FILE", "off")
    monkeypatch.delenv("TRACKLEDGER_LOCATIONS", raising=False)
    monkeypatch.delenv("TRACKLEDGER_INTEGRITY_CHECK", raising=False)
    deps.reset_caches()


@pytest.fixture(autouse=True)
def disable_auth_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRACKLEDGER_AUTH_MODE", "off")
    monkeypatch.delenv("TRACKLEDGER_AUTH_TOKEN", raising=False)


@pytest.fixture
def store(tmp_path) -> RecordStore:
    return RecordStore(state_dir=tmp_path)


@pytest.fixture
def ledger(store: RecordStore) -> TaskLedger:
    return TaskLedger(store)


@pytest.fixture
def admin() -> Principal:
    return Principal(id="u-admin", username="admin", role="admin", location="EU", permissions=["EU", "USA", "IL"])


@pytest.fixture
def eu_manager() -> Principal:
    return Principal(id="u-eu", username="eu.manager", role="data_manager", location="EU")


@pytest.fixture
def usa_manager() -> Principal:
    return Principal(id="u-usa", username="usa.manager", role="data_manager", location="USA")


@pytest.fixture
def eu_viewer() -> Principal:
    return Principal(id="u-view", username="eu.viewer", role="viewer", location="EU")


@pytest.fixture
def seed_task(store: RecordStore) -> Callable[..., Task]:
    """Write a task with the given subtasks straight into the store, bypassing the ledger."""

    def _seed(
        task_id: str = "task-1",
        location: str = "EU",
        subtasks: list[dict[str, Any]] | None = None,
        collection: Collection = "ttTasks",
        **fields: Any,
    ) -> Task:
        task = Task(
            id=task_id,
            title=fields.pop("title", f"Task {task_id}"),
            category="TT" if collection == "ttTasks" else "DC",
            location=location,
            created_by="seed",
            subtasks=[Subtask.model_validate(item) for item in subtasks or []],
            **fields,
        )
        recompute(task)
        tasks = store.load(collection)
        tasks.append(task)
        store.save(collection, tasks)
        return task

    return _seed
