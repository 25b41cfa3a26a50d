from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from trackledger.core.errors import Conflict
from trackledger.core.logging import log_context, log_event
from trackledger.core.tasks.schemas import Collection, Task
from trackledger.core.users.schemas import User

from .collection import CollectionFile

TASK_COLLECTIONS: tuple[str, ...] = ("tasks", "ttTasks")

_TASK_FILES: dict[str, tuple[str, tuple[str, ...]]] = {
    "tasks": ("tasks.json", ("tasks",)),
    "ttTasks": ("tt_tasks.json", ("ttTasks", "tasks")),
}


def _dumped(records: list) -> list[dict]:
    return [record.model_dump(mode="json", by_alias=True) for record in records]


def default_state_dir() -> Path:
    configured = os.getenv("TRACKLEDGER_STATE_DIR")
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".trackledger"


class RecordStore:
    """Whole-collection load/save over the task collections and the user directory.

    Every mutation is one read-modify-write cycle. `transaction()` holds the
    collection's write lock for the whole cycle and writes only if the records
    changed; `save()` on its own detects a collection that moved since it was
    loaded when given `expected_version`.
    """

    def __init__(self, state_dir: Path | None = None, lock_timeout_s: float | None = None) -> None:
        self.state_dir = Path(state_dir) if state_dir is not None else default_state_dir()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("trackledger.store")
        self._tasks: dict[str, CollectionFile[Task]] = {
            name: CollectionFile(self.state_dir / filename, Task, legacy_keys, lock_timeout_s)
            for name, (filename, legacy_keys) in _TASK_FILES.items()
        }
        self.users_file: CollectionFile[User] = CollectionFile(
            self.state_dir / "users.json", User, ("users",), lock_timeout_s
        )

    def _file(self, collection: str) -> CollectionFile[Task]:
        try:
            return self._tasks[collection]
        except KeyError:
            raise ValueError(f"unknown collection: {collection}") from None

    def files(self) -> dict[str, CollectionFile]:
        return {**self._tasks, "users": self.users_file}

    def path(self, collection: str) -> Path:
        return self._file(collection).path

    def load(self, collection: Collection) -> list[Task]:
        return self._file(collection).read().records

    def version(self, collection: Collection) -> int:
        return self._file(collection).read().version

    def save(self, collection: Collection, tasks: list[Task], expected_version: int | None = None) -> int:
        handle = self._file(collection)
        with handle.lock():
            current = handle.read()
            if expected_version is not None and expected_version != current.version:
                raise Conflict(
                    f"{collection} changed since it was loaded "
                    f"(expected version {expected_version}, found {current.version})"
                )
            return self._write(collection, handle, tasks, current.version + 1, current.extras)

    @contextmanager
    def transaction(self, collection: Collection) -> Iterator[list[Task]]:
        handle = self._file(collection)
        with log_context(collection=collection), handle.lock():
            snapshot = handle.read()
            tasks = snapshot.records
            before = _dumped(tasks)
            yield tasks
            if _dumped(tasks) != before:
                self._write(collection, handle, tasks, snapshot.version + 1, snapshot.extras)

    def _write(self, collection: str, handle: CollectionFile, records: list, version: int, extras: dict) -> int:
        handle.write(records, version, extras)
        log_event(self.logger, "store_saved", collection=collection, version=version, records=len(records))
        return version

    def load_users(self) -> list[User]:
        return self.users_file.read().records

    @contextmanager
    def users_transaction(self) -> Iterator[list[User]]:
        with log_context(collection="users"), self.users_file.lock():
            snapshot = self.users_file.read()
            users = snapshot.records
            before = _dumped(users)
            yield users
            if _dumped(users) != before:
                self._write("users", self.users_file, users, snapshot.version + 1, snapshot.extras)
