from __future__ import annotations

import json
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Generic, Iterator, TypeVar

from pydantic import BaseModel, ValidationError

from trackledger.core.errors import StoreCorrupt, StoreUnavailable

ModelT = TypeVar("ModelT", bound=BaseModel)

# One in-process lock per collection file, shared by every store instance.
_THREAD_LOCKS: dict[Path, threading.Lock] = {}
_THREAD_LOCKS_GUARD = threading.Lock()


def _thread_lock_for(path: Path) -> threading.Lock:
    with _THREAD_LOCKS_GUARD:
        lock = _THREAD_LOCKS.get(path)
        if lock is None:
            lock = threading.Lock()
            _THREAD_LOCKS[path] = lock
        return lock


class CollectionSnapshot(Generic[ModelT]):
    def __init__(self, records: list[ModelT], version: int, extras: dict[str, Any] | None = None) -> None:
        self.records = records
        self.version = version
        self.extras = extras or {}


class CollectionFile(Generic[ModelT]):
    """A single JSON document `{"version": n, "records": [...]}` holding one collection.

    Older layouts (a bare array, or an object keyed by the collection name) are read
    as version 0 and rewritten in the current layout on the next write.
    """

    def __init__(
        self,
        path: Path,
        model: type[ModelT],
        legacy_keys: tuple[str, ...] = (),
        lock_timeout_s: float | None = None,
    ) -> None:
        self.path = path
        self.model = model
        self.legacy_keys = legacy_keys
        self.lock_path = path.with_name(f"{path.name}.lock")
        self.lock_timeout_s = (
            lock_timeout_s
            if lock_timeout_s is not None
            else float(os.getenv("TRACKLEDGER_STORE_LOCK_TIMEOUT_S", "2.0"))
        )
        self.lock_stale_s = float(os.getenv("TRACKLEDGER_STORE_LOCK_STALE_S", "30"))
        self.lock_mode = os.getenv("TRACKLEDGER_STORE_LOCK_MODE", "file").strip().casefold()

    def read_raw(self) -> tuple[list[Any], int, dict[str, Any]]:
        """Stored rows, version and extra top-level keys, before record validation."""
        if not self.path.exists():
            return [], 0, {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreUnavailable(f"cannot read {self.path.name}: {exc}") from exc
        if not raw.strip():
            return [], 0, {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StoreCorrupt(f"{self.path.name}: invalid JSON ({exc.msg} at line {exc.lineno})") from exc
        return self._unwrap(payload)

    def read(self) -> CollectionSnapshot[ModelT]:
        rows, version, extras = self.read_raw()
        records: list[ModelT] = []
        for index, row in enumerate(rows):
            try:
                records.append(self.model.model_validate(row))
            except ValidationError as exc:
                first = exc.errors()[0]
                location = ".".join(str(part) for part in first.get("loc", ()))
                raise StoreCorrupt(f"{self.path.name}: record {index} invalid at {location}: {first.get('msg')}") from exc
        return CollectionSnapshot(records, version, extras)

    def _unwrap(self, payload: Any) -> tuple[list[Any], int, dict[str, Any]]:
        if isinstance(payload, list):
            return payload, 0, {}
        if not isinstance(payload, dict):
            raise StoreCorrupt(f"{self.path.name}: expected an object or array, got {type(payload).__name__}")

        if "records" in payload:
            rows = payload["records"]
            version = payload.get("version", 0)
            if not isinstance(version, int) or isinstance(version, bool) or version < 0:
                raise StoreCorrupt(f"{self.path.name}: version must be a non-negative integer")
            extras = {key: value for key, value in payload.items() if key not in {"records", "version"}}
        else:
            legacy = next((key for key in self.legacy_keys if key in payload), None)
            if legacy is None:
                raise StoreCorrupt(f"{self.path.name}: no records found")
            rows = payload[legacy]
            version = 0
            extras = {key: value for key, value in payload.items() if key != legacy}

        if not isinstance(rows, list):
            raise StoreCorrupt(f"{self.path.name}: records must be an array")
        return rows, version, extras

    def write(self, records: list[ModelT], version: int, extras: dict[str, Any] | None = None) -> None:
        document: dict[str, Any] = dict(extras or {})
        document["version"] = version
        document["records"] = [record.model_dump(mode="json", by_alias=True) for record in records]
        tmp_path: Path | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with NamedTemporaryFile("w", encoding="utf-8", dir=self.path.parent, suffix=".tmp", delete=False) as tmp:
                tmp_path = Path(tmp.name)
                json.dump(document, tmp, ensure_ascii=False, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            tmp_path.replace(self.path)
        except OSError as exc:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise StoreUnavailable(f"cannot write {self.path.name}: {exc}") from exc

    @contextmanager
    def lock(self) -> Iterator[None]:
        thread_lock = _thread_lock_for(self.path.resolve())
        if not thread_lock.acquire(timeout=self.lock_timeout_s):
            raise StoreUnavailable(f"timed out waiting for {self.path.name} lock")
        try:
            with self._file_lock():
                yield
        finally:
            thread_lock.release()

    @contextmanager
    def _file_lock(self) -> Iterator[None]:
        if self.lock_mode != "file":
            yield
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.lock_timeout_s
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.close(fd)
                break
            except FileExistsError:
                self._clear_stale_lock()
                if time.monotonic() >= deadline:
                    raise StoreUnavailable(f"timed out waiting for {self.lock_path.name}") from None
                time.sleep(0.01)
            except OSError as exc:
                raise StoreUnavailable(f"cannot lock {self.path.name}: {exc}") from exc

        try:
            yield
        finally:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass

    def _clear_stale_lock(self) -> None:
        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self.lock_stale_s:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass
