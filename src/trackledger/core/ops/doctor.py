from __future__ import annotations

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from trackledger.core.errors import StoreCorrupt
from trackledger.core.logging import log_event
from trackledger.core.store import TASK_COLLECTIONS, CollectionFile, RecordStore
from trackledger.core.tasks.progress import is_consistent, recompute

logger = logging.getLogger("trackledger.ops")


class DoctorFileReport(BaseModel):
    name: str
    path: str
    exists: bool
    size_bytes: int
    version: int | None = None
    record_count: int | None = None
    valid_count: int | None = None
    invalid_count: int | None = None
    duplicate_ids: list[str] = Field(default_factory=list)
    inconsistent_progress: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)


class DoctorSummary(BaseModel):
    total_files: int
    missing: int
    invalid_records: int
    duplicate_ids: int
    inconsistent_progress: int
    total_bytes: int


class DoctorReport(BaseModel):
    ok: bool
    state_dir: str
    ts_iso: str
    files: list[DoctorFileReport]
    summary: DoctorSummary


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _backup_path(path: Path) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return path.with_name(f"{path.name}.bak.{stamp}")


def _validate_rows(handle: CollectionFile, rows: list[Any], report: DoctorFileReport) -> list[Any]:
    valid: list[Any] = []
    for index, row in enumerate(rows):
        try:
            valid.append(handle.model.model_validate(row))
        except ValidationError as exc:
            report.invalid_count = (report.invalid_count or 0) + 1
            if len(report.notes) < 3:
                report.notes.append(f"record {index}: ValidationError {exc.errors()[0].get('loc')}")
    return valid


def _dedupe(records: list[Any], report: DoctorFileReport) -> list[Any]:
    seen: set[str] = set()
    kept: list[Any] = []
    for record in records:
        if record.id in seen:
            if record.id not in report.duplicate_ids:
                report.duplicate_ids.append(record.id)
            continue
        seen.add(record.id)
        kept.append(record)
    return kept


def _inspect(name: str, handle: CollectionFile) -> tuple[DoctorFileReport, list[Any] | None, int, dict[str, Any]]:
    path = handle.path
    report = DoctorFileReport(
        name=name,
        path=str(path),
        exists=path.exists(),
        size_bytes=path.stat().st_size if path.exists() else 0,
    )
    if not report.exists:
        report.notes.append("file missing (empty collection)")
        return report, [], 0, {}

    try:
        rows, version, extras = handle.read_raw()
    except StoreCorrupt as exc:
        report.invalid_count = 1
        report.notes.append(str(exc))
        return report, None, 0, {}

    report.version = version
    report.record_count = len(rows)
    report.invalid_count = 0
    if version == 0 and rows:
        report.notes.append("legacy layout")

    records = _dedupe(_validate_rows(handle, rows, report), report)
    report.valid_count = len(records)
    if name in TASK_COLLECTIONS:
        report.inconsistent_progress = [task.id for task in records if not is_consistent(task)]
    return report, records, version, extras


def _needs_repair(report: DoctorFileReport) -> bool:
    return bool(
        report.invalid_count
        or report.duplicate_ids
        or report.inconsistent_progress
        or "legacy layout" in report.notes
    )


def _repair(name: str, handle: CollectionFile) -> DoctorFileReport:
    with handle.lock():
        report, records, version, extras = _inspect(name, handle)
        if records is None:
            report.notes.append("not repairable: file is not valid JSON")
            return report
        if not _needs_repair(report):
            return report
        if name in TASK_COLLECTIONS:
            records = [recompute(task) for task in records]
        backup = _backup_path(handle.path)
        shutil.copy2(handle.path, backup)
        handle.write(records, version + 1, extras)
        log_event(logger, "doctor_repaired", collection=name, backup=str(backup), records=len(records))

    repaired, _, _, _ = _inspect(name, handle)
    repaired.notes.append(f"file rewritten by doctor (backup {backup.name})")
    return repaired


def _healthy(report: DoctorFileReport) -> bool:
    return not (report.invalid_count or report.duplicate_ids or report.inconsistent_progress)


def run_doctor(state_dir: str | Path | None = None, repair: bool = False) -> DoctorReport:
    """Check every collection file under the state dir; with `repair` rewrite the fixable ones.

    A repair drops records that fail validation, keeps the first of any duplicated
    id, recomputes the progress triple of every task and rewrites the file in the
    current layout, after copying the original to `<name>.bak.<stamp>`.
    """
    store = RecordStore(state_dir=Path(state_dir).expanduser() if state_dir is not None else None)

    reports: list[DoctorFileReport] = []
    for name, handle in store.files().items():
        if repair:
            report = _repair(name, handle)
        else:
            report, _, _, _ = _inspect(name, handle)
        reports.append(report)

    result = DoctorReport(
        ok=all(_healthy(report) for report in reports),
        state_dir=str(store.state_dir),
        ts_iso=_now_iso(),
        files=reports,
        summary=DoctorSummary(
            total_files=len(reports),
            missing=sum(1 for report in reports if not report.exists),
            invalid_records=sum(report.invalid_count or 0 for report in reports),
            duplicate_ids=sum(len(report.duplicate_ids) for report in reports),
            inconsistent_progress=sum(len(report.inconsistent_progress) for report in reports),
            total_bytes=sum(report.size_bytes for report in reports),
        ),
    )
    log_event(logger, "doctor_run", ok=result.ok, repair=repair, invalid=result.summary.invalid_records)
    return result
