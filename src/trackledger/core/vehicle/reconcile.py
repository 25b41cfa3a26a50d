"""Reconciliation of scanned vehicle session data against a task's subtasks.

A payload lists, per disk and session, the external subtask numbers that were
driven. Each number is looked up against the task's `jiraSubtaskNumber` values and
every matching subtask is marked executed with the session as provenance. The
scan itself is appended to the task's history whether or not anything matched.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, NamedTuple

from pydantic import Field

from trackledger.core.logging import log_event
from trackledger.core.security.principal import Principal
from trackledger.core.tasks.changelog import append_change
from trackledger.core.tasks.progress import recompute
from trackledger.core.tasks.schemas import (
    LedgerModel,
    ScanRecord,
    Subtask,
    Task,
    TaskProgress,
    VehicleDataMetadata,
    new_id,
    now_iso,
)

from .schemas import VehicleData

logger = logging.getLogger("trackledger.reconcile")


class SessionContext(NamedTuple):
    disk_id: str
    session_name: str
    drops: int
    cores: int


class ProcessedItem(LedgerModel):
    subtask_id: str
    jira_number: str
    disk_id: str
    session_name: str
    drops: int
    cores: int
    already_executed: bool = False


class ReconciliationResult(LedgerModel):
    task_id: str
    processed_subtasks: int
    processed_items: list[ProcessedItem] = Field(default_factory=list)
    unmatched_numbers: list[str] = Field(default_factory=list)
    task_progress: TaskProgress
    scan_id: str | None = None


def build_session_index(payload: VehicleData) -> dict[str, SessionContext]:
    """Map every subtask number in the payload to the session that reported it.

    A number reported by more than one session resolves to the last one in
    disk/session order.
    """
    index: dict[str, SessionContext] = {}
    for ref in payload.iter_sessions():
        context = SessionContext(ref.disk_id, ref.session_name, ref.data.drops, ref.data.cores)
        for number in ref.data.subtasks:
            index[number] = context
    return index


def match_subtasks(task: Task, index: dict[str, SessionContext]) -> list[tuple[Subtask, SessionContext]]:
    # Duplicate jiraSubtaskNumber values inside one task all match.
    return [
        (subtask, index[subtask.jira_subtask_number])
        for subtask in task.subtasks
        if subtask.jira_subtask_number and subtask.jira_subtask_number in index
    ]


def _same_provenance(subtask: Subtask, context: SessionContext) -> bool:
    metadata = subtask.vehicle_data_metadata
    if metadata is None or not subtask.is_executed:
        return False
    if subtask.status != "completed" or subtask.execution_status != "executed":
        return False
    return (metadata.disk_id, metadata.session_name, metadata.drops, metadata.cores) == tuple(context)


def mark_executed(subtask: Subtask, context: SessionContext, actor: str, now: str) -> None:
    subtask.is_executed = True
    subtask.status = "completed"
    subtask.execution_status = "executed"
    subtask.execution_date = now
    subtask.execution_notes = (
        f"Processed from vehicle data scan - Disk: {context.disk_id}, Session: {context.session_name}"
    )
    subtask.vehicle_data_metadata = VehicleDataMetadata(
        disk_id=context.disk_id,
        session_name=context.session_name,
        drops=context.drops,
        cores=context.cores,
        processed_at=now,
        processed_by=actor,
    )
    subtask.updated_at = now
    subtask.last_edited_by = actor


def _item(subtask: Subtask, context: SessionContext, already_executed: bool) -> ProcessedItem:
    return ProcessedItem(
        subtask_id=subtask.id,
        jira_number=subtask.jira_subtask_number or "",
        disk_id=context.disk_id,
        session_name=context.session_name,
        drops=context.drops,
        cores=context.cores,
        already_executed=already_executed,
    )


def _unmatched(index: dict[str, SessionContext], task: Task) -> list[str]:
    known = {subtask.jira_subtask_number for subtask in task.subtasks if subtask.jira_subtask_number}
    return [number for number in index if number not in known]


def preview(task: Task, payload: VehicleData) -> ReconciliationResult:
    """Report what `apply_vehicle_data` would match, without touching the task."""
    index = build_session_index(payload)
    items = [_item(subtask, context, _same_provenance(subtask, context)) for subtask, context in match_subtasks(task, index)]
    return ReconciliationResult(
        task_id=task.id,
        processed_subtasks=len(items),
        processed_items=items,
        unmatched_numbers=_unmatched(index, task),
        task_progress=task.progress_snapshot(),
    )


def apply_vehicle_data(
    task: Task,
    payload: VehicleData,
    actor: Principal,
    raw_payload: dict[str, Any] | None = None,
    now: str | None = None,
) -> ReconciliationResult:
    """Mark matching subtasks executed and record the scan on the task.

    Mutates `task` in place. Subtasks already executed from the same disk and
    session, and still completed, keep their original execution stamp, so repeating
    a payload converges on the same subtask state while the scan and change
    histories still grow. A subtask whose status was edited since is marked again.
    """
    now = now or now_iso()
    index = build_session_index(payload)

    items: list[ProcessedItem] = []
    for subtask, context in match_subtasks(task, index):
        unchanged = _same_provenance(subtask, context)
        if not unchanged:
            mark_executed(subtask, context, actor.username, now)
        items.append(_item(subtask, context, unchanged))

    scan = ScanRecord(
        id=new_id("scan"),
        scanned_at=now,
        scanned_by=actor.username,
        vehicle_data=copy.deepcopy(raw_payload) if raw_payload is not None else payload.model_dump(),
        processed_subtasks=len(items),
        subtask_numbers=list(index),
    )
    task.vehicle_data_scans.append(scan)

    recompute(task)
    task.touch(actor.username, now)
    append_change(
        task,
        actor,
        "task_updated",
        f"Vehicle data processed: {len(items)} subtasks marked as completed from QR scan",
        timestamp=now,
    )

    unmatched = _unmatched(index, task)
    log_event(
        logger,
        "vehicle_data_applied",
        task_id=task.id,
        scan_id=scan.id,
        processed=len(items),
        unmatched=len(unmatched),
        progress=task.progress,
    )
    return ReconciliationResult(
        task_id=task.id,
        processed_subtasks=len(items),
        processed_items=items,
        unmatched_numbers=unmatched,
        task_progress=task.progress_snapshot(),
        scan_id=scan.id,
    )
