from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from trackledger.core.security.principal import Principal
from trackledger.core.tasks.schemas import LedgerModel, Task, TaskFilters
from trackledger.core.tasks.service import TaskLedger

from .auth import current_principal
from .deps import get_task_ledger
from .responses import ok

router = APIRouter()


class AssignmentRequest(LedgerModel):
    date: Any = None
    subtask_ids: Any = None
    notes: str | None = None


class SubtasksRequest(LedgerModel):
    subtasks: Any = None


def _summary(task: Task) -> dict[str, Any]:
    record = task.to_record()
    record.pop("subtasks", None)
    record["subtaskCount"] = len(task.subtasks)
    return record


@router.get("")
def list_tt_tasks(
    filters: TaskFilters = Depends(),
    include_subtasks: bool = Query(default=False, alias="includeSubtasks"),
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    tasks = ledger.list_tasks(principal, "ttTasks", filters)
    if include_subtasks:
        return ok(tasks)
    return ok([_summary(task) for task in tasks])


@router.post("")
def create_tt_task(
    body: Any = Body(default=None),
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.create_task(principal, "ttTasks", body))


@router.get("/{task_id}")
def get_tt_task(
    task_id: str,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.get_task(principal, "ttTasks", task_id))


@router.put("/{task_id}")
def update_tt_task(
    task_id: str,
    body: Any = Body(default=None),
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.update_task(principal, "ttTasks", task_id, body))


@router.delete("/{task_id}")
def delete_tt_task(
    task_id: str,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    deleted = ledger.delete_task(principal, "ttTasks", task_id)
    return ok({"id": deleted.id})


@router.post("/{task_id}/subtasks")
def add_subtasks(
    task_id: str,
    body: SubtasksRequest,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.add_subtasks(principal, task_id, body.subtasks))


@router.put("/{task_id}/subtasks/{subtask_id}")
def update_subtask(
    task_id: str,
    subtask_id: str,
    body: Any = Body(default=None),
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    result = ledger.update_subtask(principal, task_id, subtask_id, body)
    return ok(result.subtask, taskProgress=result.task_progress)


@router.delete("/{task_id}/subtasks/{subtask_id}")
def delete_subtask(
    task_id: str,
    subtask_id: str,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    result = ledger.delete_subtask(principal, task_id, subtask_id)
    return ok({"id": subtask_id}, taskProgress=result.task_progress)


@router.post("/{task_id}/assignments")
def assign_subtasks(
    task_id: str,
    body: AssignmentRequest,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.assign_subtasks(principal, task_id, body.date, body.subtask_ids, body.notes))
