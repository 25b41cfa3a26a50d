from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from trackledger.core.errors import InvalidPayload
from trackledger.core.security.principal import Principal
from trackledger.core.tasks.schemas import LedgerModel, TaskFilters
from trackledger.core.tasks.service import TaskLedger

from .auth import current_principal
from .deps import get_task_ledger
from .responses import ok

router = APIRouter()


class VehicleDataRequest(LedgerModel):
    task_id: Any = None
    vehicle_data: Any = None


class SubtaskSearchRequest(LedgerModel):
    subtask_numbers: Any = None


def _task_id(body: VehicleDataRequest) -> str:
    if not isinstance(body.task_id, str) or not body.task_id:
        raise InvalidPayload("taskId is required")
    return body.task_id


@router.get("")
def list_tasks(
    filters: TaskFilters = Depends(),
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.list_tasks(principal, "tasks", filters))


@router.post("")
def create_task(
    body: Any = Body(default=None),
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.create_task(principal, "tasks", body))


@router.get("/counts")
def count_tasks(
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.count_tasks(principal))


@router.post("/process-vehicle-data")
def process_vehicle_data(
    body: VehicleDataRequest,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    result = ledger.process_vehicle_data(principal, _task_id(body), body.vehicle_data)
    return ok(result)


@router.post("/preview-vehicle-data")
def preview_vehicle_data(
    body: VehicleDataRequest,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.preview_vehicle_data(principal, _task_id(body), body.vehicle_data))


@router.post("/vehicle-data/stats")
def vehicle_data_stats(
    body: Any = Body(default=None),
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.vehicle_data_stats(body))


@router.post("/search-subtasks")
def search_subtasks(
    body: SubtaskSearchRequest,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.search_subtasks(principal, body.subtask_numbers))


@router.get("/{task_id}")
def get_task(
    task_id: str,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.get_task(principal, "tasks", task_id))


@router.put("/{task_id}")
def update_task(
    task_id: str,
    body: Any = Body(default=None),
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    return ok(ledger.update_task(principal, "tasks", task_id, body))


@router.delete("/{task_id}")
def delete_task(
    task_id: str,
    principal: Principal = Depends(current_principal),
    ledger: TaskLedger = Depends(get_task_ledger),
) -> dict:
    deleted = ledger.delete_task(principal, "tasks", task_id)
    return ok({"id": deleted.id})
