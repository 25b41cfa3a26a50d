from __future__ import annotations

import logging
from datetime import date as date_type
from typing import Any, Iterable

from pydantic import ValidationError

from trackledger.core.errors import InvalidPayload, SubtaskNotFound, TaskNotFound
from trackledger.core.logging import log_context, log_event
from trackledger.core.security import policy
from trackledger.core.security.principal import Principal
from trackledger.core.security.roles import known_locations
from trackledger.core.store import TASK_COLLECTIONS, RecordStore
from trackledger.core.vehicle import reconcile
from trackledger.core.vehicle.schemas import VehicleData, VehicleDataStats, parse_vehicle_data

from .changelog import append_change, field_change_description
from .progress import recompute
from .schemas import (
    COLLECTION_CATEGORY,
    Collection,
    DateAssignment,
    LedgerModel,
    Subtask,
    SubtaskMatch,
    SubtaskSearchResult,
    Task,
    TaskFilters,
    TaskMatches,
    TaskProgress,
    new_id,
    now_iso,
)

# A patch may echo these back unchanged but never change them.
_FIXED_FIELDS = frozenset(
    {
        "id",
        "category",
        "createdAt",
        "createdBy",
        "subtasks",
        "completedSubtasks",
        "totalSubtasks",
        "progress",
        "changeLog",
        "vehicleDataScans",
        "dateAssignments",
    }
)
# Stamped by the ledger on every write.
_STAMP_FIELDS = frozenset({"updatedAt", "lastEditedBy", "version"})
_SUBTASK_LEDGER_FIELDS = frozenset({"id", "createdAt", "updatedAt", "lastEditedBy", "version"})
_SEARCH_EXTRAS = ("targetCar", "executionLocation", "csvFileName", "labels")


class SubtaskUpdateResult(LedgerModel):
    task_id: str
    subtask: Subtask
    task_progress: TaskProgress


class TaskProgressResult(LedgerModel):
    task_id: str
    task_progress: TaskProgress


class AssignmentResult(LedgerModel):
    task_id: str
    assignment: DateAssignment
    assigned_subtasks: int
    task_progress: TaskProgress


def _find_task(tasks: list[Task], task_id: str) -> tuple[int, Task]:
    for index, task in enumerate(tasks):
        if task.id == task_id:
            return index, task
    raise TaskNotFound(task_id)


def _require_dict(body: Any, what: str) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise InvalidPayload(f"{what} must be a JSON object")
    return body


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return f"{location}: {first.get('msg')}"


def _aliased(model: type[LedgerModel], patch: dict[str, Any]) -> dict[str, Any]:
    """Rewrite snake_case field names in a patch to the stored camelCase names."""
    out: dict[str, Any] = {}
    for key, value in patch.items():
        field = model.model_fields.get(key)
        out[field.alias or key if field is not None else key] = value
    return out


def _require_known_location(location: Any) -> str:
    if not isinstance(location, str) or not location:
        raise InvalidPayload("location is required")
    if location not in known_locations():
        raise InvalidPayload(f"unknown location: {location}")
    return location


def _build_subtask(raw: Any, actor: str, now: str) -> Subtask:
    body = _aliased(Subtask, dict(_require_dict(raw, "subtask")))
    body.setdefault("id", new_id("st"))
    body.setdefault("createdAt", now)
    body["updatedAt"] = now
    body["lastEditedBy"] = actor
    body["version"] = 1
    try:
        return Subtask.model_validate(body)
    except ValidationError as exc:
        raise InvalidPayload(f"invalid subtask: {_validation_message(exc)}") from exc


def _matches_filters(task: Task, active: dict[str, str]) -> bool:
    for key in ("location", "status", "priority", "type"):
        if key in active and getattr(task, key) != active[key]:
            return False
    for key in ("lighting", "scenario"):
        if key in active and not any(getattr(subtask, key) == active[key] for subtask in task.subtasks):
            return False
    if "category" in active:
        wanted = active["category"]
        if task.category != wanted and not any(subtask.category == wanted for subtask in task.subtasks):
            return False
    if "search" in active:
        return active["search"].strip().casefold() in _haystack(task)
    return True


def _haystack(task: Task) -> str:
    parts: list[str] = [task.title, task.description or "", task.type, task.location, task.priority]
    extras = task.model_extra or {}
    for key in _SEARCH_EXTRAS:
        value = extras.get(key)
        if isinstance(value, list):
            parts.extend(str(item) for item in value)
        elif value is not None:
            parts.append(str(value))
    return " ".join(parts).casefold()


class TaskLedger:
    """Access-checked operations over the task collections.

    Every mutation loads the whole collection inside a store transaction, applies
    one logical change, recomputes progress and saves once. Any error raised before
    the save leaves the stored collection as it was.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self.logger = logging.getLogger("trackledger.tasks")

    # -- reads -----------------------------------------------------------------

    def list_tasks(
        self,
        principal: Principal,
        collection: Collection,
        filters: TaskFilters | None = None,
    ) -> list[Task]:
        tasks = policy.readable(principal, self.store.load(collection))
        active = (filters or TaskFilters()).active()
        if not active:
            return tasks
        return [task for task in tasks if _matches_filters(task, active)]

    def get_task(self, principal: Principal, collection: Collection, task_id: str) -> Task:
        _, task = _find_task(self.store.load(collection), task_id)
        policy.require_read(principal, task.location)
        return task

    def count_tasks(self, principal: Principal) -> dict[str, int]:
        return {
            COLLECTION_CATEGORY[collection]: len(policy.readable(principal, self.store.load(collection)))
            for collection in TASK_COLLECTIONS
        }

    def search_subtasks(self, principal: Principal, numbers: Any) -> SubtaskSearchResult:
        if not isinstance(numbers, list) or not numbers or not all(isinstance(item, str) for item in numbers):
            raise InvalidPayload("subtaskNumbers must be a non-empty list of strings")
        wanted = set(numbers)

        groups: list[TaskMatches] = []
        for collection in ("ttTasks", "tasks"):
            for task in policy.readable(principal, self.store.load(collection)):
                matches = [
                    SubtaskMatch(
                        subtask_id=subtask.id,
                        jira_number=subtask.jira_subtask_number,
                        category=subtask.category,
                        scenario=subtask.scenario,
                        lighting=subtask.lighting,
                        status=subtask.status,
                        is_executed=subtask.is_executed,
                        execution_status=subtask.execution_status,
                    )
                    for subtask in task.subtasks
                    if subtask.jira_subtask_number in wanted
                ]
                if matches:
                    groups.append(
                        TaskMatches(
                            task_id=task.id,
                            task_title=task.title,
                            task_location=task.location,
                            matching_subtasks=matches,
                            total_matches=len(matches),
                        )
                    )

        log_event(self.logger, "subtasks_searched", searched=len(wanted), tasks_matched=len(groups))
        return SubtaskSearchResult(
            searched_subtasks=list(numbers),
            matching_tasks=groups,
            total_matches=sum(group.total_matches for group in groups),
        )

    # -- task mutations ----------------------------------------------------------

    def create_task(self, principal: Principal, collection: Collection, body: Any) -> Task:
        policy.require_manage_tasks(principal)
        payload = _aliased(Task, dict(_require_dict(body, "task")))
        location = _require_known_location(payload.get("location"))
        policy.require_write(principal, location)

        raw_subtasks = payload.pop("subtasks", None) or []
        if not isinstance(raw_subtasks, list):
            raise InvalidPayload("subtasks must be a list")
        if collection == "ttTasks" and not raw_subtasks:
            raise InvalidPayload("test-track tasks need at least one subtask")

        now = now_iso()
        for key in _FIXED_FIELDS | _STAMP_FIELDS:
            payload.pop(key, None)
        subtasks = [_build_subtask(raw, principal.username, now) for raw in raw_subtasks]
        if len({subtask.id for subtask in subtasks}) != len(subtasks):
            raise InvalidPayload("subtask ids must be unique within a task")
        try:
            task = Task.model_validate(
                {
                    **payload,
                    "id": new_id("task"),
                    "category": COLLECTION_CATEGORY[collection],
                    "createdBy": principal.username,
                    "createdAt": now,
                    "updatedAt": now,
                    "lastEditedBy": principal.username,
                }
            )
        except ValidationError as exc:
            raise InvalidPayload(f"invalid task: {_validation_message(exc)}") from exc
        task.subtasks = subtasks
        recompute(task)

        description = f"Task created with {len(subtasks)} subtasks"
        source_file = (task.model_extra or {}).get("csvFileName")
        if source_file:
            description += f" from file: {source_file}"
        append_change(task, principal, "task_created", description, timestamp=now)

        with log_context(task_id=task.id, user_id=principal.id), self.store.transaction(collection) as tasks:
            tasks.append(task)
        log_event(self.logger, "task_created", task_id=task.id, collection=collection, subtasks=len(subtasks))
        return task

    def update_task(self, principal: Principal, collection: Collection, task_id: str, patch: Any) -> Task:
        policy.require_manage_tasks(principal)
        changes = _aliased(Task, dict(_require_dict(patch, "task update")))

        with log_context(task_id=task_id, user_id=principal.id), self.store.transaction(collection) as tasks:
            index, task = _find_task(tasks, task_id)
            policy.require_write(principal, task.location)
            current = task.to_record()

            for key in _FIXED_FIELDS & changes.keys():
                if changes[key] != current.get(key):
                    raise InvalidPayload(f"{key} cannot be changed through a task update")
            for key in _FIXED_FIELDS | _STAMP_FIELDS:
                changes.pop(key, None)

            changed = {key: value for key, value in changes.items() if current.get(key) != value}
            if "location" in changed:
                policy.require_write(principal, _require_known_location(changed["location"]))
            if not changed:
                return task

            now = now_iso()
            try:
                updated = Task.model_validate({**current, **changed, "updatedAt": now})
            except ValidationError as exc:
                raise InvalidPayload(f"invalid task update: {_validation_message(exc)}") from exc
            updated.last_edited_by = principal.username
            updated.version = task.version + 1
            for key, value in changed.items():
                append_change(
                    updated,
                    principal,
                    "status_changed" if key == "status" else "task_updated",
                    field_change_description(key, current.get(key), value),
                    field_changed=key,
                    old_value=current.get(key),
                    new_value=value,
                    timestamp=now,
                )
            tasks[index] = updated

        log_event(self.logger, "task_updated", task_id=task_id, changed=sorted(changed))
        return updated

    def delete_task(self, principal: Principal, collection: Collection, task_id: str) -> Task:
        policy.require_manage_tasks(principal)
        with log_context(task_id=task_id, user_id=principal.id), self.store.transaction(collection) as tasks:
            index, task = _find_task(tasks, task_id)
            policy.require_write(principal, task.location)
            del tasks[index]
        log_event(self.logger, "task_deleted", task_id=task_id, collection=collection)
        return task

    # -- subtask mutations -------------------------------------------------------

    def update_subtask(
        self,
        principal: Principal,
        task_id: str,
        subtask_id: str,
        patch: Any,
        collection: Collection = "ttTasks",
    ) -> SubtaskUpdateResult:
        policy.require_manage_tasks(principal)
        changes = _aliased(Subtask, dict(_require_dict(patch, "subtask update")))
        for key in _SUBTASK_LEDGER_FIELDS:
            changes.pop(key, None)

        with log_context(task_id=task_id, user_id=principal.id), self.store.transaction(collection) as tasks:
            _, task = _find_task(tasks, task_id)
            policy.require_write(principal, task.location)
            position = next((i for i, subtask in enumerate(task.subtasks) if subtask.id == subtask_id), None)
            if position is None:
                raise SubtaskNotFound(task_id, subtask_id)

            existing = task.subtasks[position]
            now = now_iso()
            try:
                updated = Subtask.model_validate(
                    {
                        **existing.to_record(),
                        **changes,
                        "id": existing.id,
                        "updatedAt": now,
                        "lastEditedBy": principal.username,
                        "version": existing.version + 1,
                    }
                )
            except ValidationError as exc:
                raise InvalidPayload(f"invalid subtask update: {_validation_message(exc)}") from exc

            task.subtasks[position] = updated
            recompute(task)
            task.touch(principal.username, now)
            progress = task.progress_snapshot()

        log_event(self.logger, "subtask_updated", task_id=task_id, subtask_id=subtask_id, progress=progress.progress)
        return SubtaskUpdateResult(task_id=task_id, subtask=updated, task_progress=progress)

    def delete_subtask(
        self,
        principal: Principal,
        task_id: str,
        subtask_id: str,
        collection: Collection = "ttTasks",
    ) -> TaskProgressResult:
        policy.require_manage_tasks(principal)
        with log_context(task_id=task_id, user_id=principal.id), self.store.transaction(collection) as tasks:
            _, task = _find_task(tasks, task_id)
            policy.require_write(principal, task.location)
            removed = task.find_subtask(subtask_id)
            if removed is None:
                raise SubtaskNotFound(task_id, subtask_id)

            now = now_iso()
            task.subtasks = [subtask for subtask in task.subtasks if subtask.id != subtask_id]
            recompute(task)
            task.touch(principal.username, now)
            append_change(
                task,
                principal,
                "subtask_deleted",
                f"Deleted subtask {removed.jira_subtask_number or removed.id}",
                target_id=subtask_id,
                target_type="subtask",
                timestamp=now,
            )
            progress = task.progress_snapshot()

        log_event(self.logger, "subtask_deleted", task_id=task_id, subtask_id=subtask_id, progress=progress.progress)
        return TaskProgressResult(task_id=task_id, task_progress=progress)

    def add_subtasks(
        self,
        principal: Principal,
        task_id: str,
        subtasks: Any,
        collection: Collection = "ttTasks",
    ) -> TaskProgressResult:
        policy.require_manage_tasks(principal)
        if not isinstance(subtasks, list) or not subtasks:
            raise InvalidPayload("subtasks must be a non-empty list")

        with log_context(task_id=task_id, user_id=principal.id), self.store.transaction(collection) as tasks:
            _, task = _find_task(tasks, task_id)
            policy.require_write(principal, task.location)
            now = now_iso()
            added = [_build_subtask(raw, principal.username, now) for raw in subtasks]
            ids = [subtask.id for subtask in task.subtasks] + [subtask.id for subtask in added]
            if len(set(ids)) != len(ids):
                raise InvalidPayload("subtask ids must be unique within a task")

            task.subtasks.extend(added)
            recompute(task)
            task.touch(principal.username, now)
            append_change(task, principal, "subtask_added", f"Added {len(added)} subtasks", timestamp=now)
            progress = task.progress_snapshot()

        log_event(self.logger, "subtasks_added", task_id=task_id, added=len(added))
        return TaskProgressResult(task_id=task_id, task_progress=progress)

    def assign_subtasks(
        self,
        principal: Principal,
        task_id: str,
        date: Any,
        subtask_ids: Any,
        notes: str | None = None,
        collection: Collection = "ttTasks",
    ) -> AssignmentResult:
        policy.require_manage_tasks(principal)
        if not isinstance(date, str):
            raise InvalidPayload("date is required")
        try:
            date_type.fromisoformat(date)
        except ValueError as exc:
            raise InvalidPayload(f"date must be YYYY-MM-DD: {date}") from exc
        if not isinstance(subtask_ids, list) or not subtask_ids or not all(isinstance(i, str) for i in subtask_ids):
            raise InvalidPayload("subtaskIds must be a non-empty list of strings")

        with log_context(task_id=task_id, user_id=principal.id), self.store.transaction(collection) as tasks:
            _, task = _find_task(tasks, task_id)
            policy.require_write(principal, task.location)
            by_id = {subtask.id: subtask for subtask in task.subtasks}
            missing = [subtask_id for subtask_id in subtask_ids if subtask_id not in by_id]
            if missing:
                raise SubtaskNotFound(task_id, missing[0])

            now = now_iso()
            assignment = self._merge_assignment(task, date, subtask_ids, principal.username, now, notes)
            for subtask_id in dict.fromkeys(subtask_ids):
                subtask = by_id[subtask_id]
                subtask.is_assigned = True
                subtask.assigned_date = date
                if subtask.execution_status != "executed":
                    subtask.execution_status = "assigned"
                subtask.updated_at = now
                subtask.last_edited_by = principal.username

            recompute(task)
            task.touch(principal.username, now)
            append_change(
                task,
                principal,
                "subtasks_assigned",
                f"{len(set(subtask_ids))} subtasks assigned to {date}",
                timestamp=now,
            )
            progress = task.progress_snapshot()

        log_event(self.logger, "subtasks_assigned", task_id=task_id, date=date, assigned=len(set(subtask_ids)))
        return AssignmentResult(
            task_id=task_id,
            assignment=assignment,
            assigned_subtasks=len(set(subtask_ids)),
            task_progress=progress,
        )

    @staticmethod
    def _merge_assignment(
        task: Task,
        date: str,
        subtask_ids: Iterable[str],
        actor: str,
        now: str,
        notes: str | None,
    ) -> DateAssignment:
        for position, existing in enumerate(task.date_assignments):
            if existing.date == date:
                merged = existing.model_copy(
                    update={
                        "subtask_ids": list(dict.fromkeys([*existing.subtask_ids, *subtask_ids])),
                        "assigned_by": actor,
                        "assigned_at": now,
                        "notes": notes or existing.notes,
                    }
                )
                task.date_assignments[position] = merged
                return merged
        created = DateAssignment(
            id=new_id("assign"),
            date=date,
            subtask_ids=list(dict.fromkeys(subtask_ids)),
            assigned_by=actor,
            assigned_at=now,
            notes=notes,
        )
        task.date_assignments.append(created)
        return created

    # -- vehicle data --------------------------------------------------------------

    def process_vehicle_data(
        self,
        principal: Principal,
        task_id: str,
        raw_payload: Any,
        collection: Collection = "ttTasks",
    ) -> reconcile.ReconciliationResult:
        policy.require_manage_tasks(principal)
        payload = parse_vehicle_data(raw_payload)

        with log_context(task_id=task_id, user_id=principal.id), self.store.transaction(collection) as tasks:
            _, task = _find_task(tasks, task_id)
            policy.require_write(principal, task.location)
            result = reconcile.apply_vehicle_data(
                task,
                payload,
                principal,
                raw_payload=raw_payload if isinstance(raw_payload, dict) else None,
            )
        return result

    def preview_vehicle_data(
        self,
        principal: Principal,
        task_id: str,
        raw_payload: Any,
        collection: Collection = "ttTasks",
    ) -> reconcile.ReconciliationResult:
        payload = parse_vehicle_data(raw_payload)
        task = self.get_task(principal, collection, task_id)
        return reconcile.preview(task, payload)

    @staticmethod
    def vehicle_data_stats(raw_payload: Any) -> VehicleDataStats:
        payload: VehicleData = parse_vehicle_data(raw_payload)
        return payload.stats()
