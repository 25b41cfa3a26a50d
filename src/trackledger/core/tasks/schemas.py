from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Collection = Literal["tasks", "ttTasks"]
TaskCategory = Literal["DC", "TT"]
TaskStatus = Literal["active", "paused", "completed"]
Priority = Literal["high", "medium", "low"]
SubtaskStatus = Literal["pending", "in_progress", "completed", "failed"]
ExecutionStatus = Literal["not_assigned", "assigned", "in_execution", "executed", "failed_execution"]
ChangeType = Literal[
    "task_created",
    "task_updated",
    "subtask_updated",
    "subtask_added",
    "subtask_deleted",
    "subtasks_assigned",
    "status_changed",
]

COLLECTION_CATEGORY: dict[str, str] = {"tasks": "DC", "ttTasks": "TT"}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


class LedgerModel(BaseModel):
    """Python attributes are snake_case; stored and wire records are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class VehicleDataMetadata(LedgerModel):
    disk_id: str
    session_name: str
    drops: int
    cores: int
    processed_at: str
    processed_by: str


class Subtask(LedgerModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    jira_subtask_number: str | None = None
    category: str = ""
    scenario: str = ""
    lighting: str = ""
    status: SubtaskStatus = "pending"
    is_executed: bool = False
    execution_status: ExecutionStatus = "not_assigned"
    execution_date: str | None = None
    execution_notes: str | None = None
    vehicle_data_metadata: VehicleDataMetadata | None = None
    is_assigned: bool = False
    assigned_date: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_edited_by: str | None = None
    version: int = 1

    @property
    def is_complete(self) -> bool:
        return self.is_executed or self.status == "completed"


class ScanRecord(LedgerModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    scanned_at: str
    scanned_by: str
    vehicle_data: dict[str, Any]
    processed_subtasks: int
    subtask_numbers: list[str] = Field(default_factory=list)


class ChangeEntry(LedgerModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    timestamp: str
    user_id: str
    user_name: str
    change_type: ChangeType
    target_id: str
    target_type: Literal["task", "subtask"]
    field_changed: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    description: str


class DateAssignment(LedgerModel):
    id: str
    date: str
    subtask_ids: list[str] = Field(default_factory=list)
    assigned_by: str
    assigned_at: str
    notes: str | None = None
    is_active: bool = True


class TaskProgress(LedgerModel):
    completed_subtasks: int
    total_subtasks: int
    progress: int


class Task(LedgerModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    title: str
    category: TaskCategory
    location: str
    status: TaskStatus = "active"
    priority: Priority = "medium"
    type: str = ""
    description: str | None = None
    created_by: str = ""
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
    last_edited_by: str | None = None
    version: int = 1
    subtasks: list[Subtask] = Field(default_factory=list)
    completed_subtasks: int = 0
    total_subtasks: int = 0
    progress: int = Field(default=0, ge=0, le=100)
    vehicle_data_scans: list[ScanRecord] = Field(default_factory=list)
    change_log: list[ChangeEntry] = Field(default_factory=list)
    date_assignments: list[DateAssignment] = Field(default_factory=list)

    def progress_snapshot(self) -> TaskProgress:
        return TaskProgress(
            completed_subtasks=self.completed_subtasks,
            total_subtasks=self.total_subtasks,
            progress=self.progress,
        )

    def find_subtask(self, subtask_id: str) -> Subtask | None:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def touch(self, actor: str, now: str) -> None:
        self.updated_at = now
        self.last_edited_by = actor
        self.version += 1


class TaskFilters(BaseModel):
    location: str | None = None
    status: str | None = None
    priority: str | None = None
    type: str | None = None
    search: str | None = None
    category: str | None = None
    lighting: str | None = None
    scenario: str | None = None

    def active(self) -> dict[str, str]:
        return {
            key: value
            for key, value in self.model_dump().items()
            if value is not None and value.strip() and value != "all"
        }


class SubtaskMatch(LedgerModel):
    subtask_id: str
    jira_number: str
    category: str
    scenario: str
    lighting: str
    status: str
    is_executed: bool
    execution_status: str


class TaskMatches(LedgerModel):
    task_id: str
    task_title: str
    task_location: str
    matching_subtasks: list[SubtaskMatch] = Field(default_factory=list)
    total_matches: int = 0


class SubtaskSearchResult(LedgerModel):
    searched_subtasks: list[str] = Field(default_factory=list)
    matching_tasks: list[TaskMatches] = Field(default_factory=list)
    total_matches: int = 0
