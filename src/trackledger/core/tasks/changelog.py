from __future__ import annotations

from typing import Any

from trackledger.core.security.principal import Principal

from .schemas import ChangeEntry, ChangeType, Task, new_id, now_iso


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def append_change(
    task: Task,
    actor: Principal,
    change_type: ChangeType,
    description: str,
    *,
    target_id: str | None = None,
    target_type: str = "task",
    field_changed: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
    timestamp: str | None = None,
) -> ChangeEntry:
    entry = ChangeEntry(
        id=new_id("change"),
        timestamp=timestamp or now_iso(),
        user_id=actor.id or actor.username,
        user_name=actor.username,
        change_type=change_type,
        target_id=target_id or task.id,
        target_type=target_type,
        field_changed=field_changed,
        old_value=_stringify(old_value) if field_changed else None,
        new_value=_stringify(new_value) if field_changed else None,
        description=description,
    )
    task.change_log.append(entry)
    return entry


def field_change_description(field: str, old_value: Any, new_value: Any) -> str:
    return f'Updated {field} from "{_stringify(old_value)}" to "{_stringify(new_value)}"'
