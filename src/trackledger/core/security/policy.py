from __future__ import annotations

from typing import Iterable, Protocol, TypeVar

from trackledger.core.errors import Forbidden
from trackledger.core.security.principal import Principal
from trackledger.core.security.roles import TASK_MANAGER_ROLES, USER_MANAGER_ROLES


class Located(Protocol):
    location: str


RecordT = TypeVar("RecordT", bound=Located)


def can_access_location(principal: Principal, location: str) -> bool:
    # Admins see every location only because their permissions list them all.
    return location in principal.permissions


def can_manage_tasks(principal: Principal) -> bool:
    return principal.role in TASK_MANAGER_ROLES


def can_manage_users(principal: Principal) -> bool:
    return principal.role in USER_MANAGER_ROLES


def can_read(principal: Principal, record_location: str) -> bool:
    return can_access_location(principal, record_location)


def can_write(principal: Principal, record_location: str) -> bool:
    return can_manage_tasks(principal) and can_access_location(principal, record_location)


def require_read(principal: Principal, record_location: str) -> None:
    if not can_read(principal, record_location):
        raise Forbidden(f"{principal.display_name} cannot access location {record_location}")


def require_manage_tasks(principal: Principal) -> None:
    if not can_manage_tasks(principal):
        raise Forbidden(f"role {principal.role} cannot manage tasks")


def require_write(principal: Principal, record_location: str) -> None:
    require_manage_tasks(principal)
    if not can_access_location(principal, record_location):
        raise Forbidden(f"{principal.display_name} cannot modify tasks in {record_location}")


def require_manage_users(principal: Principal) -> None:
    if not can_manage_users(principal):
        raise Forbidden("admin access required")


def readable(principal: Principal, records: Iterable[RecordT]) -> list[RecordT]:
    return [record for record in records if can_read(principal, record.location)]
