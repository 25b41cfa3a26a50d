from __future__ import annotations

import pytest

from trackledger.core.errors import Forbidden
from trackledger.core.security import policy
from trackledger.core.security.principal import Principal
from trackledger.core.tasks.schemas import Task


def test_permissions_default_to_home_location() -> None:
    principal = Principal(id="u1", username="ana", role="viewer", location="IL")
    assert principal.permissions == frozenset({"IL"})


def test_explicitly_empty_permissions_are_kept() -> None:
    principal = Principal(id="u1", username="ana", role="data_manager", location="EU", permissions=[])
    assert principal.permissions == frozenset()
    assert not policy.can_access_location(principal, "EU")


def test_null_permissions_default_to_home_location() -> None:
    principal = Principal(id="u1", username="ana", role="viewer", location="USA", permissions=None)
    assert principal.permissions == frozenset({"USA"})


def test_explicit_permissions_are_kept() -> None:
    principal = Principal(id="u1", username="ana", role="admin", location="EU", permissions=["EU", "USA"])
    assert policy.can_access_location(principal, "USA")
    assert not policy.can_access_location(principal, "IL")


def test_admin_without_location_permission_cannot_write(admin: Principal) -> None:
    limited = admin.model_copy(update={"permissions": frozenset({"EU"})})
    assert policy.can_manage_tasks(limited)
    assert not policy.can_write(limited, "USA")
    with pytest.raises(Forbidden):
        policy.require_write(limited, "USA")


def test_viewer_can_read_but_not_write(eu_viewer: Principal) -> None:
    assert policy.can_read(eu_viewer, "EU")
    assert not policy.can_write(eu_viewer, "EU")
    with pytest.raises(Forbidden):
        policy.require_write(eu_viewer, "EU")
    with pytest.raises(Forbidden):
        policy.require_manage_tasks(eu_viewer)


def test_only_admin_manages_users(admin: Principal, eu_manager: Principal) -> None:
    assert policy.can_manage_users(admin)
    assert not policy.can_manage_users(eu_manager)
    with pytest.raises(Forbidden):
        policy.require_manage_users(eu_manager)


def test_eu_principal_cannot_write_usa_task(eu_manager: Principal) -> None:
    assert not policy.can_write(eu_manager, "USA")
    with pytest.raises(Forbidden):
        policy.require_write(eu_manager, "USA")


def test_readable_filters_out_other_locations(eu_manager: Principal) -> None:
    tasks = [
        Task(id="a", title="a", category="TT", location="USA"),
        Task(id="b", title="b", category="TT", location="EU"),
        Task(id="c", title="c", category="TT", location="USA"),
    ]
    assert [task.id for task in policy.readable(eu_manager, tasks)] == ["b"]
    assert policy.readable(eu_manager, [tasks[0], tasks[2]]) == []
