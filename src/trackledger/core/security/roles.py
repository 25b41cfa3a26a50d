from __future__ import annotations

import os

ROLES: tuple[str, ...] = ("admin", "data_manager", "viewer")

TASK_MANAGER_ROLES: frozenset[str] = frozenset({"admin", "data_manager"})

USER_MANAGER_ROLES: frozenset[str] = frozenset({"admin"})

DEFAULT_LOCATIONS: tuple[str, ...] = ("EU", "USA", "IL")


def known_locations() -> tuple[str, ...]:
    raw = os.getenv("TRACKLEDGER_LOCATIONS", "")
    configured = tuple(item.strip() for item in raw.split(",") if item.strip())
    return configured or DEFAULT_LOCATIONS
