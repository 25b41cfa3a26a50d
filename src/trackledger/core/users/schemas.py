from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from trackledger.core.security.principal import Role
from trackledger.core.tasks.schemas import LedgerModel, now_iso

# Stored alongside a user by the credential service; never returned by the directory.
PRIVATE_FIELDS: frozenset[str] = frozenset({"hashedPassword", "hashed_password", "password"})


class User(LedgerModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    username: str
    email: str = ""
    role: Role
    location: str
    permissions: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def public_record(self) -> dict[str, Any]:
        record = self.to_record()
        for key in PRIVATE_FIELDS:
            record.pop(key, None)
        return record


class UserCreate(LedgerModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    username: str = Field(min_length=1)
    email: str = ""
    role: Role = "viewer"
    location: str
    permissions: list[str] | None = None


class UserUpdate(LedgerModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    username: str | None = Field(default=None, min_length=1)
    email: str | None = None
    role: Role | None = None
    location: str | None = None
    permissions: list[str] | None = None
