from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["admin", "data_manager", "viewer"]


class Principal(BaseModel):
    """Claims describing who is acting, as supplied by the authentication gateway.

    The ledger never validates credentials; it trusts these claims as given.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    role: Role
    location: str
    permissions: frozenset[str] = Field(default_factory=frozenset)

    @model_validator(mode="before")
    @classmethod
    def default_permissions_to_home_location(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("permissions") is None and data.get("location"):
            return {**data, "permissions": [data["location"]]}
        return data

    @property
    def display_name(self) -> str:
        return self.username or self.id
