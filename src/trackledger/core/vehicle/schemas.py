from __future__ import annotations

from typing import Any, Iterator, NamedTuple

from pydantic import BaseModel, Field, RootModel, StrictInt, StrictStr, ValidationError, model_validator

from trackledger.core.errors import InvalidPayload
from trackledger.core.tasks.schemas import LedgerModel


class SessionData(BaseModel):
    subtasks: list[StrictStr]
    drops: StrictInt = Field(ge=0)
    cores: StrictInt = Field(ge=0)


class Session(RootModel[dict[str, SessionData]]):
    """A session object maps exactly one session name to its data."""

    @model_validator(mode="after")
    def single_session_name(self) -> "Session":
        if len(self.root) != 1:
            raise ValueError(f"session object must have exactly one key, got {len(self.root)}")
        return self

    @property
    def name(self) -> str:
        return next(iter(self.root))

    @property
    def data(self) -> SessionData:
        return self.root[self.name]


class Disk(BaseModel):
    id: StrictStr = Field(min_length=1)
    sessions: list[Session]


class SessionRef(NamedTuple):
    disk_id: str
    session_name: str
    data: SessionData


class VehicleDataStats(LedgerModel):
    total_disks: int
    total_sessions: int
    total_subtasks: int
    total_drops: int
    total_cores: int


class VehicleData(BaseModel):
    disks: list[Disk]

    def iter_sessions(self) -> Iterator[SessionRef]:
        for disk in self.disks:
            for session in disk.sessions:
                yield SessionRef(disk.id, session.name, session.data)

    def stats(self) -> VehicleDataStats:
        refs = list(self.iter_sessions())
        return VehicleDataStats(
            total_disks=len(self.disks),
            total_sessions=len(refs),
            total_subtasks=sum(len(ref.data.subtasks) for ref in refs),
            total_drops=sum(ref.data.drops for ref in refs),
            total_cores=sum(ref.data.cores for ref in refs),
        )


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"{location}: {first.get('msg')}"


def parse_vehicle_data(raw: Any) -> VehicleData:
    if isinstance(raw, VehicleData):
        return raw
    if not isinstance(raw, dict):
        raise InvalidPayload("vehicle data must be an object with a 'disks' array")
    try:
        return VehicleData.model_validate(raw)
    except ValidationError as exc:
        raise InvalidPayload(f"invalid vehicle data: {_describe(exc)}") from exc
