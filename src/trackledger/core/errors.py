from __future__ import annotations


class TrackLedgerError(RuntimeError):
    """Base error for ledger operations. `kind` is the stable name reported to callers."""

    kind = "error"


class Forbidden(TrackLedgerError):
    """Raised when the access policy denies an operation."""

    kind = "forbidden"


class NotFound(TrackLedgerError):
    kind = "not_found"


class TaskNotFound(NotFound):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class SubtaskNotFound(NotFound):
    def __init__(self, task_id: str, subtask_id: str) -> None:
        super().__init__(f"subtask not found: {subtask_id} (task {task_id})")
        self.task_id = task_id
        self.subtask_id = subtask_id


class UserNotFound(NotFound):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"user not found: {user_id}")
        self.user_id = user_id


class InvalidPayload(TrackLedgerError):
    """Malformed reconciliation input or mutation body."""

    kind = "invalid_payload"


class Conflict(TrackLedgerError):
    """A policy invariant would be violated, or the stored version moved under the caller."""

    kind = "conflict"


class StoreUnavailable(TrackLedgerError):
    """Raised when the backing medium cannot be read or written, including lock timeouts."""

    kind = "store_unavailable"


class StoreCorrupt(TrackLedgerError):
    """Raised when stored content does not parse into the expected shape."""

    kind = "store_corrupt"
