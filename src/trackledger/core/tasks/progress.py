from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from .schemas import Task


def percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    # Python's round() is banker's rounding; progress rounds half up.
    ratio = Decimal(100 * completed) / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def recompute(task: Task) -> Task:
    """Derive the completed/total/progress triple from subtask state.

    Every path that adds, edits, removes or reconciles a subtask calls this before
    the task is saved; the three fields are never set any other way.
    """
    completed = sum(1 for subtask in task.subtasks if subtask.is_complete)
    total = len(task.subtasks)
    task.completed_subtasks = completed
    task.total_subtasks = total
    task.progress = percentage(completed, total)
    return task


def is_consistent(task: Task) -> bool:
    expected = recompute(task.model_copy(deep=True))
    return expected.progress_snapshot() == task.progress_snapshot()