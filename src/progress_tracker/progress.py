"""Progress aggregation over a project's task set."""

from collections.abc import Sequence
from datetime import datetime
import math

from pydantic import BaseModel, ConfigDict

from .models import Task, TaskStatus

SECONDS_PER_DAY = 24 * 60 * 60


class TaskBreakdown(BaseModel):
    """Task counts per status for one project."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    blocked: int = 0
    progress: int = 0


def compute_progress(tasks: Sequence[Task]) -> int:
    """Percentage of completed tasks, 0-100, rounded half up.

    Recomputed from the full snapshot every time. An empty task set is 0%.
    1 of 3 completed gives 33, 2 of 3 gives 67, 1 of 8 gives 13.
    """
    total = len(tasks)
    if total == 0:
        return 0
    completed = sum(1 for task in tasks if task.status == TaskStatus.COMPLETED)
    # round(100 * completed / total) with halves going up, in integers
    return (200 * completed + total) // (2 * total)


def summarize_tasks(tasks: Sequence[Task]) -> TaskBreakdown:
    counts = {status: 0 for status in TaskStatus}
    for task in tasks:
        counts[task.status] += 1
    return TaskBreakdown(
        total=len(tasks),
        pending=counts[TaskStatus.PENDING],
        in_progress=counts[TaskStatus.IN_PROGRESS],
        completed=counts[TaskStatus.COMPLETED],
        blocked=counts[TaskStatus.BLOCKED],
        progress=compute_progress(tasks),
    )


def days_until_deadline(deadline: datetime | None, now: datetime) -> int | None:
    """Whole days left until ``deadline``, rounded up; negative once overdue."""
    if deadline is None:
        return None
    if deadline.tzinfo is None and now.tzinfo is not None:
        deadline = deadline.replace(tzinfo=now.tzinfo)
    elif now.tzinfo is None and deadline.tzinfo is not None:
        now = now.replace(tzinfo=deadline.tzinfo)
    return math.ceil((deadline - now).total_seconds() / SECONDS_PER_DAY)
