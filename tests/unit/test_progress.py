"""Tests for progress aggregation."""

from datetime import UTC, datetime, timedelta

import pytest

from progress_tracker.models import Task, TaskStatus
from progress_tracker.progress import compute_progress, days_until_deadline, summarize_tasks

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)


def make_tasks(completed: int, total: int, other: TaskStatus = TaskStatus.PENDING) -> list[Task]:
    return [
        Task(
            id=f"t{i}",
            project_id="p1",
            title=f"Task {i}",
            status=TaskStatus.COMPLETED if i < completed else other,
            created_at=NOW,
            updated_at=NOW,
        )
        for i in range(total)
    ]


class TestComputeProgress:
    def test_empty_task_set_is_zero(self):
        assert compute_progress([]) == 0

    @pytest.mark.parametrize(
        ("completed", "total", "expected"),
        [
            (1, 3, 33),
            (2, 3, 67),
            (1, 8, 13),  # 12.5 rounds half up
            (3, 8, 38),  # 37.5 rounds half up
            (1, 2, 50),
            (0, 5, 0),
            (5, 5, 100),
            (1, 200, 1),  # 0.5 rounds half up
        ],
    )
    def test_pinned_rounding(self, completed, total, expected):
        assert compute_progress(make_tasks(completed, total)) == expected

    def test_monotonic_in_completed_count(self):
        total = 7
        values = [compute_progress(make_tasks(done, total)) for done in range(total + 1)]
        assert values == sorted(values)
        assert values[0] == 0
        assert values[-1] == 100  # noqa: PLR2004

    @pytest.mark.parametrize("other", [TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED])
    def test_only_completed_counts(self, other):
        assert compute_progress(make_tasks(0, 4, other=other)) == 0

    def test_no_memory_between_calls(self):
        tasks = make_tasks(2, 4)
        assert compute_progress(tasks) == 50  # noqa: PLR2004
        assert compute_progress(tasks[:2]) == 100  # noqa: PLR2004
        assert compute_progress(tasks) == 50  # noqa: PLR2004


class TestSummarizeTasks:
    def test_counts_per_status(self):
        tasks = make_tasks(1, 3) + make_tasks(0, 2, other=TaskStatus.BLOCKED)

        breakdown = summarize_tasks(tasks)

        assert breakdown.total == 5  # noqa: PLR2004
        assert breakdown.completed == 1
        assert breakdown.pending == 2  # noqa: PLR2004
        assert breakdown.blocked == 2  # noqa: PLR2004
        assert breakdown.in_progress == 0
        assert breakdown.progress == 20  # noqa: PLR2004

    def test_empty(self):
        breakdown = summarize_tasks([])
        assert breakdown.total == 0
        assert breakdown.progress == 0


class TestDaysUntilDeadline:
    def test_no_deadline(self):
        assert days_until_deadline(None, NOW) is None

    def test_partial_day_rounds_up(self):
        assert days_until_deadline(NOW + timedelta(days=2, hours=1), NOW) == 3  # noqa: PLR2004

    def test_exact_days(self):
        assert days_until_deadline(NOW + timedelta(days=2), NOW) == 2  # noqa: PLR2004

    def test_overdue_is_negative(self):
        assert days_until_deadline(NOW - timedelta(days=3), NOW) == -3  # noqa: PLR2004

    def test_naive_deadline_uses_now_timezone(self):
        naive = datetime(2025, 1, 2, 12, 0)
        assert days_until_deadline(naive, NOW) == 1
