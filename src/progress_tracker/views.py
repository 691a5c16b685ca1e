"""Live views handed to the presentation layer.

Each view wraps one ``SubscriptionManager`` and turns its board snapshots
into presentation-ready items. Views are async iterators and async context
managers; ``close()`` is synchronous.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
import structlog

from .access import Tier
from .models import Project, Task
from .progress import TaskBreakdown, days_until_deadline, summarize_tasks
from .store.base import utcnow
from .subscriptions import BoardSnapshot, SubscriptionManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ProjectProgress(BaseModel):
    """One row of the owner's board.

    ``progress`` is the live value when ``live`` is true, the last persisted
    value before the first task snapshot arrives, and None when the project's
    task subscription is unavailable.
    """

    model_config = ConfigDict(frozen=True)

    project: Project
    progress: int | None
    live: bool

    @property
    def available(self) -> bool:
        return self.progress is not None


class ProjectDetail(BaseModel):
    """Single project with its tasks, as seen by the public page or the owner's project page."""

    model_config = ConfigDict(frozen=True)

    project: Project
    tasks: list[Task]
    progress: int | None
    breakdown: TaskBreakdown
    days_until_deadline: int | None = None


def newest_first(items):
    return sorted(items, key=lambda item: item.created_at, reverse=True)


class _View(Generic[T]):
    tier: Tier

    def __init__(self, manager: SubscriptionManager):
        self.manager = manager
        self.view_id = manager.name

    @property
    def closed(self) -> bool:
        return self.manager.closed

    def close(self) -> None:
        if not self.manager.closed:
            logger.info("view_closed", view_id=self.view_id, tier=self.tier.value)
        self.manager.close()

    def _render(self, board: BoardSnapshot) -> T:
        raise NotImplementedError

    def _ended(self, board: BoardSnapshot) -> bool:
        return False

    def current(self) -> T | None:
        """Render the manager's state right now, without waiting."""
        board = self.manager.snapshot()
        if self._ended(board):
            return None
        return self._render(board)

    async def get(self) -> T:
        """Next item from the view; StopAsyncIteration once the view has ended."""
        board = await self.manager.stream.get()
        if self._ended(board):
            logger.info("viewed_project_gone", view_id=self.view_id, tier=self.tier.value)
            self.close()
            raise StopAsyncIteration
        return self._render(board)

    def __aiter__(self) -> "_View[T]":
        return self

    async def __anext__(self) -> T:
        return await self.get()

    async def __aenter__(self) -> "_View[T]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class OwnerView(_View[list[ProjectProgress]]):
    """The owner's board: every owned project with its live progress, newest first."""

    tier = Tier.OWNER

    def _render(self, board: BoardSnapshot) -> list[ProjectProgress]:
        rows = []
        for project in newest_first(board.projects):
            if project.id in board.progress:
                value = board.progress[project.id]
                rows.append(
                    ProjectProgress(project=project, progress=value, live=value is not None)
                )
            else:
                rows.append(ProjectProgress(project=project, progress=project.progress, live=False))
        return rows


class _DetailView(_View[ProjectDetail]):
    """One project with tasks. Ends when the project disappears."""

    def __init__(self, manager: SubscriptionManager, clock: Callable[[], datetime] = utcnow):
        super().__init__(manager)
        self._clock = clock

    def _ended(self, board: BoardSnapshot) -> bool:
        return not board.projects

    def _render(self, board: BoardSnapshot) -> ProjectDetail:
        project = board.projects[0]
        tasks = newest_first(board.tasks.get(project.id, ()))
        return ProjectDetail(
            project=project,
            tasks=tasks,
            progress=board.progress.get(project.id, project.progress),
            breakdown=summarize_tasks(tasks),
            days_until_deadline=days_until_deadline(project.estimated_deadline, self._clock()),
        )


class ProjectView(_DetailView):
    """Owner's live view of one of their projects."""

    tier = Tier.OWNER


class PublicView(_DetailView):
    """Anonymous, read-only live view of the project behind a public id."""

    tier = Tier.PUBLIC
