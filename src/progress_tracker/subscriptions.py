"""Subscription fan-out: one outer project subscription, one task subscription per visible project.

Invariant: for every currently visible project there is exactly one live
nested task subscription; for every project no longer visible it has been
torn down.

The outer callback only records the latest project snapshot and wakes the
reconcile worker. The worker applies snapshots one at a time, so two outer
changes never interleave their add/remove steps. Snapshots are full state,
so when several arrive during one reconciliation only the latest is applied.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
import itertools

import structlog

from .errors import StoreUnavailable
from .models import Project, Task
from .progress import compute_progress
from .store.base import Collection, EntityStore, Predicate, Subscription
from .streams import SnapshotStream

logger = structlog.get_logger(__name__)

_manager_ids = itertools.count(1)


@dataclass(frozen=True)
class BoardSnapshot:
    """State of a manager after a reconciliation or a task change.

    ``progress`` has an entry only for projects whose live value is known;
    a ``None`` entry means the project's task subscription is unavailable.
    ``tasks`` is filled only when the manager tracks tasks.
    """

    projects: tuple[Project, ...]
    progress: Mapping[str, int | None] = field(default_factory=dict)
    tasks: Mapping[str, tuple[Task, ...]] = field(default_factory=dict)


class SubscriptionManager:
    """Owns the outer subscription and the per-project nested ones for one view."""

    def __init__(
        self,
        store: EntityStore,
        predicate: Predicate,
        *,
        track_tasks: bool = False,
        name: str | None = None,
    ):
        self.store = store
        self.predicate = predicate
        self.track_tasks = track_tasks
        self.name = name or f"manager-{next(_manager_ids)}"
        self.stream: SnapshotStream[BoardSnapshot] = SnapshotStream()

        self._outer: Subscription | None = None
        self._nested: dict[str, Subscription] = {}
        self._projects: dict[str, Project] = {}
        self._progress: dict[str, int | None] = {}
        self._tasks: dict[str, tuple[Task, ...]] = {}

        self._pending: list[Project] | None = None
        self._wakeup = asyncio.Event()
        self._worker: asyncio.Task | None = None
        self._reconciling = False
        self._started = False
        self._closed = False

    # --- introspection ---------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def live_project_ids(self) -> frozenset[str]:
        """Projects with a live nested subscription."""
        return frozenset(pid for pid, handle in self._nested.items() if handle.active)

    @property
    def nested_subscription_count(self) -> int:
        return len(self.live_project_ids)

    @property
    def visible_project_ids(self) -> frozenset[str]:
        return frozenset(self._projects)

    def snapshot(self) -> BoardSnapshot:
        return BoardSnapshot(
            projects=tuple(self._projects.values()),
            progress=dict(self._progress),
            tasks=dict(self._tasks) if self.track_tasks else {},
        )

    # --- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        """Open the outer subscription and reconcile its initial snapshot.

        When this returns, every initially visible project has its nested
        subscription (or is marked unavailable).
        """
        if self._started:
            raise RuntimeError(f"{self.name} already started")
        self._started = True

        try:
            outer = await self.store.subscribe(
                Collection.PROJECTS, self.predicate, self._on_projects, self._on_outer_error
            )
            if self._closed:
                # Closed while the subscribe was in flight
                outer.unsubscribe()
                return
            self._outer = outer

            logger.info(
                "subscription_manager_started", manager=self.name, predicate=str(self.predicate)
            )
            await self._drain()
        except BaseException:
            # Cancelled or failed mid-open: the caller never gets a handle to close
            self.close()
            raise

        if not self._closed:
            self._worker = asyncio.create_task(self._run(), name=self.name)

    def close(self, error: BaseException | None = None) -> None:
        """Tear down every nested subscription and the outer one. Synchronous.

        Once this returns no callback of this manager fires again.
        """
        if self._closed:
            return
        self._closed = True
        self._pending = None

        if self._worker is not None and self._worker is not asyncio.current_task():
            self._worker.cancel()

        nested = len(self._nested)
        for handle in self._nested.values():
            handle.unsubscribe()
        self._nested.clear()

        if self._outer is not None:
            self._outer.unsubscribe()

        self.stream.close(error)
        logger.info(
            "subscription_manager_closed",
            manager=self.name,
            nested_closed=nested,
            snapshots_skipped=self.stream.skipped,
            error=str(error) if error else None,
        )

    # --- outer subscription ----------------------------------------------

    def _on_projects(self, projects: list[Project]) -> None:
        if self._closed:
            return
        self._pending = projects
        self._wakeup.set()

    def _on_outer_error(self, error: StoreUnavailable) -> None:
        logger.error("outer_subscription_lost", manager=self.name, error=str(error))
        self.close(error)

    async def _run(self) -> None:
        while not self._closed:
            await self._wakeup.wait()
            await self._drain()

    async def _drain(self) -> None:
        while self._pending is not None and not self._closed:
            self._wakeup.clear()
            projects, self._pending = self._pending, None
            await self._reconcile(projects)

    async def _reconcile(self, projects: list[Project]) -> None:
        visible = {project.id: project for project in projects}
        removed = [pid for pid in self._projects if pid not in visible]

        self._reconciling = True
        try:
            for project_id in removed:
                self._teardown(project_id)
            self._projects = visible

            opened = 0
            for project_id in visible:
                if project_id in self._nested:
                    continue
                await self._open_nested(project_id)
                if self._closed:
                    return
                opened += project_id in self._nested
        finally:
            self._reconciling = False

        logger.debug(
            "reconcile_completed",
            manager=self.name,
            visible=len(visible),
            opened=opened,
            removed=len(removed),
        )
        self._emit()

    # --- nested subscriptions --------------------------------------------

    async def _open_nested(self, project_id: str) -> None:
        def on_tasks(tasks: list[Task]) -> None:
            self._on_tasks(project_id, tasks)

        def on_error(error: StoreUnavailable) -> None:
            self._on_nested_error(project_id, error)

        try:
            handle = await self.store.subscribe(
                Collection.TASKS, Predicate.where(project_id=project_id), on_tasks, on_error
            )
        except StoreUnavailable as e:
            # Report as unavailable rather than dropping it or showing 0%
            logger.warning(
                "nested_subscription_failed", manager=self.name, project_id=project_id, error=str(e)
            )
            self._progress[project_id] = None
            self._tasks.pop(project_id, None)
            return

        if self._closed:
            handle.unsubscribe()
            return
        self._nested[project_id] = handle
        logger.debug("nested_subscription_opened", manager=self.name, project_id=project_id)

    def _teardown(self, project_id: str) -> None:
        handle = self._nested.pop(project_id, None)
        if handle is not None:
            handle.unsubscribe()
            logger.debug("nested_subscription_closed", manager=self.name, project_id=project_id)
        self._progress.pop(project_id, None)
        self._tasks.pop(project_id, None)

    def _on_tasks(self, project_id: str, tasks: list[Task]) -> None:
        if self._closed or project_id not in self._projects:
            return
        self._progress[project_id] = compute_progress(tasks)
        if self.track_tasks:
            self._tasks[project_id] = tuple(tasks)
        if not self._reconciling:
            self._emit()

    def _on_nested_error(self, project_id: str, error: StoreUnavailable) -> None:
        if self._closed:
            return
        logger.warning(
            "nested_subscription_lost",
            manager=self.name,
            project_id=project_id,
            error=str(error),
        )
        handle = self._nested.pop(project_id, None)
        if handle is not None:
            handle.unsubscribe()
        self._progress[project_id] = None
        self._tasks.pop(project_id, None)
        if not self._reconciling:
            self._emit()

    def _emit(self) -> None:
        if self._closed:
            return
        self.stream.publish(self.snapshot())
