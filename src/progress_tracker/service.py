"""Progress tracker facade: live views and owner mutations.

Every mutation goes through the tier gate before touching the store: the
caller's scope must be Owner tier, and the target project must belong to it.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from .access import AccessScope, AccessTierResolver, IdentityProvider
from .config import Settings
from .errors import NotAuthorized, NotFound, PartialCascadeFailure, StoreUnavailable
from .logging import bind_view_context
from .models import (
    Project,
    ProjectCreate,
    ProjectUpdate,
    Task,
    TaskCreate,
    TaskUpdate,
)
from .sharing import PublicSharingResolver, generate_public_id
from .store.base import Collection, EntityStore, Predicate, utcnow
from .subscriptions import SubscriptionManager
from .views import OwnerView, ProjectView, PublicView, newest_first

logger = structlog.get_logger(__name__)


class ProgressTracker:
    """Entry point for the presentation layer."""

    def __init__(
        self,
        store: EntityStore,
        identity: IdentityProvider,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.identity = identity
        self.settings = settings or Settings()
        self.tiers = AccessTierResolver()
        self.sharing = PublicSharingResolver(store, self.tiers)
        self._clock = clock

    # --- scopes ----------------------------------------------------------

    def owner_scope(self) -> AccessScope:
        """Owner scope of the current principal; NotAuthorized when signed out."""
        return self.tiers.resolve_owner(self.identity.current_owner_id())

    def public(self, public_id: str) -> "PublicAccess":
        """Read-only access through a public id."""
        return PublicAccess(self, self.tiers.resolve_public(public_id))

    def _check_mutable(self, scope: AccessScope) -> AccessScope:
        if not scope.can_mutate:
            logger.warning("mutation_rejected", tier=scope.tier.value)
            raise NotAuthorized("Read-only access")
        return scope

    def _mutation_scope(self) -> AccessScope:
        """Mutations always act as the signed-in principal; callers cannot pass a scope."""
        return self._check_mutable(self.owner_scope())

    async def _owned_project(
        self, scope: AccessScope, project_id: str, *, mutating: bool
    ) -> Project:
        project = await self.store.get(Collection.PROJECTS, project_id)
        if project is None:
            raise NotFound("Project not found")
        if not scope.permits(project):
            if mutating:
                logger.warning(
                    "project_mutation_denied", project_id=project_id, owner_id=scope.owner_id
                )
                raise NotAuthorized("Not the project owner")
            # Reads cannot tell "someone else's" from "does not exist"
            raise NotFound("Project not found")
        return project

    async def _owned_task(self, scope: AccessScope, task_id: str) -> Task:
        task = await self.store.get(Collection.TASKS, task_id)
        if task is None:
            raise NotFound("Task not found")
        await self._owned_project(scope, task.project_id, mutating=True)
        return task

    # --- live views ------------------------------------------------------

    async def open_owner_view(self, owner_id: str | None = None) -> OwnerView:
        """Live board of the current principal's projects with progress.

        ``owner_id``, when given, must be the signed-in principal.
        """
        scope = self.owner_scope()
        if owner_id is not None and owner_id != scope.owner_id:
            logger.warning("owner_view_rejected", owner_id=owner_id)
            raise NotAuthorized("Not the signed-in owner")
        manager = SubscriptionManager(self.store, scope.predicate)
        bind_view_context(manager.name, scope.tier.value)
        await manager.start()
        logger.info("owner_view_opened", view_id=manager.name, owner_id=scope.owner_id)
        return OwnerView(manager)

    async def open_project_view(self, project_id: str) -> ProjectView:
        """Live view of one owned project with its tasks."""
        scope = self.owner_scope()
        await self._owned_project(scope, project_id, mutating=False)
        manager = SubscriptionManager(
            self.store,
            Predicate.where(id=project_id, owner_id=scope.owner_id),
            track_tasks=True,
        )
        bind_view_context(manager.name, scope.tier.value)
        await manager.start()
        logger.info("project_view_opened", view_id=manager.name, project_id=project_id)
        return ProjectView(manager, clock=self._clock)

    async def open_public_view(self, public_id: str) -> PublicView:
        """Live read-only view of the project behind ``public_id``. Raises NotFound."""
        scope = self.tiers.resolve_public(public_id)
        project = await self.sharing.resolve(public_id)
        manager = SubscriptionManager(
            self.store,
            Predicate.where(id=project.id, public_id=scope.public_id),
            track_tasks=True,
        )
        bind_view_context(manager.name, scope.tier.value)
        await manager.start()
        logger.info("public_view_opened", view_id=manager.name)
        return PublicView(manager, clock=self._clock)

    # --- one-shot reads --------------------------------------------------

    async def list_projects(self) -> list[Project]:
        scope = self.owner_scope()
        return newest_first(await self.store.query(Collection.PROJECTS, scope.predicate))

    async def get_project(self, project_id: str) -> Project:
        return await self._owned_project(self.owner_scope(), project_id, mutating=False)

    async def list_tasks(self, project_id: str) -> list[Task]:
        await self._owned_project(self.owner_scope(), project_id, mutating=False)
        tasks = await self.store.query(Collection.TASKS, Predicate.where(project_id=project_id))
        return newest_first(tasks)

    # --- project mutations -----------------------------------------------

    async def create_project(self, fields: ProjectCreate | dict[str, Any]) -> Project:
        scope = self._mutation_scope()
        payload = ProjectCreate.model_validate(fields)
        document = payload.to_fields()
        document["ownerId"] = scope.owner_id
        document["publicId"] = generate_public_id(self.settings.public_id_length)

        project = await self.store.create(Collection.PROJECTS, document)
        logger.info("project_created", project_id=project.id, owner_id=project.owner_id)
        return project

    async def update_project(
        self, project_id: str, patch: ProjectUpdate | dict[str, Any]
    ) -> Project:
        scope = self._mutation_scope()
        payload = ProjectUpdate.model_validate(patch)
        await self._owned_project(scope, project_id, mutating=True)

        project = await self.store.update(
            Collection.PROJECTS, project_id, payload.to_fields(partial=True)
        )
        logger.info(
            "project_updated", project_id=project_id, fields=sorted(payload.model_fields_set)
        )
        return project

    async def delete_project(self, project_id: str) -> None:
        """Delete a project, then every task referencing it.

        Phase one deletes the project; if that fails nothing else is touched.
        Phase two deletes the tasks; any failure there raises
        PartialCascadeFailure (the project stays deleted).
        """
        scope = self._mutation_scope()
        await self._owned_project(scope, project_id, mutating=True)

        await self.store.delete(Collection.PROJECTS, project_id)
        logger.info("project_deleted", project_id=project_id)

        await self._delete_tasks_of(project_id, scope.owner_id)

    async def retry_cascade(self, failure: PartialCascadeFailure) -> None:
        """Retry the task cleanup of a project deleted with a partial failure."""
        scope = self._mutation_scope()
        if failure.owner_id != scope.owner_id:
            raise NotAuthorized("Not the project owner")
        if await self.store.get(Collection.PROJECTS, failure.project_id) is not None:
            raise NotAuthorized("Project still exists")
        await self._delete_tasks_of(failure.project_id, scope.owner_id)

    async def _delete_tasks_of(self, project_id: str, owner_id: str) -> None:
        try:
            tasks = await self.store.query(Collection.TASKS, Predicate.where(project_id=project_id))
        except StoreUnavailable as e:
            logger.error("cascade_lookup_failed", project_id=project_id, error=str(e))
            raise PartialCascadeFailure(
                project_id,
                owner_id,
                [],
                message=f"Project {project_id} deleted, task lookup failed: {e}",
            ) from e

        results = await asyncio.gather(
            *(self.store.delete(Collection.TASKS, task.id) for task in tasks),
            return_exceptions=True,
        )

        failed = []
        for task, result in zip(tasks, results, strict=True):
            # Already gone is what we wanted
            if isinstance(result, Exception) and not isinstance(result, NotFound):
                logger.warning(
                    "cascade_task_delete_failed",
                    project_id=project_id,
                    task_id=task.id,
                    error=str(result),
                )
                failed.append(task.id)

        if failed:
            logger.error(
                "cascade_partially_failed",
                project_id=project_id,
                failed=len(failed),
                total=len(tasks),
            )
            raise PartialCascadeFailure(project_id, owner_id, failed)

        logger.info("cascade_completed", project_id=project_id, tasks_deleted=len(tasks))

    # --- task mutations --------------------------------------------------

    async def create_task(self, project_id: str, fields: TaskCreate | dict[str, Any]) -> Task:
        scope = self._mutation_scope()
        payload = TaskCreate.model_validate(fields)
        await self._owned_project(scope, project_id, mutating=True)

        document = payload.to_fields()
        document["projectId"] = project_id
        # Commits only while the project exists, so a concurrent delete cannot orphan it
        task = await self.store.create(
            Collection.TASKS, document, parent=(Collection.PROJECTS, project_id)
        )
        logger.info(
            "task_created", task_id=task.id, project_id=project_id, status=task.status.value
        )
        return task

    async def update_task(self, task_id: str, patch: TaskUpdate | dict[str, Any]) -> Task:
        scope = self._mutation_scope()
        payload = TaskUpdate.model_validate(patch)
        await self._owned_task(scope, task_id)

        task = await self.store.update(Collection.TASKS, task_id, payload.to_fields(partial=True))
        logger.info(
            "task_updated", task_id=task_id, project_id=task.project_id, status=task.status.value
        )
        return task

    async def delete_task(self, task_id: str) -> None:
        scope = self._mutation_scope()
        task = await self._owned_task(scope, task_id)

        await self.store.delete(Collection.TASKS, task_id)
        logger.info("task_deleted", task_id=task_id, project_id=task.project_id)


class PublicAccess:
    """What an anonymous holder of a public id can do: read one project, live.

    Mutation methods exist so callers get a clear NotAuthorized instead of an
    AttributeError; they all go through the tracker's tier gate.
    """

    def __init__(self, tracker: ProgressTracker, scope: AccessScope):
        self._tracker = tracker
        self.scope = scope

    async def resolve(self) -> Project:
        return await self._tracker.sharing.resolve(self.scope.public_id)

    async def open_view(self) -> PublicView:
        return await self._tracker.open_public_view(self.scope.public_id)

    # A public scope never passes the gate, so none of these reach the store

    async def create_project(self, fields: ProjectCreate | dict[str, Any]) -> Project:
        self._tracker._check_mutable(self.scope)
        return await self._tracker.create_project(fields)

    async def update_project(
        self, project_id: str, patch: ProjectUpdate | dict[str, Any]
    ) -> Project:
        self._tracker._check_mutable(self.scope)
        return await self._tracker.update_project(project_id, patch)

    async def delete_project(self, project_id: str) -> None:
        self._tracker._check_mutable(self.scope)
        await self._tracker.delete_project(project_id)

    async def create_task(self, project_id: str, fields: TaskCreate | dict[str, Any]) -> Task:
        self._tracker._check_mutable(self.scope)
        return await self._tracker.create_task(project_id, fields)

    async def update_task(self, task_id: str, patch: TaskUpdate | dict[str, Any]) -> Task:
        self._tracker._check_mutable(self.scope)
        return await self._tracker.update_task(task_id, patch)

    async def delete_task(self, task_id: str) -> None:
        self._tracker._check_mutable(self.scope)
        await self._tracker.delete_task(task_id)
