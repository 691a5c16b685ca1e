"""Errors raised by the progress tracker core."""


class ProgressTrackerError(Exception):
    """Base class for all progress tracker errors."""


class NotAuthorized(ProgressTrackerError):
    """Owner-tier operation without a valid principal, or on a record the principal does not own."""


class NotFound(ProgressTrackerError):
    """Record does not exist or is outside the caller's scope."""


class StoreUnavailable(ProgressTrackerError):
    """The document store could not complete an operation."""


class PartialCascadeFailure(ProgressTrackerError):
    """Project was deleted but some of its tasks were not.

    The project itself is gone regardless. ``failed_task_ids`` lists the tasks
    that still reference it; pass the error to ``ProgressTracker.retry_cascade``
    to retry the cleanup.
    """

    def __init__(
        self,
        project_id: str,
        owner_id: str,
        failed_task_ids: list[str],
        message: str | None = None,
    ):
        self.project_id = project_id
        self.owner_id = owner_id
        self.failed_task_ids = list(failed_task_ids)
        super().__init__(
            message
            or f"Project {project_id} deleted, {len(self.failed_task_ids)} task(s) not deleted"
        )
