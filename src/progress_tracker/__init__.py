"""Live project progress: owner boards and public share links over a document store."""

from .access import (
    AccessScope,
    AccessTierResolver,
    IdentityProvider,
    StaticIdentityProvider,
    Tier,
)
from .errors import (
    NotAuthorized,
    NotFound,
    PartialCascadeFailure,
    ProgressTrackerError,
    StoreUnavailable,
)
from .models import (
    Project,
    ProjectCreate,
    ProjectStatus,
    ProjectUpdate,
    Task,
    TaskCreate,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
)
from .progress import compute_progress
from .service import ProgressTracker, PublicAccess
from .views import OwnerView, ProjectDetail, ProjectProgress, ProjectView, PublicView

__all__ = [
    "AccessScope",
    "AccessTierResolver",
    "IdentityProvider",
    "NotAuthorized",
    "NotFound",
    "OwnerView",
    "PartialCascadeFailure",
    "ProgressTracker",
    "ProgressTrackerError",
    "Project",
    "ProjectCreate",
    "ProjectDetail",
    "ProjectProgress",
    "ProjectStatus",
    "ProjectUpdate",
    "ProjectView",
    "PublicAccess",
    "PublicView",
    "StaticIdentityProvider",
    "StoreUnavailable",
    "Task",
    "TaskCreate",
    "TaskPriority",
    "TaskStatus",
    "TaskUpdate",
    "Tier",
    "compute_progress",
]
