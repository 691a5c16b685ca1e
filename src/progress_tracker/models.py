"""Project and task entities.

Stored documents use the camelCase field names (``publicId``, ``ownerId``,
``createdAt``...); Python code uses the snake_case attributes. Both spellings
are accepted on input.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class ProjectStatus(str, Enum):
    """Project lifecycle status."""

    PLANNING = "planning"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ON_HOLD = "on-hold"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class EntityModel(BaseModel):
    """Base for records read back from the document store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_document(self) -> dict:
        """Serialize to the stored (camelCase, JSON-safe) shape."""
        return self.model_dump(mode="json", by_alias=True)


class PayloadModel(BaseModel):
    """Base for create/update requests coming from the owner."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    def to_fields(self, *, partial: bool = False) -> dict:
        """Serialize to stored field names; ``partial`` keeps only fields the caller set."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=partial)


class Project(EntityModel):
    """Project record - one client-facing engagement owned by a single principal."""

    id: str
    public_id: str
    owner_id: str

    name: str
    description: str | None = None
    client_name: str | None = None
    client_email: EmailStr | None = None
    project_url: str | None = None
    estimated_deadline: datetime | None = None

    status: ProjectStatus = ProjectStatus.PLANNING

    # Last persisted percentage; live views prefer the computed value
    progress: int = 0

    created_at: datetime
    updated_at: datetime

    @field_validator("progress")
    @classmethod
    def clamp_progress(cls, v: int) -> int:
        return max(0, min(100, v))


class Task(EntityModel):
    """Task record - belongs to exactly one project."""

    id: str
    project_id: str

    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None

    created_at: datetime
    updated_at: datetime


class ProjectCreate(PayloadModel):
    """Create project request."""

    name: str = Field(min_length=1)
    description: str | None = None
    client_name: str | None = None
    client_email: EmailStr | None = None
    project_url: str | None = None
    estimated_deadline: datetime | None = None
    status: ProjectStatus = ProjectStatus.PLANNING
    progress: int = Field(default=0, ge=0, le=100)


class ProjectUpdate(PayloadModel):
    """Update project request. Identity and ownership fields are not updatable."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    client_name: str | None = None
    client_email: EmailStr | None = None
    project_url: str | None = None
    estimated_deadline: datetime | None = None
    status: ProjectStatus | None = None
    progress: int | None = Field(default=None, ge=0, le=100)


class TaskCreate(PayloadModel):
    """Create task request. The parent project is passed separately."""

    title: str = Field(min_length=1)
    description: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None


class TaskUpdate(PayloadModel):
    """Update task request."""

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None


Entity = Project | Task
