"""Document store contract shared by every backend.

A store holds two collections (projects, tasks) of JSON-shaped documents and
offers CRUD plus snapshot subscriptions. ``subscribe`` delivers the full
current match set right away and again after every change touching a matching
record, never a diff.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable
import uuid

from pydantic import ValidationError
from pydantic.alias_generators import to_camel
import structlog

from ..errors import StoreUnavailable
from ..models import Entity, Project, Task

logger = structlog.get_logger(__name__)


class Collection(str, Enum):
    PROJECTS = "projects"
    TASKS = "tasks"


ENTITY_TYPES: dict[Collection, type[Project] | type[Task]] = {
    Collection.PROJECTS: Project,
    Collection.TASKS: Task,
}

# Fields the store owns; patches never overwrite them
IMMUTABLE_FIELDS = frozenset({"id", "publicId", "ownerId", "projectId", "createdAt", "updatedAt"})

SnapshotCallback = Callable[[list[Any]], None]
ErrorCallback = Callable[[StoreUnavailable], None]


@dataclass(frozen=True)
class Predicate:
    """Conjunction of equality terms over stored (camelCase) field names."""

    terms: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def where(cls, **fields: Any) -> "Predicate":
        """Build a predicate from snake_case attribute names."""
        return cls(tuple(sorted((to_camel(name), value) for name, value in fields.items())))

    @classmethod
    def all(cls) -> "Predicate":
        return cls()

    def matches(self, document: dict[str, Any]) -> bool:
        return all(document.get(field) == value for field, value in self.terms)

    def get(self, field: str) -> Any | None:
        """Value the predicate requires for stored ``field``, or None if unconstrained."""
        return dict(self.terms).get(field)

    def values(self) -> tuple[Any, ...]:
        return tuple(value for _, value in self.terms)

    def __str__(self) -> str:
        if not self.terms:
            return "*"
        return " AND ".join(f"{field}=={value!r}" for field, value in self.terms)


class Subscription:
    """Handle for a live subscription.

    ``unsubscribe`` is synchronous and idempotent: once it returns, the
    subscription's callbacks never fire again.
    """

    def __init__(self, on_unsubscribe: Callable[[], None] | None = None):
        self._on_unsubscribe = on_unsubscribe
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        callback, self._on_unsubscribe = self._on_unsubscribe, None
        if callback is not None:
            callback()

    __call__ = unsubscribe


@runtime_checkable
class EntityStore(Protocol):
    """Minimal query/subscribe contract over the ``projects`` and ``tasks`` collections."""

    async def query(self, collection: Collection, predicate: Predicate) -> list[Any]:
        """Return the records matching ``predicate``."""
        ...

    async def get(self, collection: Collection, record_id: str) -> Any | None:
        """Return one record by id, or None."""
        ...

    async def create(
        self,
        collection: Collection,
        fields: dict[str, Any],
        *,
        parent: tuple[Collection, str] | None = None,
    ) -> Any:
        """Insert a record; the store assigns ``id``, ``createdAt`` and ``updatedAt``.

        With ``parent`` the insert only commits while that record exists,
        checked atomically with the write; raises NotFound otherwise.
        """
        ...

    async def update(self, collection: Collection, record_id: str, patch: dict[str, Any]) -> Any:
        """Merge ``patch`` into a record. Raises NotFound if it does not exist."""
        ...

    async def delete(self, collection: Collection, record_id: str) -> None:
        """Delete a record. Raises NotFound if it does not exist."""
        ...

    async def subscribe(
        self,
        collection: Collection,
        predicate: Predicate,
        on_change: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """Deliver the current snapshot, then a fresh one after every matching change."""
        ...


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_record_id() -> str:
    return uuid.uuid4().hex


def new_document(fields: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Stamp a fresh document with id and timestamps, dropping client-supplied ones."""
    document = {
        key: value for key, value in fields.items() if key not in ("id", "createdAt", "updatedAt")
    }
    timestamp = now.isoformat()
    document["id"] = new_record_id()
    document["createdAt"] = timestamp
    document["updatedAt"] = timestamp
    return document


def apply_patch(document: dict[str, Any], patch: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Merge mutable fields of ``patch`` into a copy of ``document``."""
    updated = dict(document)
    updated.update({key: value for key, value in patch.items() if key not in IMMUTABLE_FIELDS})
    updated["updatedAt"] = now.isoformat()
    return updated


def to_record(collection: Collection, document: dict[str, Any]) -> Entity:
    """Validate a stored document into its entity type (raises ValidationError)."""
    return ENTITY_TYPES[collection].model_validate(document)


def to_records(collection: Collection, documents: list[dict[str, Any]]) -> list[Entity]:
    """Validate stored documents, skipping malformed ones."""
    records = []
    for document in documents:
        try:
            records.append(to_record(collection, document))
        except ValidationError as exc:
            logger.warning(
                "store_document_invalid",
                collection=collection.value,
                record_id=document.get("id"),
                errors=exc.error_count(),
            )
    return records
