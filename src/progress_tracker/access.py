"""Access tiers.

Two disjoint tiers read the same data:

* Owner  - authenticated; sees and mutates projects whose ``ownerId`` is the
  current principal, and the tasks of those projects.
* Public - anonymous; reads exactly one project (and its tasks) through its
  ``publicId``. No mutation, no enumeration.

Resolution is pure: it only turns (principal, public id) into a scope with the
filter predicate to apply. Callers do the I/O.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from .errors import NotAuthorized
from .models import Project
from .store.base import Predicate


class Tier(str, Enum):
    OWNER = "owner"
    PUBLIC = "public"


@dataclass(frozen=True)
class AccessScope:
    """Resolved tier plus the project filter it implies."""

    tier: Tier
    predicate: Predicate
    owner_id: str | None = None
    public_id: str | None = None

    @property
    def can_mutate(self) -> bool:
        return self.tier is Tier.OWNER

    @property
    def can_enumerate(self) -> bool:
        return self.tier is Tier.OWNER

    def permits(self, project: Project) -> bool:
        """Whether ``project`` falls inside this scope."""
        return self.predicate.matches(project.to_document())


@runtime_checkable
class IdentityProvider(Protocol):
    """Yields the authenticated owner id, or None when nobody is signed in."""

    def current_owner_id(self) -> str | None: ...


class StaticIdentityProvider:
    """Identity provider holding a fixed principal; sign in/out by assignment."""

    def __init__(self, owner_id: str | None = None):
        self.owner_id = owner_id

    def current_owner_id(self) -> str | None:
        return self.owner_id


class AccessTierResolver:
    """Maps a request context to an ``AccessScope``."""

    def resolve(self, principal: str | None, public_id: str | None = None) -> AccessScope:
        """Public tier when a public id is supplied, Owner tier otherwise."""
        if public_id is not None:
            return self.resolve_public(public_id)
        return self.resolve_owner(principal)

    def resolve_owner(self, principal: str | None) -> AccessScope:
        if not principal:
            raise NotAuthorized("Authentication required")
        return AccessScope(
            tier=Tier.OWNER,
            predicate=Predicate.where(owner_id=principal),
            owner_id=principal,
        )

    def resolve_public(self, public_id: str) -> AccessScope:
        # Never fails on authorization; an unknown id is a NotFound at lookup time
        return AccessScope(
            tier=Tier.PUBLIC,
            predicate=Predicate.where(public_id=public_id),
            public_id=public_id,
        )
