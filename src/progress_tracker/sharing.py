"""Public sharing: opaque public identifiers and their resolution."""

import re
import secrets
import string

import structlog

from .access import AccessTierResolver
from .errors import NotFound
from .models import Project
from .store.base import Collection, EntityStore

logger = structlog.get_logger(__name__)

PUBLIC_ID_ALPHABET = string.digits + string.ascii_lowercase
MIN_PUBLIC_ID_LENGTH = 20
DEFAULT_PUBLIC_ID_LENGTH = 24

# Anything else cannot be a public id we issued, so it is not worth a lookup
_PUBLIC_ID_RE = re.compile(r"^[0-9a-z]{8,64}$")


def generate_public_id(length: int = DEFAULT_PUBLIC_ID_LENGTH) -> str:
    """Random base-36 token from the system CSPRNG; unrelated to the record id."""
    if length < MIN_PUBLIC_ID_LENGTH:
        raise ValueError(f"Public id length must be at least {MIN_PUBLIC_ID_LENGTH}, got {length}")
    return "".join(secrets.choice(PUBLIC_ID_ALPHABET) for _ in range(length))


def is_well_formed(public_id: str) -> bool:
    return isinstance(public_id, str) and bool(_PUBLIC_ID_RE.match(public_id))


class PublicSharingResolver:
    """Resolves a public id to its project without involving the owner's identity."""

    def __init__(self, store: EntityStore, tiers: AccessTierResolver | None = None):
        self.store = store
        self.tiers = tiers or AccessTierResolver()

    async def resolve(self, public_id: str) -> Project:
        """Point lookup by public id. Malformed and unknown ids both raise NotFound."""
        if not is_well_formed(public_id):
            logger.info("public_id_rejected")
            raise NotFound("Project not found")

        scope = self.tiers.resolve_public(public_id)
        matches = await self.store.query(Collection.PROJECTS, scope.predicate)
        if not matches:
            logger.info("public_id_not_found")
            raise NotFound("Project not found")

        project = matches[0]
        logger.debug("public_id_resolved", project_id=project.id)
        return project
