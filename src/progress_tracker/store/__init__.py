"""Document store backends."""

from typing import TYPE_CHECKING

from .base import Collection, EntityStore, Predicate, Subscription
from .memory import InMemoryEntityStore
from .redis import RedisEntityStore

if TYPE_CHECKING:
    from ..config import Settings


def create_store(settings: "Settings") -> EntityStore:
    """Build the store selected by ``settings.store_backend``."""
    if settings.store_backend == "redis":
        return RedisEntityStore.from_url(
            settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            resubscribe_max_attempts=settings.resubscribe_max_attempts,
            backoff_cap=settings.resubscribe_backoff_cap,
        )
    return InMemoryEntityStore()


__all__ = [
    "Collection",
    "EntityStore",
    "InMemoryEntityStore",
    "Predicate",
    "RedisEntityStore",
    "Subscription",
    "create_store",
]
