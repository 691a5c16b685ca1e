"""In-process document store.

Deliveries happen synchronously right after each commit, so subscribers see
snapshots strictly in commit order. Used by tests and single-process setups.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from ..errors import NotFound, StoreUnavailable
from .base import (
    Collection,
    ErrorCallback,
    Predicate,
    SnapshotCallback,
    Subscription,
    apply_patch,
    new_document,
    to_record,
    to_records,
    utcnow,
)

logger = structlog.get_logger(__name__)


@dataclass
class _Subscriber:
    predicate: Predicate
    on_change: SnapshotCallback
    on_error: ErrorCallback | None
    handle: Subscription


class InMemoryEntityStore:
    """Dict-backed store implementing the ``EntityStore`` contract."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._documents: dict[Collection, dict[str, dict[str, Any]]] = {c: {} for c in Collection}
        self._subscribers: dict[Collection, list[_Subscriber]] = {c: [] for c in Collection}
        self._faults: set[tuple[str, str]] = set()
        self._unavailable = False

    # --- fault injection -------------------------------------------------

    def fail_on(self, operation: str, key: str) -> None:
        """Make ``operation`` fail with StoreUnavailable.

        ``key`` is a record id, or for query/subscribe any value in the predicate.
        """
        self._faults.add((operation, key))

    def clear_faults(self) -> None:
        self._faults.clear()
        self._unavailable = False

    def set_unavailable(self, unavailable: bool = True) -> None:
        """Fail every operation until reset."""
        self._unavailable = unavailable

    def _check(self, operation: str, *keys: Any) -> None:
        if self._unavailable or any((operation, key) in self._faults for key in keys):
            raise StoreUnavailable(f"{operation} failed: store unavailable")

    def drop_subscriptions(self, collection: Collection) -> int:
        """Simulate a lost connection: every subscriber on ``collection`` gets on_error."""
        dropped = [s for s in self._subscribers[collection] if s.handle.active]
        self._subscribers[collection] = []
        for subscriber in dropped:
            if subscriber.on_error is not None:
                subscriber.on_error(StoreUnavailable(f"subscription to {collection.value} lost"))
        return len(dropped)

    # --- introspection ---------------------------------------------------

    def subscriber_count(self, collection: Collection, predicate: Predicate | None = None) -> int:
        """Number of live subscriptions on ``collection`` (optionally with an exact predicate)."""
        return sum(
            1
            for s in self._subscribers[collection]
            if s.handle.active and (predicate is None or s.predicate == predicate)
        )

    # --- EntityStore -----------------------------------------------------

    async def query(self, collection: Collection, predicate: Predicate) -> list[Any]:
        self._check("query", *predicate.values())
        return self._snapshot(collection, predicate)

    async def get(self, collection: Collection, record_id: str) -> Any | None:
        self._check("get", record_id)
        document = self._documents[collection].get(record_id)
        if document is None:
            return None
        return to_record(collection, document)

    async def create(
        self,
        collection: Collection,
        fields: dict[str, Any],
        *,
        parent: tuple[Collection, str] | None = None,
    ) -> Any:
        self._check("create")
        if parent is not None and parent[1] not in self._documents[parent[0]]:
            raise NotFound(f"{parent[0].value} record not found")
        document = new_document(fields, self._clock())
        record = to_record(collection, document)
        self._documents[collection][record.id] = document
        logger.debug("store_record_created", collection=collection.value, record_id=record.id)
        self._notify(collection, None, document)
        return record

    async def update(self, collection: Collection, record_id: str, patch: dict[str, Any]) -> Any:
        self._check("update", record_id)
        current = self._documents[collection].get(record_id)
        if current is None:
            raise NotFound(f"{collection.value} record not found")
        document = apply_patch(current, patch, self._clock())
        record = to_record(collection, document)
        self._documents[collection][record_id] = document
        self._notify(collection, current, document)
        return record

    async def delete(self, collection: Collection, record_id: str) -> None:
        self._check("delete", record_id)
        current = self._documents[collection].pop(record_id, None)
        if current is None:
            raise NotFound(f"{collection.value} record not found")
        logger.debug("store_record_deleted", collection=collection.value, record_id=record_id)
        self._notify(collection, current, None)

    async def subscribe(
        self,
        collection: Collection,
        predicate: Predicate,
        on_change: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        self._check("subscribe", *predicate.values())
        handle = Subscription(lambda: self._remove(collection, subscriber))
        subscriber = _Subscriber(predicate, on_change, on_error, handle)
        self._subscribers[collection].append(subscriber)
        self._deliver(collection, subscriber)
        return subscriber.handle

    # --- internals -------------------------------------------------------

    def _remove(self, collection: Collection, subscriber: _Subscriber) -> None:
        try:
            self._subscribers[collection].remove(subscriber)
        except ValueError:
            pass

    def _snapshot(self, collection: Collection, predicate: Predicate) -> list[Any]:
        return to_records(
            collection,
            [doc for doc in self._documents[collection].values() if predicate.matches(doc)],
        )

    def _notify(
        self,
        collection: Collection,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        for subscriber in list(self._subscribers[collection]):
            touched = (before is not None and subscriber.predicate.matches(before)) or (
                after is not None and subscriber.predicate.matches(after)
            )
            if touched:
                self._deliver(collection, subscriber)

    def _deliver(self, collection: Collection, subscriber: _Subscriber) -> None:
        if not subscriber.handle.active:
            return
        try:
            subscriber.on_change(self._snapshot(collection, subscriber.predicate))
        except Exception as e:
            logger.error(
                "subscriber_callback_failed",
                collection=collection.value,
                predicate=str(subscriber.predicate),
                error=str(e),
                exc_info=True,
            )
