"""Redis-backed document store.

Layout:
    {prefix}:{collection}          hash, field = record id, value = JSON document
    {prefix}:{collection}:changes  pub/sub channel, one message per committed mutation
    {prefix}:projects:by_public_id hash, field = public id, value = project id

Every mutation commits in one MULTI together with its change message. Updates,
deletes and task creates read under WATCH, so a concurrent delete can never be
undone by a write based on what was read before it.

Each subscription runs one listener task. Every change notification makes the
listener re-run its query and deliver a full snapshot for its predicate. A
predicate pinning an id or a public id is a point read, anything else reads the
whole collection hash.
When the connection drops the listener resubscribes with exponential backoff
and delivers a fresh snapshot once it is back.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
import json
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.asyncio.client import Pipeline, PubSub
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
    WatchError,
)
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

TRANSIENT_ERRORS = (RedisConnectionError, RedisTimeoutError)

T = TypeVar("T")


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate transient Redis failures into StoreUnavailable."""
    try:
        yield
    except TRANSIENT_ERRORS as e:
        logger.warning("store_operation_failed", operation=operation, error=str(e))
        raise StoreUnavailable(f"{operation} failed: {e}") from e


class RedisEntityStore:
    """``EntityStore`` over Redis hashes and pub/sub."""

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "progress",
        *,
        clock: Callable[[], datetime] = utcnow,
        resubscribe_max_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        poll_interval: float = 1.0,
        write_retries: int = 10,
    ):
        self.redis = client
        self.key_prefix = key_prefix
        self.resubscribe_max_attempts = resubscribe_max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.poll_interval = poll_interval
        self.write_retries = write_retries
        self._clock = clock
        self._listeners: set[_SubscriptionListener] = set()

    @classmethod
    def from_url(cls, redis_url: str, **kwargs: Any) -> "RedisEntityStore":
        return cls(redis.from_url(redis_url, decode_responses=True), **kwargs)

    async def close(self) -> None:
        """Stop every listener and close the connection pool."""
        for listener in list(self._listeners):
            listener.handle.unsubscribe()
        await self.redis.aclose()
        logger.info("redis_connection_closed")

    def key(self, collection: Collection) -> str:
        return f"{self.key_prefix}:{collection.value}"

    def channel(self, collection: Collection) -> str:
        return f"{self.key_prefix}:{collection.value}:changes"

    @property
    def public_id_index(self) -> str:
        return f"{self.key_prefix}:projects:by_public_id"

    def backoff(self, attempt: int) -> float:
        """Delay before resubscribe attempt ``attempt`` (0-based), doubling up to the cap."""
        return min(self.backoff_base * 2**attempt, self.backoff_cap)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # --- EntityStore -----------------------------------------------------

    async def query(self, collection: Collection, predicate: Predicate) -> list[Any]:
        with _store_errors("query"):
            raw = await self._candidates(collection, predicate)
        documents = []
        for value in raw:
            try:
                document = json.loads(value)
            except json.JSONDecodeError:
                logger.warning("store_document_unparseable", collection=collection.value)
                continue
            if predicate.matches(document):
                documents.append(document)
        # Hash order is not stable; keep insertion order
        documents.sort(key=lambda d: (d.get("createdAt") or "", d.get("id") or ""))
        return to_records(collection, documents)

    async def get(self, collection: Collection, record_id: str) -> Any | None:
        document = await self._read(collection, record_id)
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
        if parent is None:
            document = new_document(fields, self._clock())
            record = to_record(collection, document)
            await self._write(collection, document, op="create")
        else:
            parent_collection, parent_id = parent
            parent_key = self.key(parent_collection)

            async def stage(pipe: Pipeline) -> dict[str, Any]:
                if not await pipe.hexists(parent_key, parent_id):
                    raise NotFound(f"{parent_collection.value} record not found")
                document = new_document(fields, self._clock())
                to_record(collection, document)
                pipe.multi()
                self._queue_write(pipe, collection, document, "create")
                return document

            record = to_record(collection, await self._transact("create", parent_key, stage))
        logger.debug("store_record_created", collection=collection.value, record_id=record.id)
        return record

    async def update(self, collection: Collection, record_id: str, patch: dict[str, Any]) -> Any:
        key = self.key(collection)

        async def stage(pipe: Pipeline) -> dict[str, Any]:
            raw = await pipe.hget(key, record_id)
            if raw is None:
                raise NotFound(f"{collection.value} record not found")
            document = apply_patch(json.loads(raw), patch, self._clock())
            to_record(collection, document)
            pipe.multi()
            self._queue_write(pipe, collection, document, "update")
            return document

        return to_record(collection, await self._transact("update", key, stage))

    async def delete(self, collection: Collection, record_id: str) -> None:
        key = self.key(collection)

        async def stage(pipe: Pipeline) -> None:
            raw = await pipe.hget(key, record_id)
            if raw is None:
                raise NotFound(f"{collection.value} record not found")
            public_id = json.loads(raw).get("publicId")
            pipe.multi()
            pipe.hdel(key, record_id)
            if collection is Collection.PROJECTS and public_id:
                pipe.hdel(self.public_id_index, public_id)
            pipe.publish(self.channel(collection), json.dumps({"op": "delete", "id": record_id}))

        await self._transact("delete", key, stage)
        logger.debug("store_record_deleted", collection=collection.value, record_id=record_id)

    async def subscribe(
        self,
        collection: Collection,
        predicate: Predicate,
        on_change: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        listener = _SubscriptionListener(self, collection, predicate, on_change, on_error)
        await listener.open()
        return listener.handle

    # --- internals -------------------------------------------------------

    async def _candidates(self, collection: Collection, predicate: Predicate) -> list[str]:
        """Raw documents that may match: a point read when the predicate pins a record."""
        key = self.key(collection)
        record_id = predicate.get("id")
        if record_id is None and collection is Collection.PROJECTS:
            public_id = predicate.get("publicId")
            if public_id is not None:
                record_id = await self.redis.hget(self.public_id_index, public_id)
                if record_id is None:
                    return []
        if record_id is None:
            return await self.redis.hvals(key)
        raw = await self.redis.hget(key, record_id)
        return [] if raw is None else [raw]

    async def _read(self, collection: Collection, record_id: str) -> dict[str, Any] | None:
        with _store_errors("get"):
            raw = await self.redis.hget(self.key(collection), record_id)
        if raw is None:
            return None
        return json.loads(raw)

    async def _write(self, collection: Collection, document: dict[str, Any], op: str) -> None:
        with _store_errors(op):
            async with self.redis.pipeline(transaction=True) as pipe:
                self._queue_write(pipe, collection, document, op)
                await pipe.execute()

    def _queue_write(
        self, pipe: Pipeline, collection: Collection, document: dict[str, Any], op: str
    ) -> None:
        pipe.hset(self.key(collection), document["id"], json.dumps(document))
        if collection is Collection.PROJECTS and document.get("publicId"):
            pipe.hset(self.public_id_index, document["publicId"], document["id"])
        pipe.publish(self.channel(collection), json.dumps({"op": op, "id": document["id"]}))

    async def _transact(
        self, op: str, watch_key: str, stage: Callable[[Pipeline], Awaitable[T]]
    ) -> T:
        """Run ``stage`` under WATCH on ``watch_key`` and commit what it queued.

        ``stage`` reads in immediate mode, calls ``pipe.multi()`` and queues
        the writes. When another client touches ``watch_key`` before the
        commit, the whole stage runs again against the new state.
        """
        with _store_errors(op):
            async with self.redis.pipeline(transaction=True) as pipe:
                for attempt in range(1, self.write_retries + 1):
                    try:
                        await pipe.watch(watch_key)
                        result = await stage(pipe)
                        await pipe.execute()
                        return result
                    except WatchError:
                        logger.debug(
                            "store_write_conflict", operation=op, key=watch_key, attempt=attempt
                        )
        raise StoreUnavailable(f"{op} failed: {watch_key} kept changing")

    async def _open_pubsub(self, collection: Collection) -> PubSub:
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self.channel(collection))
        return pubsub


class _SubscriptionListener:
    """One live subscription: pub/sub channel + re-query on every notification."""

    def __init__(
        self,
        store: RedisEntityStore,
        collection: Collection,
        predicate: Predicate,
        on_change: SnapshotCallback,
        on_error: ErrorCallback | None,
    ):
        self.store = store
        self.collection = collection
        self.predicate = predicate
        self.on_change = on_change
        self.on_error = on_error
        self.handle = Subscription(self._stop)
        self._pubsub: PubSub | None = None
        self._task: asyncio.Task | None = None
        self._last: tuple[str, ...] | None = None

    async def open(self) -> None:
        # Initial snapshot first; failures here surface to the caller
        await self._refresh()
        self.store._listeners.add(self)
        self._task = asyncio.create_task(self._run())

    def _stop(self) -> None:
        self.store._listeners.discard(self)
        if self._task is not None:
            self._task.cancel()

    async def _refresh(self) -> None:
        records = await self.store.query(self.collection, self.predicate)
        fingerprint = tuple(record.model_dump_json() for record in records)
        if fingerprint == self._last:
            return
        self._last = fingerprint
        self._deliver(records)

    def _deliver(self, records: list[Any]) -> None:
        if not self.handle.active:
            return
        try:
            self.on_change(records)
        except Exception as e:
            logger.error(
                "subscriber_callback_failed",
                collection=self.collection.value,
                predicate=str(self.predicate),
                error=str(e),
                exc_info=True,
            )

    async def _run(self) -> None:
        failures = 0
        try:
            while self.handle.active:
                try:
                    if self._pubsub is None:
                        self._pubsub = await self.store._open_pubsub(self.collection)
                        # Catch up on anything committed while we were not listening
                        await self._refresh()
                    message = await self._pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=self.store.poll_interval
                    )
                    if message is not None:
                        await self._refresh()
                    failures = 0
                except (*TRANSIENT_ERRORS, StoreUnavailable) as e:
                    await self._close_pubsub()
                    if failures >= self.store.resubscribe_max_attempts:
                        logger.error(
                            "store_subscription_lost",
                            collection=self.collection.value,
                            predicate=str(self.predicate),
                            attempts=failures,
                            error=str(e),
                        )
                        self._fail(
                            StoreUnavailable(f"subscription to {self.collection.value} lost: {e}")
                        )
                        return
                    delay = self.store.backoff(failures)
                    failures += 1
                    logger.warning(
                        "store_resubscribing",
                        collection=self.collection.value,
                        attempt=failures,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("store_listener_cancelled", collection=self.collection.value)
        finally:
            self.store._listeners.discard(self)
            await self._close_pubsub()

    def _fail(self, error: StoreUnavailable) -> None:
        if not self.handle.active:
            return
        self.store._listeners.discard(self)
        if self.on_error is not None:
            self.on_error(error)

    async def _close_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except TRANSIENT_ERRORS as e:
            logger.debug("pubsub_close_failed", error=str(e))
