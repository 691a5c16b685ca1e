"""Shared fixtures for progress tracker tests."""

import asyncio
from datetime import UTC, datetime, timedelta
import itertools

import pytest

from progress_tracker.access import StaticIdentityProvider
from progress_tracker.config import Settings
from progress_tracker.service import ProgressTracker
from progress_tracker.store.memory import InMemoryEntityStore


class TickingClock:
    """Deterministic clock: each call is one second after the previous one."""

    def __init__(self, start: datetime | None = None):
        self.start = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        self._ticks = itertools.count()

    def __call__(self) -> datetime:
        return self.start + timedelta(seconds=next(self._ticks))


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(clock):
    return InMemoryEntityStore(clock=clock)


@pytest.fixture
def identity():
    return StaticIdentityProvider("owner-a")


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def tracker(store, identity, settings, clock):
    return ProgressTracker(store, identity, settings, clock=clock)


class HeldSubscribes:
    """Store wrapper whose subscribes to one collection wait for ``release``."""

    def __init__(self, store, collection):
        self._store = store
        self.collection = collection
        self.waiting = asyncio.Event()
        self.release = asyncio.Event()

    def __getattr__(self, name):
        return getattr(self._store, name)

    async def subscribe(self, collection, *args, **kwargs):
        if collection is self.collection:
            self.waiting.set()
            await self.release.wait()
        return await self._store.subscribe(collection, *args, **kwargs)


@pytest.fixture
def hold_subscribes(store):
    """Wrap the test store so subscribes to the given collection block until released."""
    return lambda collection: HeldSubscribes(store, collection)
