"""
Optimistic engine test configuration.

Fixtures build a small board: four status columns, three work orders and two
counted spare parts, mirrored in a MemoryStore.
"""

import asyncio

import pytest

from engine.optimistic.audit import AuditAppender
from engine.optimistic.cache import EntityCache
from engine.optimistic.dispatcher import CommitDispatcher
from engine.optimistic.notifications import RecordingNotifier
from engine.optimistic.store import MemoryStore
from engine.optimistic.types import Entity

STATUSES = ("Open", "On Hold", "In Progress", "Completed")


@pytest.fixture
def entities():
    return [
        Entity(id="wo1", category="Open", fields={"title": "Replace pump seal"}),
        Entity(id="wo2", category="Open", fields={"title": "Inspect conveyor"}),
        Entity(id="wo3", category="In Progress", fields={"title": "Calibrate sensor"}),
        Entity(id="p1", category="Shelf A", count=10, fields={"part_name": "Bearing"}),
        Entity(id="p2", category="Shelf A", count=0, fields={"part_name": "Gasket"}),
    ]


@pytest.fixture
def cache(entities):
    return EntityCache(categories=STATUSES, entities=entities)


@pytest.fixture
def store(entities):
    return MemoryStore({e.id: {"category": e.category, "count": e.count, "fields": dict(e.fields)} for e in entities})


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit(store):
    """No delay between retries, so background retries finish within a test."""
    return AuditAppender(store, retry_attempts=2, retry_delay=0)


@pytest.fixture
def dispatcher(cache, store, notifier, audit):
    return CommitDispatcher(cache, store, notifier, audit=audit, commit_timeout=5.0)


@pytest.fixture
def spin():
    """Let pending tasks run until they block again."""

    async def _spin(times: int = 10) -> None:
        for _ in range(times):
            await asyncio.sleep(0)

    return _spin
