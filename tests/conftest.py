"""Shared test fixtures for the room session engine."""
import os

os.environ.setdefault("FEED_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest

from memory_backend import MemoryStore
from schemas.rooms import Identity
from session.room_session import RoomSession


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_session(store):
    """Build a session on its own connection to the shared store."""

    def factory(identity_id: str = "alice", display_name: str = None, latency: float = 0.0, history_limit: int = 200):
        feed = store.connect(latency=latency)
        return RoomSession(feed, Identity(id=identity_id), display_name or identity_id, history_limit=history_limit)

    return factory
