"""Realtime feed abstraction consumed by the room session engine.

A feed is one client's connection to a shared realtime datastore. Values live
at slash-separated logical paths (see ``paths.py``). Collections are either
keyed children (written with ``write``) or append-only streams (written with
``push``), each item of which receives a feed-assigned id that increases in
creation order.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from logging_config import get_logger

logger = get_logger(__name__)

SnapshotCallback = Callable[[Dict[str, Any]], None]
ItemAddedCallback = Callable[[str, Any], None]


def stream_id_key(item_id: str) -> Tuple[int, int]:
    """Ordering key of a feed-assigned id of the form "<millis>-<sequence>"."""
    millis, _, sequence = str(item_id).partition("-")
    return int(millis), int(sequence or 0)


def next_stream_id(last: Optional[Tuple[int, int]], now_ms: Optional[int] = None) -> Tuple[int, int]:
    """Next id after ``last``, never going backwards even if the clock does."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    if last is None or now_ms > last[0]:
        return now_ms, 0
    return last[0], last[1] + 1


def format_stream_id(key: Tuple[int, int]) -> str:
    return f"{key[0]}-{key[1]}"


def now_ms() -> int:
    return int(time.time() * 1000)


class Subscription:
    """Handle for one live subscription. Closing it is idempotent."""

    def __init__(self, path: str, kind: str, on_close: Optional[Callable[["Subscription"], None]] = None):
        self.path = path
        self.kind = kind
        self.closed = False
        self._task: Optional[asyncio.Task] = None
        self._on_close = on_close

    def attach_task(self, task: asyncio.Task):
        self._task = task
        if self.closed:
            task.cancel()

    def dispatch(self, callback: Callable, *args) -> bool:
        """Invoke ``callback`` unless the handle was closed meanwhile."""
        if self.closed:
            logger.debug(f"Dropping notification for closed {self.kind} subscription on {self.path}")
            return False
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Subscriber callback failed for {self.kind} subscription on {self.path}: {e}", exc_info=True)
            return False
        return True

    def close(self) -> bool:
        if self.closed:
            return False
        self.closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self._on_close is not None:
            self._on_close(self)
        logger.debug(f"Closed {self.kind} subscription on {self.path}")
        return True

    def __repr__(self):
        state = "closed" if self.closed else "open"
        return f"<Subscription {self.kind} {self.path} {state}>"


class RemoteFeed(ABC):
    """Capability set of the realtime datastore.

    Every coroutine raises ``errors.FeedUnavailable`` when the operation did
    not reach the store.
    """

    name = "feed"

    @abstractmethod
    async def write(self, path: str, value: Any) -> None:
        """Upsert ``value`` at ``path``; last write wins."""

    @abstractmethod
    async def push(self, collection_path: str, value: Any) -> str:
        """Append ``value`` to a stream and return its feed-assigned id."""

    @abstractmethod
    async def remove(self, path: str) -> None:
        """Remove the value at ``path`` together with everything below it."""

    @abstractmethod
    async def read_once(self, path: str) -> Any:
        """One-shot read. Returns None when nothing exists at ``path``."""

    @abstractmethod
    async def subscribe_snapshot(self, path: str, on_snapshot: SnapshotCallback) -> Subscription:
        """Deliver the full keyed collection at ``path`` now and on every change."""

    @abstractmethod
    async def subscribe_appended(self, collection_path: str, limit_to_last: int,
                                 on_item_added: ItemAddedCallback) -> Subscription:
        """Deliver the last ``limit_to_last`` items, then every new item, in creation order."""

    @abstractmethod
    async def on_disconnect_cleanup(self, path: str) -> None:
        """Arrange for ``path`` to be removed if this connection is lost."""

    async def close(self) -> None:
        """Drop the connection. Registered disconnect cleanups take effect."""
