"""In-process realtime store.

``MemoryStore`` plays the role of the shared server; every client gets its own
``MemoryFeed`` connection from ``MemoryStore.connect()``. Notifications are
delivered synchronously to every subscriber, in write order, before the
writing coroutine resumes. Disconnect cleanups registered by a connection run
on the store side when that connection is closed.
"""
import asyncio
import copy
import uuid
from typing import Any, Dict, List, Set, Tuple

from errors import FeedUnavailable
from feed import (
    ItemAddedCallback,
    RemoteFeed,
    SnapshotCallback,
    Subscription,
    format_stream_id,
    next_stream_id,
)
from logging_config import get_logger
from paths import split_path

logger = get_logger(__name__)


def _in_subtree(path: str, root: str) -> bool:
    return path == root or path.startswith(root + "/")


class MemoryStore:
    name = "memory"

    def __init__(self):
        self._nodes: Dict[str, Dict[str, Any]] = {}
        self._streams: Dict[str, List[Tuple[str, Any]]] = {}
        self._last_ids: Dict[str, Tuple[int, int]] = {}
        self._snapshot_subs: Dict[str, List[Tuple[Subscription, SnapshotCallback]]] = {}
        self._appended_subs: Dict[str, List[Tuple[Subscription, ItemAddedCallback]]] = {}
        self._cleanups: Dict[str, Set[str]] = {}
        logger.info("Initialized in-memory feed store")

    def connect(self, latency: float = 0.0) -> "MemoryFeed":
        connection_id = uuid.uuid4().hex
        self._cleanups[connection_id] = set()
        logger.debug(f"Opened memory feed connection {connection_id}")
        return MemoryFeed(self, connection_id, latency=latency)

    async def aclose(self):
        self._cleanups.clear()

    def set(self, path: str, value: Any):
        parent, leaf = split_path(path)
        self._nodes.setdefault(parent, {})[leaf] = copy.deepcopy(value)
        self._notify_snapshot(parent)

    def get(self, path: str) -> Any:
        parent, leaf = split_path(path)
        value = self._nodes.get(parent, {}).get(leaf)
        if value is None and self._nodes.get(path):
            value = self._nodes[path]
        return copy.deepcopy(value)

    def append(self, collection_path: str, value: Any) -> str:
        key = next_stream_id(self._last_ids.get(collection_path))
        self._last_ids[collection_path] = key
        item_id = format_stream_id(key)
        self._streams.setdefault(collection_path, []).append((item_id, copy.deepcopy(value)))
        for sub, callback in list(self._appended_subs.get(collection_path, [])):
            sub.dispatch(callback, item_id, copy.deepcopy(value))
        return item_id

    def delete(self, path: str):
        parent, leaf = split_path(path)
        self._nodes.get(parent, {}).pop(leaf, None)
        emptied = [p for p in self._nodes if _in_subtree(p, path)]
        for node_path in emptied:
            del self._nodes[node_path]
        for stream_path in [p for p in self._streams if _in_subtree(p, path)]:
            del self._streams[stream_path]
        for registered in self._cleanups.values():
            registered.difference_update({p for p in registered if _in_subtree(p, path)})
        self._notify_snapshot(parent)
        for node_path in emptied:
            self._notify_snapshot(node_path)

    def snapshot(self, path: str) -> Dict[str, Any]:
        return copy.deepcopy(self._nodes.get(path, {}))

    def items(self, collection_path: str) -> List[Tuple[str, Any]]:
        return copy.deepcopy(self._streams.get(collection_path, []))

    def add_snapshot_listener(self, path: str, callback: SnapshotCallback) -> Subscription:
        subs = self._snapshot_subs.setdefault(path, [])
        sub = Subscription(path, "snapshot", on_close=self._detach(subs))
        subs.append((sub, callback))
        sub.dispatch(callback, self.snapshot(path))
        return sub

    def add_appended_listener(self, collection_path: str, limit_to_last: int,
                              callback: ItemAddedCallback) -> Subscription:
        subs = self._appended_subs.setdefault(collection_path, [])
        sub = Subscription(collection_path, "appended", on_close=self._detach(subs))
        subs.append((sub, callback))
        history = self._streams.get(collection_path, [])
        for item_id, value in history[-limit_to_last:] if limit_to_last > 0 else []:
            sub.dispatch(callback, item_id, copy.deepcopy(value))
        return sub

    def register_cleanup(self, connection_id: str, path: str):
        self._cleanups.setdefault(connection_id, set()).add(path)

    def run_cleanups(self, connection_id: str):
        paths = self._cleanups.pop(connection_id, set())
        for path in sorted(paths):
            logger.info(f"Connection {connection_id} lost, removing {path}")
            self.delete(path)

    def subscriber_count(self, path: str) -> int:
        return len(self._snapshot_subs.get(path, [])) + len(self._appended_subs.get(path, []))

    def _notify_snapshot(self, path: str):
        for sub, callback in list(self._snapshot_subs.get(path, [])):
            sub.dispatch(callback, self.snapshot(path))

    @staticmethod
    def _detach(subs: list):
        def on_close(sub: Subscription):
            subs[:] = [entry for entry in subs if entry[0] is not sub]
        return on_close


class MemoryFeed(RemoteFeed):
    """One client connection to a ``MemoryStore``.

    ``latency`` is awaited before every operation, so other tasks may run
    while an operation is in flight. ``fail_on`` makes matching operations
    raise ``FeedUnavailable`` until ``heal`` is called.
    """

    name = "memory"

    def __init__(self, store: MemoryStore, connection_id: str, latency: float = 0.0):
        self.store = store
        self.connection_id = connection_id
        self.latency = latency
        self.connected = True
        self._failures: List[Tuple[str, str]] = []
        self._subscriptions: List[Subscription] = []

    def fail_on(self, operation: str, path_prefix: str = ""):
        self._failures.append((operation, path_prefix))

    def heal(self):
        self._failures.clear()

    async def _roundtrip(self, operation: str, path: str):
        await asyncio.sleep(self.latency)
        if not self.connected:
            raise FeedUnavailable(f"{operation} {path}: connection closed", path=path)
        for failing_op, prefix in self._failures:
            if failing_op == operation and path.startswith(prefix):
                raise FeedUnavailable(f"{operation} {path}: store unreachable", path=path)

    async def write(self, path: str, value: Any) -> None:
        await self._roundtrip("write", path)
        self.store.set(path, value)

    async def push(self, collection_path: str, value: Any) -> str:
        await self._roundtrip("push", collection_path)
        return self.store.append(collection_path, value)

    async def remove(self, path: str) -> None:
        await self._roundtrip("remove", path)
        self.store.delete(path)

    async def read_once(self, path: str) -> Any:
        await self._roundtrip("read", path)
        return self.store.get(path)

    async def subscribe_snapshot(self, path: str, on_snapshot: SnapshotCallback) -> Subscription:
        await self._roundtrip("subscribe", path)
        sub = self.store.add_snapshot_listener(path, on_snapshot)
        self._track(sub)
        return sub

    async def subscribe_appended(self, collection_path: str, limit_to_last: int,
                                 on_item_added: ItemAddedCallback) -> Subscription:
        await self._roundtrip("subscribe", collection_path)
        sub = self.store.add_appended_listener(collection_path, limit_to_last, on_item_added)
        self._track(sub)
        return sub

    def _track(self, sub: Subscription):
        self._subscriptions = [s for s in self._subscriptions if not s.closed]
        self._subscriptions.append(sub)

    async def on_disconnect_cleanup(self, path: str) -> None:
        await self._roundtrip("on_disconnect", path)
        self.store.register_cleanup(self.connection_id, path)

    async def close(self) -> None:
        if not self.connected:
            return
        self.connected = False
        for sub in self._subscriptions:
            sub.close()
        self._subscriptions.clear()
        self.store.run_cleanups(self.connection_id)
        logger.debug(f"Closed memory feed connection {self.connection_id}")

    disconnect = close
