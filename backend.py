import asyncio
import json
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from constants import (
    FEED_BACKEND,
    MESSAGE_STREAM_MAXLEN,
    PRESENCE_HEARTBEAT_SECONDS,
    PRESENCE_LEASE_SECONDS,
    REDIS_HOST,
    REDIS_PORT,
    REDIS_URL,
    SUBSCRIPTION_BLOCK_MS,
)
from errors import FeedUnavailable
from feed import ItemAddedCallback, RemoteFeed, SnapshotCallback, Subscription
from logging_config import get_logger
from memory_backend import MemoryStore
from paths import split_path
from redis_keys import REDIS_CHANGED_CHANNEL, REDIS_LEASE_KEY, REDIS_NODE_KEY, REDIS_STREAM_KEY

logger = get_logger(__name__)

NODE_KEY_PREFIX = REDIS_NODE_KEY.format(path="")


def node_key(path: str) -> str:
    return REDIS_NODE_KEY.format(path=path)


def stream_key(path: str) -> str:
    return REDIS_STREAM_KEY.format(path=path)


def lease_key(path: str) -> str:
    return REDIS_LEASE_KEY.format(path=path)


def changed_channel(path: str) -> str:
    return REDIS_CHANGED_CHANNEL.format(path=path)


def subtree_pattern(path: str) -> str:
    """SCAN pattern matching every node, stream and lease key below ``path``."""
    return f"feed:*:{path}/*"


def encode_value(value: Any) -> str:
    return json.dumps(value)


def decode_value(raw: Any) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


@contextmanager
def unavailable_on_error(operation: str, path: str):
    try:
        yield
    except (RedisError, OSError) as e:
        logger.error(f"Redis {operation} failed for {path}: {e}")
        raise FeedUnavailable(f"{operation} {path}: {e}", path=path) from e


class RedisStore:
    name = "redis"

    def __init__(self, url: str = REDIS_URL, client: Optional[redis.Redis] = None):
        self.redis_client = client or redis.Redis.from_url(url, decode_responses=True)
        logger.info(f"Initializing RedisStore with connection to {REDIS_HOST}:{REDIS_PORT}")

    async def ping(self):
        with unavailable_on_error("ping", "/"):
            await self.redis_client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")

    def connect(self) -> "RedisFeed":
        return RedisFeed(self.redis_client)

    async def aclose(self):
        await self.redis_client.aclose()


class RedisFeed(RemoteFeed):
    """RemoteFeed over Redis hashes, streams and pub/sub.

    Keyed collections are hashes, appended collections are streams whose ids
    Redis assigns in creation order. Redis has no server-side disconnect
    hook, so ``on_disconnect_cleanup`` takes a lease on the path instead: a
    heartbeat keeps it alive while this connection lives, and any reader of
    the collection reaps entries whose lease has lapsed.
    """

    name = "redis"

    def __init__(self, client: redis.Redis, lease_seconds: int = PRESENCE_LEASE_SECONDS,
                 heartbeat_seconds: int = PRESENCE_HEARTBEAT_SECONDS, block_ms: int = SUBSCRIPTION_BLOCK_MS):
        self.redis_client = client
        self.connection_id = uuid.uuid4().hex
        self.lease_seconds = lease_seconds
        self.heartbeat_seconds = heartbeat_seconds
        self.block_ms = block_ms
        self.connected = True
        self._leases: Set[str] = set()
        self._heartbeat: Optional[asyncio.Task] = None
        self._subscriptions: List[Subscription] = []

    async def write(self, path: str, value: Any) -> None:
        parent, leaf = split_path(path)
        with unavailable_on_error("write", path):
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.hset(node_key(parent), leaf, encode_value(value))
                pipe.publish(changed_channel(parent), leaf)
                await pipe.execute()
        logger.debug(f"Wrote {path}")

    async def push(self, collection_path: str, value: Any) -> str:
        with unavailable_on_error("push", collection_path):
            item_id = await self.redis_client.xadd(
                stream_key(collection_path),
                {"value": encode_value(value)},
                maxlen=MESSAGE_STREAM_MAXLEN,
                approximate=True,
            )
        logger.debug(f"Appended {item_id} to {collection_path}")
        return item_id

    async def remove(self, path: str) -> None:
        parent, leaf = split_path(path)
        with unavailable_on_error("remove", path):
            doomed = [node_key(path), stream_key(path), lease_key(path)]
            async for key in self.redis_client.scan_iter(match=subtree_pattern(path)):
                doomed.append(key)
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.hdel(node_key(parent), leaf)
                pipe.zrem(lease_key(parent), leaf)
                pipe.delete(*doomed)
                pipe.publish(changed_channel(parent), leaf)
                for key in doomed:
                    if key.startswith(NODE_KEY_PREFIX):
                        pipe.publish(changed_channel(key[len(NODE_KEY_PREFIX):]), "")
                await pipe.execute()
        self._leases = {p for p in self._leases if p != path and not p.startswith(path + "/")}
        logger.debug(f"Removed {path} ({len(doomed)} keys)")

    async def read_once(self, path: str) -> Any:
        parent, leaf = split_path(path)
        with unavailable_on_error("read", path):
            raw = await self.redis_client.hget(node_key(parent), leaf)
            if raw is not None:
                return decode_value(raw)
            children = await self.redis_client.hgetall(node_key(path))
        return {k: decode_value(v) for k, v in children.items()} or None

    async def _has_lapsed_lease(self, path: str) -> bool:
        earliest = await self.redis_client.zrange(lease_key(path), 0, 0, withscores=True)
        return bool(earliest) and earliest[0][1] <= time.time()

    async def _read_snapshot(self, path: str) -> Dict[str, Any]:
        expired = await self.redis_client.zrangebyscore(lease_key(path), "-inf", time.time())
        if expired:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.hdel(node_key(path), *expired)
                pipe.zrem(lease_key(path), *expired)
                pipe.publish(changed_channel(path), "")
                await pipe.execute()
            logger.info(f"Reaped {len(expired)} entries with lapsed leases under {path}")
        raw = await self.redis_client.hgetall(node_key(path))
        return {k: decode_value(v) for k, v in raw.items()}

    async def subscribe_snapshot(self, path: str, on_snapshot: SnapshotCallback) -> Subscription:
        sub = Subscription(path, "snapshot", on_close=self._forget)
        with unavailable_on_error("subscribe", path):
            pubsub = self.redis_client.pubsub()
            await pubsub.subscribe(changed_channel(path))
            try:
                snapshot = await self._read_snapshot(path)
            except BaseException:
                await pubsub.aclose()
                raise
        self._subscriptions.append(sub)
        sub.dispatch(on_snapshot, snapshot)
        sub.attach_task(asyncio.create_task(self._watch_snapshot(sub, pubsub, on_snapshot)))
        logger.debug(f"Subscribed to snapshots of {path}")
        return sub

    async def _watch_snapshot(self, sub: Subscription, pubsub, on_snapshot: SnapshotCallback):
        try:
            while not sub.closed:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=self.block_ms / 1000)
                try:
                    # a crashed holder publishes nothing, so idle ticks look for lapsed leases
                    if message is None and not await self._has_lapsed_lease(sub.path):
                        continue
                    snapshot = await self._read_snapshot(sub.path)
                except (RedisError, OSError) as e:
                    logger.warning(f"Could not refresh snapshot of {sub.path}: {e}")
                    continue
                sub.dispatch(on_snapshot, snapshot)
        except asyncio.CancelledError:
            logger.debug(f"Snapshot watcher cancelled for {sub.path}")
        except (RedisError, OSError) as e:
            logger.error(f"Snapshot watcher for {sub.path} stopped: {e}", exc_info=True)
        except Exception as e:
            logger.error(f"Unexpected error in snapshot watcher for {sub.path}: {e}", exc_info=True)
        finally:
            try:
                await pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.debug(f"Error closing pub/sub for {sub.path}: {e}")

    async def subscribe_appended(self, collection_path: str, limit_to_last: int,
                                 on_item_added: ItemAddedCallback) -> Subscription:
        key = stream_key(collection_path)
        sub = Subscription(collection_path, "appended", on_close=self._forget)
        with unavailable_on_error("subscribe", collection_path):
            history = await self.redis_client.xrevrange(key, count=max(limit_to_last, 1))
        history.reverse()
        last_id = history[-1][0] if history else "0-0"
        self._subscriptions.append(sub)
        for item_id, fields in history[-limit_to_last:] if limit_to_last > 0 else []:
            sub.dispatch(on_item_added, item_id, decode_value(fields.get("value")))
        sub.attach_task(asyncio.create_task(self._tail_stream(sub, key, last_id, on_item_added)))
        logger.debug(f"Subscribed to {collection_path} after {last_id} ({len(history)} history items)")
        return sub

    async def _tail_stream(self, sub: Subscription, key: str, last_id: str, on_item_added: ItemAddedCallback):
        try:
            while not sub.closed:
                try:
                    response = await self.redis_client.xread({key: last_id}, count=100, block=self.block_ms)
                except (RedisError, OSError) as e:
                    logger.warning(f"Stream read failed for {sub.path}, retrying: {e}")
                    await asyncio.sleep(self.block_ms / 1000)
                    continue
                for _stream, entries in response or []:
                    for item_id, fields in entries:
                        last_id = item_id
                        sub.dispatch(on_item_added, item_id, decode_value(fields.get("value")))
        except asyncio.CancelledError:
            logger.debug(f"Stream tail cancelled for {sub.path}")
        except Exception as e:
            logger.error(f"Unexpected error in stream tail for {sub.path}: {e}", exc_info=True)

    async def on_disconnect_cleanup(self, path: str) -> None:
        parent, leaf = split_path(path)
        with unavailable_on_error("on_disconnect", path):
            await self.redis_client.zadd(lease_key(parent), {leaf: time.time() + self.lease_seconds})
        self._leases.add(path)
        if self._heartbeat is None or self._heartbeat.done():
            self._heartbeat = asyncio.create_task(self._renew_leases())
        logger.debug(f"Leased {path} for {self.lease_seconds}s")

    async def _renew_leases(self):
        try:
            while self._leases:
                await asyncio.sleep(self.heartbeat_seconds)
                expiry = time.time() + self.lease_seconds
                try:
                    async with self.redis_client.pipeline(transaction=False) as pipe:
                        for path in list(self._leases):
                            parent, leaf = split_path(path)
                            pipe.zadd(lease_key(parent), {leaf: expiry}, xx=True)
                        await pipe.execute()
                except (RedisError, OSError) as e:
                    logger.warning(f"Lease renewal failed for connection {self.connection_id}: {e}")
        except asyncio.CancelledError:
            logger.debug(f"Lease heartbeat stopped for connection {self.connection_id}")

    def _forget(self, sub: Subscription):
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    async def close(self) -> None:
        if not self.connected:
            return
        self.connected = False
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        for sub in list(self._subscriptions):
            sub.close()
        # Act on our own leases now rather than waiting for them to lapse
        for path in sorted(self._leases):
            try:
                await self.remove(path)
            except FeedUnavailable:
                logger.warning(f"Leaving {path} to lease expiry")
        self._leases.clear()
        logger.debug(f"Closed redis feed connection {self.connection_id}")


def create_store(backend: str = FEED_BACKEND):
    """Build the shared store that hands out one feed connection per client."""
    if backend == "memory":
        return MemoryStore()
    if backend == "redis":
        return RedisStore()
    raise ValueError(f"Unknown feed backend: {backend}")
