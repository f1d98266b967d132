import pytest

from errors import FeedUnavailable
from feed import stream_id_key


@pytest.mark.asyncio
async def test_appended_subscription_replays_last_n_then_follows(store):
    feed = store.connect()
    for n in range(5):
        await feed.push("room/r1/messages", {"n": n})

    received = []
    await feed.subscribe_appended("room/r1/messages", 3, lambda item_id, value: received.append(value["n"]))
    await feed.push("room/r1/messages", {"n": 5})

    assert received == [2, 3, 4, 5]


@pytest.mark.asyncio
async def test_pushed_ids_increase_in_creation_order(store):
    feed = store.connect()
    ids = [await feed.push("room/r1/messages", {"n": n}) for n in range(20)]

    keys = [stream_id_key(i) for i in ids]
    assert keys == sorted(keys)
    assert len(set(ids)) == len(ids)


@pytest.mark.asyncio
async def test_snapshot_subscription_sees_every_change(store):
    feed = store.connect()
    snapshots = []
    await feed.subscribe_snapshot("room/r1/participants", snapshots.append)

    await feed.write("room/r1/participants/alice", {"name": "Alice"})
    await feed.remove("room/r1/participants/alice")

    assert snapshots == [{}, {"alice": {"name": "Alice"}}, {}]


@pytest.mark.asyncio
async def test_removing_room_drops_subtree(store):
    feed = store.connect()
    await feed.write("room/r1", {"createdAt": 1})
    await feed.write("room/r1/participants/alice", {"name": "Alice"})
    await feed.push("room/r1/messages", {"text": "hi"})

    await feed.remove("room/r1")

    assert await feed.read_once("room/r1") is None
    assert await feed.read_once("room/r1/participants") is None
    assert store.items("room/r1/messages") == []


@pytest.mark.asyncio
async def test_disconnect_runs_cleanup_on_store_side(store):
    alice = store.connect()
    observer = store.connect()
    await alice.write("room/r1/participants/alice", {"name": "Alice"})
    await alice.on_disconnect_cleanup("room/r1/participants/alice")

    await alice.disconnect()

    assert await observer.read_once("room/r1/participants/alice") is None


@pytest.mark.asyncio
async def test_closed_connection_is_unavailable(store):
    feed = store.connect()
    await feed.close()

    with pytest.raises(FeedUnavailable):
        await feed.write("room/r1", {"createdAt": 1})


@pytest.mark.asyncio
async def test_fail_on_matches_operation_and_prefix(store):
    feed = store.connect()
    feed.fail_on("write", "room/r1/participants")

    await feed.write("room/r1", {"createdAt": 1})
    with pytest.raises(FeedUnavailable) as excinfo:
        await feed.write("room/r1/participants/alice", {"name": "Alice"})
    assert excinfo.value.path == "room/r1/participants/alice"

    feed.heal()
    await feed.write("room/r1/participants/alice", {"name": "Alice"})


@pytest.mark.asyncio
async def test_closing_subscription_unregisters_it(store):
    feed = store.connect()
    sub = await feed.subscribe_snapshot("room/r1/participants", lambda snapshot: None)
    assert store.subscriber_count("room/r1/participants") == 1

    sub.close()

    assert store.subscriber_count("room/r1/participants") == 0
