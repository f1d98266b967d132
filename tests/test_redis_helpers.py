import pytest

from backend import create_store, decode_value, encode_value, node_key, stream_key, subtree_pattern
from memory_backend import MemoryStore
from paths import participant_path, split_path


def test_logical_paths_map_to_redis_keys():
    assert node_key("room/abc1234/participants") == "feed:node:room/abc1234/participants"
    assert stream_key("room/abc1234/messages") == "feed:stream:room/abc1234/messages"
    assert subtree_pattern("room/abc1234") == "feed:*:room/abc1234/*"


def test_split_path():
    assert split_path(participant_path("r1", "alice")) == ("room/r1/participants", "alice")
    assert split_path("/room/") == ("", "room")
    with pytest.raises(ValueError):
        split_path("/")


def test_values_round_trip_as_json():
    value = {"fromId": "alice", "text": "hi", "at": 1}

    assert decode_value(encode_value(value)) == value
    assert decode_value("plain") == "plain"


def test_create_store_selects_backend():
    assert isinstance(create_store("memory"), MemoryStore)
    with pytest.raises(ValueError):
        create_store("carrier-pigeon")
