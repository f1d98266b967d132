from session.messages import MessageStream


def _msg(text="hi", from_id="alice"):
    return {"fromId": from_id, "fromName": from_id.title(), "text": text, "at": 1700000000000}


def test_duplicate_notification_is_applied_once():
    stream = MessageStream()

    assert stream.apply_added("1-0", _msg()) is not None
    assert stream.apply_added("1-0", _msg()) is None

    assert [m.id for m in stream.as_list()] == ["1-0"]


def test_messages_stay_sorted_by_feed_id():
    stream = MessageStream()
    ids = ["5-0", "5-1", "9-0", "10-0", "100-3"]

    for item_id in ids:
        stream.apply_added(item_id, _msg(text=item_id))
        keys = [tuple(int(p) for p in m.id.split("-")) for m in stream.as_list()]
        assert keys == sorted(keys)

    assert [m.text for m in stream.as_list()] == ids


def test_cap_evicts_oldest_first():
    stream = MessageStream(limit=200)

    for n in range(1, 206):
        stream.apply_added(f"{n}-0", _msg(text=str(n)))

    messages = stream.as_list()
    assert len(messages) == 200
    assert messages[0].id == "6-0"
    assert messages[-1].id == "205-0"
    assert "5-0" not in stream


def test_replay_of_evicted_message_is_dropped():
    stream = MessageStream(limit=3)
    for n in range(1, 5):
        stream.apply_added(f"{n}-0", _msg())

    assert stream.apply_added("1-0", _msg()) is None
    assert [m.id for m in stream.as_list()] == ["2-0", "3-0", "4-0"]


def test_malformed_items_are_ignored():
    stream = MessageStream()

    assert stream.apply_added("1-0", None) is None
    assert stream.apply_added("2-0", {"text": "missing sender"}) is None
    assert stream.apply_added("not-an-id", _msg()) is None
    assert len(stream) == 0

    assert stream.apply_added("3-0", _msg()) is not None


def test_message_fields_are_mapped():
    stream = MessageStream()
    message = stream.apply_added("7-2", _msg(text="hello", from_id="bob"))

    assert message.id == "7-2"
    assert message.from_id == "bob"
    assert message.from_name == "Bob"
    assert message.text == "hello"
    assert message.at == 1700000000000


def test_clear_forgets_ids():
    stream = MessageStream()
    stream.apply_added("3-0", _msg())
    stream.clear()

    assert stream.apply_added("1-0", _msg()) is not None
