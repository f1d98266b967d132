from feed import Subscription
from session.listeners import ListenerRegistry


class ExplodingHandle:
    closed = False

    def close(self):
        raise RuntimeError("already torn down")


def test_release_closes_every_handle_once():
    closes = []
    registry = ListenerRegistry("r1")
    a = registry.register(Subscription("room/r1/participants", "snapshot", on_close=closes.append))
    b = registry.register(Subscription("room/r1/messages", "appended", on_close=closes.append))

    assert registry.release_all() == 2
    assert a.closed and b.closed
    assert closes == [a, b]
    assert registry.active == 0


def test_release_all_is_idempotent():
    registry = ListenerRegistry("r1")
    registry.register(Subscription("room/r1/messages", "appended"))

    registry.release_all()
    assert registry.release_all() == 0
    assert len(registry) == 0


def test_release_all_with_no_handles():
    assert ListenerRegistry().release_all() == 0


def test_failing_handle_does_not_block_the_rest():
    registry = ListenerRegistry("r1")
    registry.register(ExplodingHandle())
    registry.register(object())
    good = registry.register(Subscription("room/r1/messages", "appended"))

    registry.release_all()

    assert good.closed


def test_already_closed_handle_is_tolerated():
    registry = ListenerRegistry("r1")
    sub = registry.register(Subscription("room/r1/messages", "appended"))
    sub.close()

    registry.release_all()

    assert sub.closed


def test_closed_subscription_drops_notifications():
    received = []
    sub = Subscription("room/r1/messages", "appended")

    assert sub.dispatch(received.append, "first")
    sub.close()
    assert not sub.dispatch(received.append, "second")

    assert received == ["first"]
