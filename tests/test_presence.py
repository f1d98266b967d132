from session.presence import PresenceTracker


def _p(identity_id, name=None, joined_at=1):
    return {"id": identity_id, "name": name or identity_id, "joinedAt": joined_at}


def test_snapshot_replaces_previous_view():
    tracker = PresenceTracker()
    tracker.apply_snapshot({"alice": _p("alice"), "bob": _p("bob")})
    tracker.apply_snapshot({"bob": _p("bob", name="Bobby"), "carol": _p("carol")})

    assert set(tracker.participants) == {"bob", "carol"}
    assert "alice" not in tracker
    assert tracker.participants["bob"].name == "Bobby"


def test_empty_snapshot_clears_view():
    tracker = PresenceTracker()
    tracker.apply_snapshot({"alice": _p("alice")})
    tracker.apply_snapshot(None)

    assert len(tracker) == 0


def test_entries_are_keyed_by_snapshot_key():
    tracker = PresenceTracker()
    tracker.apply_snapshot({"alice": {"name": "Alice", "joinedAt": 5}})

    assert tracker.participants["alice"].id == "alice"


def test_malformed_entries_are_skipped():
    tracker = PresenceTracker()
    tracker.apply_snapshot({"alice": _p("alice"), "ghost": "oops", "nameless": {"joinedAt": 3}})

    assert list(tracker.participants) == ["alice"]


def test_list_is_ordered_by_join_time():
    tracker = PresenceTracker()
    tracker.apply_snapshot({"late": _p("late", joined_at=20), "early": _p("early", joined_at=10)})

    assert [p.id for p in tracker.as_list()] == ["early", "late"]
