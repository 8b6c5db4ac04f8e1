from datetime import timedelta

import pytest

from flockbot.errors import StorageError, TransportError, ValidationError
from flockbot.storage import PersistentMap
from flockbot.watchers.base import WatcherKey
from flockbot.watchers.timeline import TimelineKind, TimelineWatcher


def make_watcher(db, clock, timeline="user_timeline", user="alice", **kwargs):
    return TimelineWatcher(
        state=db.open_map("state:t"),
        seen_ids=db.open_map("statuses:t"),
        timeline=timeline,
        user=user,
        interval=kwargs.pop("interval", timedelta(minutes=5)),
        clock=clock,
        transaction=db.transaction,
        **kwargs,
    )


def test_first_check_returns_everything_then_nothing(db, clock, client) -> None:
    client.timelines[("user_timeline", "alice")] = [{"id": 1}, {"id": 2}, {"id": 3}]
    watcher = make_watcher(db, clock)

    assert watcher.check(client) == [{"id": 1}, {"id": 2}, {"id": 3}]
    assert set(watcher.seen_ids) == {"1", "2", "3"}

    clock.advance(minutes=5)
    assert watcher.check(client) == []
    assert len(client.calls) == 2


def test_only_unseen_items_returned_in_remote_order(db, clock, client) -> None:
    watcher = make_watcher(db, clock)
    client.timelines[("user_timeline", "alice")] = [{"id": 2}, {"id": 1}]
    watcher.check(client)

    client.timelines[("user_timeline", "alice")] = [
        {"id": 5, "text": "newest"},
        {"id": 4, "text": "newer"},
        {"id": 2},
        {"id": 1},
    ]
    clock.advance(minutes=10)

    assert watcher.check(client) == [
        {"id": 5, "text": "newest"},
        {"id": 4, "text": "newer"},
    ]


def test_not_due_skips_fetch_and_state(db, clock, client) -> None:
    client.timelines[("user_timeline", "alice")] = [{"id": 1}]
    watcher = make_watcher(db, clock)
    watcher.check(client)
    checked_at = watcher.last_checked

    client.timelines[("user_timeline", "alice")] = [{"id": 2}]
    clock.advance(minutes=4, seconds=59)

    assert watcher.check(client) == []
    assert len(client.calls) == 1
    assert watcher.last_checked == checked_at
    assert "2" not in watcher.seen_ids


def test_due_exactly_at_interval(db, clock) -> None:
    watcher = make_watcher(db, clock)
    assert watcher.is_due(clock.now)

    watcher.state["last_checked"] = clock.now.isoformat()
    assert not watcher.is_due(clock.now + timedelta(minutes=4))
    assert watcher.is_due(clock.now + timedelta(minutes=5))


def test_last_checked_is_start_time_of_check(db, clock, client) -> None:
    start = clock.now

    class SlowClient:
        def fetch_timeline(self, kind, user, max_items):
            clock.advance(minutes=3)
            return [{"id": 1}]

    watcher = make_watcher(db, clock)
    watcher.check(SlowClient())

    assert watcher.last_checked == start


def test_failed_fetch_does_not_advance_last_checked(db, clock, client) -> None:
    client.failing.add(("user_timeline", "alice"))
    watcher = make_watcher(db, clock)

    with pytest.raises(TransportError):
        watcher.check(client)

    assert watcher.last_checked is None
    assert watcher.consecutive_failures == 1
    assert len(watcher.seen_ids) == 0

    client.failing.clear()
    client.timelines[("user_timeline", "alice")] = [{"id": 1}]
    assert watcher.check(client) == [{"id": 1}]
    assert watcher.consecutive_failures == 0


def test_item_without_id_is_a_transport_error(db, clock, client) -> None:
    client.timelines[("user_timeline", "alice")] = [{"id": 1}, {"text": "no id"}]
    watcher = make_watcher(db, clock)

    with pytest.raises(TransportError):
        watcher.check(client)
    assert len(watcher.seen_ids) == 0
    assert watcher.last_checked is None


def test_duplicate_id_within_page_reported_once(db, clock, client) -> None:
    client.timelines[("user_timeline", "alice")] = [{"id": 1, "v": "a"}, {"id": 1, "v": "b"}]
    watcher = make_watcher(db, clock)

    assert watcher.check(client) == [{"id": 1, "v": "a"}]
    assert watcher.seen_ids["1"] == {"id": 1, "v": "a"}


def test_page_size_caps_fetch(db, clock, client) -> None:
    client.timelines[("user_timeline", "alice")] = [{"id": i} for i in range(10)]
    watcher = make_watcher(db, clock, page_size=3)

    assert [s["id"] for s in watcher.check(client)] == [0, 1, 2]
    assert client.calls == [("timeline", "user_timeline", "alice", 3)]


def test_last_checked_never_moves_backward(db, clock, client) -> None:
    watcher = make_watcher(db, clock)
    later = clock.now + timedelta(hours=1)
    watcher.state["last_checked"] = later.isoformat()

    watcher.check(client, now=later + timedelta(minutes=5))
    assert watcher.last_checked == later + timedelta(minutes=5)

    # An earlier clock reading keeps the newer timestamp.
    watcher._mark_checked(later)
    assert watcher.last_checked == later + timedelta(minutes=5)


def test_public_timeline_needs_no_user(db, clock, client) -> None:
    client.timelines[("public_timeline", None)] = [{"id": 9}]
    watcher = make_watcher(db, clock, timeline="public_timeline", user="ignored")

    assert watcher.user is None
    assert watcher.key == WatcherKey("*", "public_timeline")
    assert watcher.check(client) == [{"id": 9}]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"timeline": "home_timeline"},
        {"timeline": None},
        {"timeline": "friends_timeline", "user": None},
        {"timeline": "user_timeline", "user": ""},
        {"page_size": 0},
        {"interval": 300},
    ],
)
def test_construction_validation(db, clock, kwargs) -> None:
    with pytest.raises(ValidationError):
        make_watcher(db, clock, **kwargs)


def test_timeline_kind_values() -> None:
    assert TimelineKind.parse("friends_timeline") is TimelineKind.FRIENDS
    assert [k.value for k in TimelineKind] == [
        "user_timeline",
        "friends_timeline",
        "public_timeline",
    ]


class FullDiskMap(PersistentMap):
    """Writes the batch, then fails as a full disk would mid-transaction."""

    def update(self, *args, **kwargs):
        super().update(*args, **kwargs)
        raise StorageError("disk full")


def test_failed_persist_rolls_back_state_and_seen_ids(db, clock, client) -> None:
    client.timelines[("user_timeline", "alice")] = [{"id": 1}, {"id": 2}]
    watcher = make_watcher(db, clock)
    watcher.seen_ids = FullDiskMap(db, "statuses:t")

    with pytest.raises(StorageError):
        watcher.check(client)

    assert watcher.last_checked is None
    assert len(watcher.seen_ids) == 0
    assert "last_checked" not in db.open_map("state:t")


def test_unpersisted_items_reobserved_next_cycle(db, clock, client) -> None:
    client.timelines[("user_timeline", "alice")] = [{"id": 1}, {"id": 2}]
    watcher = make_watcher(db, clock)
    watcher.seen_ids = FullDiskMap(db, "statuses:t")
    with pytest.raises(StorageError):
        watcher.check(client)

    watcher.seen_ids = db.open_map("statuses:t")
    clock.advance(seconds=1)

    assert watcher.is_due(clock.now)
    assert watcher.check(client) == [{"id": 1}, {"id": 2}]
    assert set(watcher.seen_ids) == {"1", "2"}


@pytest.mark.parametrize("raw", ["yesterday", "2024-13-45T00:00:00", 1704110400])
def test_corrupt_last_checked_is_a_storage_error(db, clock, client, raw) -> None:
    watcher = make_watcher(db, clock)
    watcher.state["last_checked"] = raw

    with pytest.raises(StorageError, match="corrupt last_checked"):
        watcher.check(client)
    assert client.calls == []


def test_naive_timestamps_treated_as_utc(db, clock, client) -> None:
    client.timelines[("user_timeline", "alice")] = [{"id": 1}]
    watcher = make_watcher(db, clock)
    watcher.state["last_checked"] = "2024-01-01T11:00:00"

    naive_now = clock.now.replace(tzinfo=None)
    assert watcher.is_due(naive_now)
    assert watcher.check(client, now=naive_now) == [{"id": 1}]
    assert watcher.last_checked == clock.now
    assert not watcher.is_due(clock.now + timedelta(minutes=1))
