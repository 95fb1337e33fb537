import json
import threading

from fakes import wait_for

from sigrelay.broadcast import Broadcaster
from sigrelay.rooms import RoomDirectory


def test_broadcast_excludes_sender(broadcaster: Broadcaster, join) -> None:
    _, a = join("lobby", "alice")
    _, b = join("lobby", "bob", allow_create=False)
    _, c = join("lobby", "carol", allow_create=False)
    _, other = join("studio", "dave")

    delivered = broadcaster.broadcast("lobby", "alice", '{"sdp":"v=0"}')

    assert delivered == 2
    assert a.sent == []
    assert b.sent == ['{"sdp":"v=0"}']
    assert c.sent == ['{"sdp":"v=0"}']
    assert other.sent == []


def test_broadcast_to_missing_room_is_noop(broadcaster: Broadcaster) -> None:
    assert broadcaster.broadcast("nowhere", None, "x") == 0


def test_failing_recipient_does_not_stop_delivery(
    broadcaster: Broadcaster, join, stats
) -> None:
    join("lobby", "alice")
    _, bad = join("lobby", "bob", allow_create=False, fail_send=True)
    _, c = join("lobby", "carol", allow_create=False)
    _, d = join("lobby", "dave", allow_create=False)

    delivered = broadcaster.broadcast("lobby", "alice", "payload")

    assert delivered == 2
    assert c.sent == ["payload"]
    assert d.sent == ["payload"]
    assert stats.get("delivery_failures") == 1
    # The failing recipient is scheduled for teardown.
    assert wait_for(bad.closed.is_set)


def test_room_info_reaches_every_member(
    broadcaster: Broadcaster, directory: RoomDirectory, join
) -> None:
    _, a = join("lobby", "alice")
    _, b = join("lobby", "bob", allow_create=False)

    assert broadcaster.broadcast_room_info(directory.room_snapshot("lobby")) == 2

    for ch in (a, b):
        msg = json.loads(ch.sent[-1])
        assert msg["type"] == "room_info"
        assert set(msg["data"]["users"]) == {"alice", "bob"}


def test_send_error_counts_and_tolerates_closed_channel(
    broadcaster: Broadcaster, join, stats
) -> None:
    s, ch = join("lobby", "alice")
    assert broadcaster.send_error(s, "duplicate name") is True
    assert json.loads(ch.sent[0]) == {"type": "error", "data": "duplicate name"}

    ch.close()
    assert broadcaster.send_error(s, "again") is False
    assert stats.get("errors_sent") == 2


def test_slow_member_ends_on_latest_room_info(
    broadcaster: Broadcaster, directory: RoomDirectory, join
) -> None:
    # alice's first write stalls, so the older snapshot is still in flight
    # when the newer one is broadcast.
    _, a = join("lobby", "alice", send_delays={0: 0.3})

    def _join_and_announce(name: str) -> None:
        join("lobby", name, allow_create=False)
        broadcaster.broadcast_room_info(directory.room_snapshot("lobby"))

    first = threading.Thread(target=_join_and_announce, args=("carol",))
    first.start()
    assert wait_for(lambda: a.send_attempts >= 1)

    second = threading.Thread(target=_join_and_announce, args=("dave",))
    second.start()
    first.join(timeout=2.0)
    second.join(timeout=2.0)

    assert a.room_infos()[-1] == {"alice", "carol", "dave"}
    assert directory.members_of("lobby") == {"alice", "carol", "dave"}


def test_stale_room_info_is_skipped(
    broadcaster: Broadcaster, directory: RoomDirectory, join, stats
) -> None:
    _, a = join("lobby", "alice")
    old = directory.room_snapshot("lobby")
    join("lobby", "bob", allow_create=False)
    new = directory.room_snapshot("lobby")
    assert new.version > old.version

    broadcaster.broadcast_room_info(new)
    assert broadcaster.broadcast_room_info(old) == 0

    assert a.room_infos() == [{"alice", "bob"}]
    assert stats.get("room_info_stale") == 1
