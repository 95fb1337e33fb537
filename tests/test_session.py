import pytest
from fakes import FakeChannel, wait_for

from sigrelay.errors import DeliveryFailure
from sigrelay.session import Session, SessionState


def test_new_session_is_connecting() -> None:
    ch = FakeChannel()
    s = Session(ch)
    assert s.state is SessionState.CONNECTING
    assert s.id == ch.channel_id
    assert s.room is None and s.name is None


def test_lifecycle_transitions_in_order() -> None:
    s = Session(FakeChannel())
    assert s.begin_join("lobby", "alice")
    assert (s.room, s.name) == ("lobby", "alice")
    assert s.state is SessionState.JOINING
    assert s.activate()
    assert s.is_active
    assert s.begin_leave()
    assert s.state is SessionState.LEAVING
    assert s.close()
    assert s.is_closed


def test_transitions_out_of_order_are_refused() -> None:
    s = Session(FakeChannel())
    assert not s.activate()
    assert not s.begin_leave()
    s.begin_join("lobby", "alice")
    assert not s.begin_join("lobby", "bob")
    assert s.name == "alice"


def test_begin_leave_has_one_winner() -> None:
    s = Session(FakeChannel())
    s.begin_join("lobby", "alice")
    s.activate()
    assert s.begin_leave() is True
    assert s.begin_leave() is False


def test_close_is_terminal_and_idempotent() -> None:
    ch = FakeChannel()
    s = Session(ch)
    s.begin_join("lobby", "alice")

    assert s.close(1008, "duplicate name") is True
    assert s.close() is False
    assert ch.close_code == 1008
    assert ch.close_calls == 1
    assert s.close_reason == "duplicate name"
    assert s.wait_closed(0)

    assert not s.activate()
    assert not s.begin_leave()
    assert s.state is SessionState.CLOSED


def test_send_failure_raises_delivery_failure() -> None:
    ch = FakeChannel(fail_send=True)
    s = Session(ch)
    with pytest.raises(DeliveryFailure) as exc:
        s.send_text("hello")
    assert exc.value.session_id == s.id


def test_send_envelope_encodes_json() -> None:
    ch = FakeChannel()
    Session(ch).send_envelope({"type": "pong"})
    assert ch.sent == ['{"type":"pong"}']


def test_abort_closes_channel_without_closing_session() -> None:
    ch = FakeChannel()
    s = Session(ch)
    s.begin_join("lobby", "alice")
    s.activate()

    s.abort("delivery failure")

    assert wait_for(ch.closed.is_set)
    assert ch.close_reason == "delivery failure"
    assert s.is_active


def test_idle_time_follows_injected_clock() -> None:
    now = [100.0]
    s = Session(FakeChannel(), clock=lambda: now[0])
    now[0] = 112.5
    assert s.idle_for() == pytest.approx(12.5)
    s.touch()
    assert s.idle_for() == 0.0


def test_versioned_send_skips_stale_notifications() -> None:
    ch = FakeChannel()
    s = Session(ch)
    assert s.send_text("v2", version=2) is True
    assert s.send_text("v1", version=1) is False
    assert s.send_text("v2 again", version=2) is False
    assert s.send_text("plain") is True
    assert s.send_text("v3", version=3) is True
    assert ch.sent == ["v2", "plain", "v3"]
