from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable

from .codec import encode
from .constants import CLOSE_GOING_AWAY, CLOSE_NORMAL
from .errors import DeliveryFailure
from .transport import Channel, ChannelClosed


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    JOINING = "joining"
    ACTIVE = "active"
    LEAVING = "leaving"
    CLOSED = "closed"


class Session:
    """
    Server-side state for one connected client.

    A session owns its channel (the only send path to the client), its identity
    in the directory (room, display name), and its lifecycle state:

        CONNECTING -> JOINING -> ACTIVE -> LEAVING -> CLOSED

    CONNECTING and JOINING may also go straight to CLOSED (handshake timeout,
    rejected join). ACTIVE and LEAVING are only entered by the RoomDirectory
    while it holds its lock, so directory membership and the ACTIVE state
    change together. CLOSED is terminal and entered exactly once.
    """

    def __init__(
        self, channel: Channel, *, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.channel = channel
        self.id: str = channel.channel_id
        self.remote: str = getattr(channel, "remote", "-")
        self.room: str | None = None
        self.name: str | None = None
        self.streaming = False
        self.close_reason: str | None = None

        self.log = logging.getLogger("sigrelay.session")
        self._clock = clock
        self._lock = threading.Lock()
        self._closed = threading.Event()
        # Serializes writes; guards the version of the last room_info sent.
        self._send_lock = threading.Lock()
        self._room_info_version = 0
        self._state = SessionState.CONNECTING
        self.last_activity = clock()

    def __repr__(self) -> str:
        return (
            f"Session(id={self.id!r}, room={self.room!r}, name={self.name!r}, "
            f"state={self._state.value})"
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.CLOSED

    def _transition(self, expected: SessionState, new: SessionState) -> bool:
        with self._lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    def begin_join(self, room: str, name: str) -> bool:
        """Record the requested identity. CONNECTING -> JOINING."""
        with self._lock:
            if self._state is not SessionState.CONNECTING:
                return False
            self.room = room
            self.name = name
            self._state = SessionState.JOINING
            return True

    def activate(self) -> bool:
        """JOINING -> ACTIVE. Must be called with the directory lock held."""
        return self._transition(SessionState.JOINING, SessionState.ACTIVE)

    def begin_leave(self) -> bool:
        """ACTIVE -> LEAVING. Must be called with the directory lock held.

        Returns True for exactly one caller; that caller owns the departure.
        """
        return self._transition(SessionState.ACTIVE, SessionState.LEAVING)

    def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> bool:
        """Enter CLOSED and release the channel. Returns False if already closed."""
        with self._lock:
            if self._state is SessionState.CLOSED:
                return False
            self._state = SessionState.CLOSED
            self.close_reason = reason or None
        self._closed.set()
        self._close_channel(code, reason)
        return True

    def abort(self, reason: str) -> None:
        """Schedule teardown from a thread that does not own this session.

        Closes the channel in the background; the owning thread sees the
        closed transport and runs the normal teardown path.
        """
        if self._closed.is_set():
            return
        threading.Thread(
            target=self._close_channel,
            args=(CLOSE_GOING_AWAY, reason),
            name=f"sigrelay-abort-{self.id[:8]}",
            daemon=True,
        ).start()

    def _close_channel(self, code: int, reason: str) -> None:
        try:
            self.channel.close(code, reason)
        except Exception:
            self.log.debug("Channel close failed conn=%s", self.id, exc_info=True)

    def wait_closed(self, timeout: float | None = None) -> bool:
        return self._closed.wait(timeout)

    def touch(self) -> None:
        self.last_activity = self._clock()

    def idle_for(self) -> float:
        return max(0.0, self._clock() - self.last_activity)

    def send_text(self, text: str, *, version: int | None = None) -> bool:
        """Write one frame. Raises DeliveryFailure if the channel is unusable.

        A ``version`` marks a membership notification: it is written only if
        it is newer than the last one this session received, and the method
        returns False when it is skipped as stale.
        """
        with self._send_lock:
            if version is not None and version <= self._room_info_version:
                return False
            try:
                self.channel.send(text)
            except (ChannelClosed, OSError, RuntimeError) as e:
                raise DeliveryFailure(self.id, e) from e
            if version is not None:
                self._room_info_version = version
            return True

    def send_envelope(self, env: dict) -> None:
        self.send_text(encode(env))
