"""Error taxonomy for the relay.

Join-time rejections carry the text that is sent to the client in the single
``error`` envelope before the connection is closed.
"""

from __future__ import annotations

from .constants import ERR_BAD_JOIN, ERR_DUPLICATE_NAME, ERR_ROOM_NOT_FOUND


class RelayError(Exception):
    """Base class for all relay errors."""


class JoinRejected(RelayError):
    reason = ERR_BAD_JOIN

    def __init__(self, room: str, name: str, reason: str | None = None) -> None:
        if reason is not None:
            self.reason = reason
        super().__init__(f"{self.reason}: room={room!r} name={name!r}")
        self.room = room
        self.name = name


class DuplicateName(JoinRejected):
    reason = ERR_DUPLICATE_NAME


class RoomNotFound(JoinRejected):
    reason = ERR_ROOM_NOT_FOUND


class MalformedFrame(RelayError):
    """An inbound frame could not be parsed. Never fatal to the connection."""


class DeliveryFailure(RelayError):
    """A write to one recipient failed."""

    def __init__(self, session_id: str, cause: BaseException | None = None) -> None:
        super().__init__(f"delivery to {session_id} failed: {cause}")
        self.session_id = session_id
        self.cause = cause


class LivenessTimeout(RelayError):
    def __init__(self, session_id: str, idle_s: float, timeout_s: float) -> None:
        super().__init__(
            f"no activity from {session_id} for {idle_s:.1f}s (timeout {timeout_s:.1f}s)"
        )
        self.session_id = session_id
        self.idle_s = idle_s
        self.timeout_s = timeout_s


class HandshakeTimeout(RelayError):
    def __init__(self, session_id: str, timeout_s: float) -> None:
        super().__init__(f"no join request from {session_id} within {timeout_s:.1f}s")
        self.session_id = session_id
        self.timeout_s = timeout_s
