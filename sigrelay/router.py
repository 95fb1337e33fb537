from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .codec import encode
from .constants import (
    KIND_UNKNOWN,
    RELAY_MODE_PERMISSIVE,
    T_END_STREAM,
    T_LEAVE,
    T_PING,
    T_PONG,
    T_RELAY,
    T_START_STREAM,
)
from .envelope import (
    classify_frame,
    is_relay_payload,
    parse_frame,
    pong_envelope,
    stream_ended_envelope,
)
from .errors import DeliveryFailure, MalformedFrame
from .session import Session
from .transport import ChannelClosed

if TYPE_CHECKING:
    from .broadcast import Broadcaster
    from .rooms import RoomDirectory
    from .stats import StatsManager


# Why the receive loop ended.
EXIT_LEAVE = "leave"
EXIT_CLOSED = "closed"


class MessageRouter:
    """
    Receive loop and dispatch for active sessions.

    This class is responsible for:
    - Reading frames from a session's channel until leave or close
    - Parsing and classifying frames (malformed frames are skipped)
    - Answering application-level pings
    - Tracking streaming presence and announcing it to the room
    - Forwarding relay payloads, verbatim, to the rest of the room
    """

    def __init__(
        self,
        directory: RoomDirectory,
        broadcaster: Broadcaster,
        *,
        relay_mode: str = RELAY_MODE_PERMISSIVE,
        stats: StatsManager | None = None,
    ) -> None:
        self.directory = directory
        self.broadcaster = broadcaster
        self.relay_mode = relay_mode
        self.stats = stats
        self.log = logging.getLogger("sigrelay.router")

    @property
    def permissive(self) -> bool:
        """Strict mode forwards only frames that carry sdp or ice."""
        return self.relay_mode == RELAY_MODE_PERMISSIVE

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    def run(self, session: Session) -> str:
        """Route frames for ``session`` until it leaves or its channel closes."""
        while True:
            try:
                frame = session.channel.recv()
            except ChannelClosed:
                return EXIT_CLOSED
            except MalformedFrame as e:
                session.touch()
                self._inc("frames_bad")
                self.log.debug("Bad frame conn=%s err=%s", session.id, e)
                continue

            session.touch()
            if not self.route_frame(session, frame):
                return EXIT_LEAVE

    def route_frame(self, session: Session, frame: str) -> bool:
        """
        Handle one inbound frame. Returns False when the session asked to leave.
        """
        self._inc("frames_in")
        self._inc("bytes_in", len(frame))

        try:
            env = parse_frame(frame)
        except MalformedFrame as e:
            self._inc("frames_bad")
            self.log.debug(
                "Bad frame room=%s name=%r conn=%s bytes=%s err=%s",
                session.room,
                session.name,
                session.id,
                len(frame),
                e,
            )
            return True

        kind = classify_frame(env)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX room=%s name=%r conn=%s kind=%s bytes=%s",
                session.room,
                session.name,
                session.id,
                kind,
                len(frame),
            )

        if kind == T_LEAVE:
            self.log.info(
                "LEAVE requested room=%s name=%r conn=%s",
                session.room,
                session.name,
                session.id,
            )
            return False
        elif kind == T_PING:
            self._handle_ping(session)
        elif kind == T_PONG:
            self._inc("pongs_in")
        elif kind in (T_START_STREAM, T_END_STREAM):
            self._handle_stream(session, kind == T_START_STREAM)
        elif kind == T_RELAY and (self.permissive or is_relay_payload(env)):
            self._relay(session, frame)
        elif kind == KIND_UNKNOWN and self.permissive:
            self._relay(session, frame)
        else:
            self._inc("frames_dropped")
            self.log.debug(
                "Dropped frame room=%s name=%r conn=%s kind=%s",
                session.room,
                session.name,
                session.id,
                kind,
            )
        return True

    def _handle_ping(self, session: Session) -> None:
        self._inc("pings_in")
        try:
            session.send_envelope(pong_envelope())
        except DeliveryFailure as e:
            self.log.debug("Pong not delivered conn=%s err=%s", session.id, e.cause)
            return
        self._inc("pongs_out")

    def _handle_stream(self, session: Session, streaming: bool) -> None:
        snapshot = self.directory.set_streaming(session, streaming)
        if snapshot is None:
            return

        self.log.info(
            "STREAM %s room=%s name=%r conn=%s",
            "start" if streaming else "end",
            session.room,
            session.name,
            session.id,
        )
        self.broadcaster.broadcast_room_info(snapshot)
        if not streaming:
            payload = encode(stream_ended_envelope(session.name or ""))
            self.broadcaster.deliver_all(
                snapshot.sessions, payload, exclude_name=session.name
            )

    def _relay(self, session: Session, frame: str) -> None:
        if session.room is None:
            return
        delivered = self.broadcaster.broadcast(session.room, session.name, frame)
        self._inc("relays_forwarded")
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Relayed room=%s name=%r conn=%s bytes=%s recipients=%s",
                session.room,
                session.name,
                session.id,
                len(frame),
                delivered,
            )
