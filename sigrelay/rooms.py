"""Room directory for the relay.

This module owns the only shared mutable state in the process:
- room name -> Room (members keyed by display name)
- connection id -> Session, for teardown keyed by transport identity

Both maps live behind one lock and are always updated in the same critical
section. Nothing in here performs network I/O; callers receive immutable
snapshots and do their writes after the lock is released.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import DuplicateName, RoomNotFound
from .session import Session

if TYPE_CHECKING:
    from .stats import StatsManager


@dataclass
class Room:
    name: str
    members: dict[str, Session] = field(default_factory=dict)
    created_ts: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RoomSnapshot:
    """Membership of one room at a single instant."""

    name: str
    sessions: tuple[Session, ...]
    users: tuple[str, ...]
    streaming_users: tuple[str, ...] = ()
    # Directory version at the time of the snapshot; grows with every membership change.
    version: int = 0


@dataclass(frozen=True)
class DirectorySnapshot:
    connections: int
    rooms: dict[str, tuple[str, ...]]
    streaming: dict[str, tuple[str, ...]]


class RoomDirectory:
    """Registry of rooms and sessions under a single lock."""

    def __init__(self, stats: StatsManager | None = None) -> None:
        self.log = logging.getLogger("sigrelay.rooms")
        self.stats = stats
        self._lock = threading.Lock()
        self._rooms: dict[str, Room] = {}
        self._by_connection: dict[str, Session] = {}
        self._version = 0

    def _inc(self, key: str) -> None:
        if self.stats is not None:
            self.stats.inc(key)

    def _snapshot_locked(self, room: Room) -> RoomSnapshot:
        return RoomSnapshot(
            name=room.name,
            sessions=tuple(room.members.values()),
            users=tuple(sorted(room.members)),
            streaming_users=tuple(
                sorted(n for n, s in room.members.items() if s.streaming)
            ),
            version=self._version,
        )

    def join_or_create(
        self, session: Session, room: str, name: str, *, allow_create: bool
    ) -> RoomSnapshot:
        """
        Register ``session`` as ``name`` in ``room`` and make it ACTIVE.

        Raises RoomNotFound if the room does not exist and ``allow_create`` is
        false, DuplicateName if the name is already taken. Neither failure
        mutates the directory. The returned snapshot includes the joiner.
        """
        with self._lock:
            r = self._rooms.get(room)
            if r is None:
                if not allow_create:
                    raise RoomNotFound(room, name)
            elif name in r.members:
                raise DuplicateName(room, name)

            if session.id in self._by_connection:
                raise RuntimeError(f"connection {session.id} is already registered")

            session.room = room
            session.name = name
            if not session.activate():
                # Closed by shutdown while the join was in flight.
                raise RuntimeError(f"session {session.id} is not joining")

            if r is None:
                r = Room(name=room)
                self._rooms[room] = r
                self._inc("rooms_created")
                self.log.info("Room created room=%s", room)

            r.members[name] = session
            self._by_connection[session.id] = session
            self._version += 1
            return self._snapshot_locked(r)

    def leave(self, session: Session) -> tuple[bool, RoomSnapshot | None]:
        """
        Remove ``session`` from its room. Safe to call any number of times.

        Returns ``(removed, remaining)``: ``removed`` is True only for the call
        that actually deregistered the session; ``remaining`` is the room's
        membership after removal, or None when the room was deleted or nothing
        was removed.
        """
        with self._lock:
            if self._by_connection.get(session.id) is not session:
                return False, None

            # A session closed out from under us (shutdown) is still removed.
            session.begin_leave()
            del self._by_connection[session.id]

            room = self._rooms.get(session.room) if session.room else None
            if room is None or room.members.get(session.name) is not session:
                self.log.warning(
                    "Session missing from room index conn=%s room=%r name=%r",
                    session.id,
                    session.room,
                    session.name,
                )
                return True, None

            del room.members[session.name]
            self._version += 1
            if not room.members:
                del self._rooms[room.name]
                self._inc("rooms_removed")
                self.log.info("Room removed room=%s", room.name)
                return True, None

            return True, self._snapshot_locked(room)

    def set_streaming(self, session: Session, streaming: bool) -> RoomSnapshot | None:
        """Update a member's streaming flag; returns the room snapshot if it changed."""
        with self._lock:
            if self._by_connection.get(session.id) is not session:
                return None
            if session.streaming == bool(streaming):
                return None
            session.streaming = bool(streaming)
            self._version += 1
            room = self._rooms.get(session.room) if session.room else None
            return self._snapshot_locked(room) if room is not None else None

    def members_of(self, room: str) -> frozenset[str]:
        with self._lock:
            r = self._rooms.get(room)
            return frozenset(r.members) if r is not None else frozenset()

    def room_snapshot(self, room: str) -> RoomSnapshot | None:
        with self._lock:
            r = self._rooms.get(room)
            return self._snapshot_locked(r) if r is not None else None

    def lookup_by_connection(self, connection_id: str) -> Session | None:
        with self._lock:
            return self._by_connection.get(connection_id)

    def has_room(self, room: str) -> bool:
        with self._lock:
            return room in self._rooms

    def snapshot(self) -> DirectorySnapshot:
        with self._lock:
            rooms = {
                name: tuple(sorted(r.members)) for name, r in self._rooms.items()
            }
            streaming = {
                name: tuple(sorted(n for n, s in r.members.items() if s.streaming))
                for name, r in self._rooms.items()
            }
            return DirectorySnapshot(
                connections=len(self._by_connection),
                rooms=rooms,
                streaming=streaming,
            )

    def clear_all(self) -> list[Session]:
        """Drop every room and return the sessions for teardown. Used at shutdown."""
        with self._lock:
            sessions = list(self._by_connection.values())
            self._by_connection.clear()
            self._rooms.clear()
            return sessions
