"""Statistics tracking and status reporting for the relay."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from .rooms import RoomDirectory


class StatsManager:
    """
    Lifetime counters for the relay.

    Tracks counters for:
    - Frames and bytes in/out
    - Malformed and dropped frames
    - Joins, rejected joins and leaves
    - Relayed messages and delivery failures
    - Handshake and liveness timeouts
    - Ping/pong activity
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "bytes_out": 0,
            "frames_in": 0,
            "frames_bad": 0,
            "frames_dropped": 0,
            "joins": 0,
            "joins_rejected": 0,
            "leaves": 0,
            "rooms_created": 0,
            "rooms_removed": 0,
            "relays_forwarded": 0,
            "deliveries": 0,
            "delivery_failures": 0,
            "room_info_stale": 0,
            "errors_sent": 0,
            "handshake_timeouts": 0,
            "liveness_timeouts": 0,
            "pings_in": 0,
            "pongs_in": 0,
            "pings_out": 0,
            "pongs_out": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def uptime_s(self) -> float:
        started = self.started_monotonic
        return (time.monotonic() - started) if started is not None else 0.0

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def counters(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)


@dataclass(frozen=True)
class RoomStatus:
    name: str
    member_count: int
    members: tuple[str, ...]


@dataclass(frozen=True)
class StatusSnapshot:
    connections: int
    rooms: tuple[RoomStatus, ...]
    uptime_s: float = 0.0
    counters: dict[str, int] | None = None

    @property
    def room_count(self) -> int:
        return len(self.rooms)

    def room(self, name: str) -> RoomStatus | None:
        for r in self.rooms:
            if r.name == name:
                return r
        return None

    def as_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "connections": self.connections,
            "room_count": self.room_count,
            "rooms": [
                {
                    "name": r.name,
                    "member_count": r.member_count,
                    "members": list(r.members),
                }
                for r in self.rooms
            ],
            "uptime_s": round(self.uptime_s, 1),
        }
        if self.counters is not None:
            body["counters"] = dict(self.counters)
        return body


class StatusReporter:
    """Read-only view of the directory for diagnostics."""

    def __init__(self, directory: RoomDirectory, stats: StatsManager | None = None) -> None:
        self.directory = directory
        self.stats = stats

    def snapshot(self) -> StatusSnapshot:
        snap = self.directory.snapshot()
        rooms = tuple(
            RoomStatus(name=name, member_count=len(members), members=members)
            for name, members in sorted(snap.rooms.items())
        )
        return StatusSnapshot(
            connections=snap.connections,
            rooms=rooms,
            uptime_s=self.stats.uptime_s() if self.stats is not None else 0.0,
            counters=self.stats.counters() if self.stats is not None else None,
        )

    def rooms_listing(self) -> dict[str, dict[str, list[str]]]:
        """Room -> users and streaming users, the body of the /rooms endpoint."""
        snap = self.directory.snapshot()
        return {
            name: {
                "users": list(members),
                "streamingUsers": list(snap.streaming.get(name, ())),
            }
            for name, members in sorted(snap.rooms.items())
        }

    def format_status(self) -> list[str]:
        s = self.snapshot()
        lines = [
            f"connections={s.connections} rooms={s.room_count} uptime_s={s.uptime_s:.1f}"
        ]
        for r in s.rooms:
            lines.append(
                f"room={r.name} members={r.member_count} names={', '.join(r.members)}"
            )
        c = s.counters or {}
        if c:
            lines.append(
                "io: frames_in={} frames_bad={} bytes_in={} bytes_out={}".format(
                    c.get("frames_in", 0),
                    c.get("frames_bad", 0),
                    c.get("bytes_in", 0),
                    c.get("bytes_out", 0),
                )
            )
            lines.append(
                "events: joins={} rejected={} leaves={} relays={} delivery_failures={} "
                "handshake_timeouts={} liveness_timeouts={}".format(
                    c.get("joins", 0),
                    c.get("joins_rejected", 0),
                    c.get("leaves", 0),
                    c.get("relays_forwarded", 0),
                    c.get("delivery_failures", 0),
                    c.get("handshake_timeouts", 0),
                    c.get("liveness_timeouts", 0),
                )
            )
        return lines

    def log_status(self, log: logging.Logger) -> None:
        for line in self.format_status():
            log.info("STATUS %s", line)
