from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .codec import encode
from .envelope import error_envelope, room_info_envelope
from .errors import DeliveryFailure
from .rooms import RoomDirectory, RoomSnapshot
from .session import Session

if TYPE_CHECKING:
    from .stats import StatsManager


class Broadcaster:
    """
    Delivers frames to the members of a room.

    Recipients are read from a directory snapshot; every write happens after
    the directory lock is released. A failed write aborts that recipient
    (scheduling its teardown) and delivery continues with the rest.
    """

    def __init__(self, directory: RoomDirectory, stats: StatsManager | None = None) -> None:
        self.directory = directory
        self.stats = stats
        self.log = logging.getLogger("sigrelay.broadcast")

    def _inc(self, key: str, delta: int = 1) -> None:
        if self.stats is not None:
            self.stats.inc(key, delta)

    def deliver(
        self, session: Session, payload: str, *, version: int | None = None
    ) -> bool:
        """Write one frame to one session.

        Returns False on delivery failure, or when a versioned room_info is
        older than one the session already received.
        """
        try:
            if not session.send_text(payload, version=version):
                self._inc("room_info_stale")
                return False
        except DeliveryFailure as e:
            self._inc("delivery_failures")
            self.log.warning(
                "Delivery failed room=%s name=%r conn=%s err=%s",
                session.room,
                session.name,
                session.id,
                e.cause,
            )
            session.abort("delivery failure")
            return False
        self._inc("deliveries")
        self._inc("bytes_out", len(payload))
        return True

    def deliver_all(
        self,
        recipients: Iterable[Session],
        payload: str,
        *,
        exclude_name: str | None = None,
        version: int | None = None,
    ) -> int:
        delivered = 0
        for s in recipients:
            if exclude_name is not None and s.name == exclude_name:
                continue
            if self.deliver(s, payload, version=version):
                delivered += 1
        return delivered

    def broadcast(self, room: str, exclude_name: str | None, payload: str) -> int:
        """Send ``payload`` to every current member of ``room`` except ``exclude_name``.

        Returns the number of successful deliveries.
        """
        snapshot = self.directory.room_snapshot(room)
        if snapshot is None:
            return 0
        return self.deliver_all(snapshot.sessions, payload, exclude_name=exclude_name)

    def broadcast_room_info(self, snapshot: RoomSnapshot) -> int:
        """Send the membership in ``snapshot`` to every member in it.

        Members that already received a newer snapshot skip this one, so the
        last room_info each member sees matches the current membership.
        """
        payload = encode(room_info_envelope(snapshot.users, snapshot.streaming_users))
        delivered = self.deliver_all(
            snapshot.sessions, payload, version=snapshot.version or None
        )
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "room_info room=%s users=%s delivered=%s",
                snapshot.name,
                list(snapshot.users),
                delivered,
            )
        return delivered

    def send_error(self, session: Session, text: str) -> bool:
        self._inc("errors_sent")
        try:
            session.send_envelope(error_envelope(text))
        except DeliveryFailure as e:
            self.log.debug("Error envelope not delivered conn=%s err=%s", session.id, e.cause)
            return False
        return True
