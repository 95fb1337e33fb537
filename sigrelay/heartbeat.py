from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from .errors import LivenessTimeout
from .session import Session
from .transport import ChannelClosed

if TYPE_CHECKING:
    from .stats import StatsManager


class HeartbeatMonitor:
    """
    Periodic liveness probe for one active session.

    Every ``interval_s`` the monitor sends a transport ping. A pong, or any
    inbound frame, refreshes the session's last-activity time. When the
    session has been idle longer than ``timeout_s`` the ``on_timeout``
    callback is invoked once with a LivenessTimeout and the loop ends.

    The loop sleeps on the session's closed event, so it exits as soon as the
    session reaches CLOSED.
    """

    def __init__(
        self,
        session: Session,
        *,
        interval_s: float,
        timeout_s: float,
        on_timeout: Callable[[Session, LivenessTimeout], None],
        stats: StatsManager | None = None,
    ) -> None:
        self.session = session
        self.interval_s = float(interval_s)
        self.timeout_s = float(timeout_s)
        self.on_timeout = on_timeout
        self.stats = stats
        self.log = logging.getLogger("sigrelay.heartbeat")
        self._thread: threading.Thread | None = None

    @property
    def enabled(self) -> bool:
        return self.interval_s > 0

    def start(self) -> HeartbeatMonitor:
        if not self.enabled or self._thread is not None:
            return self
        self._thread = threading.Thread(
            target=self._run,
            name=f"sigrelay-heartbeat-{self.session.id[:8]}",
            daemon=True,
        )
        self._thread.start()
        return self

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the probe loop to finish. No-op when called from the loop itself."""
        t = self._thread
        if t is None or t is threading.current_thread():
            return
        t.join(timeout)

    def check(self) -> LivenessTimeout | None:
        """Return a LivenessTimeout if the session is past its deadline."""
        if self.timeout_s <= 0:
            return None
        idle = self.session.idle_for()
        if idle > self.timeout_s:
            return LivenessTimeout(self.session.id, idle, self.timeout_s)
        return None

    def _run(self) -> None:
        waiter: threading.Event | None = None
        while not self.session.wait_closed(self.interval_s):
            if waiter is not None and waiter.is_set():
                if self.stats is not None:
                    self.stats.inc("pongs_in")
                self.session.touch()

            expired = self.check()
            if expired is not None:
                if self.stats is not None:
                    self.stats.inc("liveness_timeouts")
                self.on_timeout(self.session, expired)
                return

            try:
                waiter = self.session.channel.ping()
            except ChannelClosed:
                # The owning thread sees the same closed transport and tears down.
                return
            except Exception:
                self.log.debug("Ping failed conn=%s", self.session.id, exc_info=True)
                waiter = None
                continue
            if self.stats is not None:
                self.stats.inc("pings_out")
