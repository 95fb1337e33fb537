from __future__ import annotations

import logging
import signal
import threading
from http import HTTPStatus
from typing import Any
from urllib.parse import urlsplit

from websockets.http11 import Request, Response
from websockets.sync.server import Server, ServerConnection, serve

from . import __version__
from .broadcast import Broadcaster
from .codec import encode
from .config import RelayRuntimeConfig, validate_config
from .constants import (
    CLOSE_GOING_AWAY,
    CLOSE_NORMAL,
    CLOSE_POLICY,
    ERR_BAD_JOIN,
    ROOM_CREATION_IMPLICIT,
)
from .envelope import JoinRequest, parse_join_request
from .errors import HandshakeTimeout, JoinRejected, LivenessTimeout, MalformedFrame
from .heartbeat import HeartbeatMonitor
from .rooms import RoomDirectory
from .router import MessageRouter
from .session import Session
from .stats import StatsManager, StatusReporter
from .transport import Channel, ChannelClosed, WebSocketChannel


class RelayService:
    """
    The signaling relay process.

    Owns the listener, the shared RoomDirectory and the per-connection
    lifecycle: join handshake, receive loop, heartbeat and teardown. Every
    connection runs on its own thread (spawned by the websockets threaded
    server); failures in one connection never leave that thread.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("sigrelay.relay")

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager()
        self.directory = RoomDirectory(self.stats_manager)
        self.broadcaster = Broadcaster(self.directory, self.stats_manager)
        self.router = MessageRouter(
            self.directory,
            self.broadcaster,
            relay_mode=config.relay_mode,
            stats=self.stats_manager,
        )
        self.status_reporter = StatusReporter(self.directory, self.stats_manager)

        # Every session with a running handler, joined or still in the handshake.
        self._live_lock = threading.Lock()
        self._live: set[Session] = set()

        self._server: Server | None = None
        self._server_thread: threading.Thread | None = None
        self._status_thread: threading.Thread | None = None

    def start(self) -> None:
        validate_config(self.config)
        self.stats_manager.set_start_time()

        # Bind errors propagate: a relay that cannot listen is fatal.
        self._server = serve(
            self._on_connection,
            self.config.host,
            self.config.port,
            process_request=self._process_request,
            ping_interval=None,
            close_timeout=self.config.close_timeout_s,
            max_size=self.config.max_frame_bytes,
            server_header=f"sigrelay/{__version__}",
        )
        self._server_thread = threading.Thread(
            target=self._server.serve_forever, name="sigrelay-server", daemon=True
        )
        self._server_thread.start()

        self.log.info(
            "Relay running host=%s port=%s ws_path=%s status_path=%s",
            self.config.host,
            self.config.port,
            self.config.ws_path,
            self.config.status_path,
        )
        self.log.info(
            "Policy room_creation=%s relay_mode=%s join_timeout_s=%s ping_interval_s=%s ping_timeout_s=%s",
            self.config.room_creation,
            self.config.relay_mode,
            self.config.join_timeout_s,
            self.config.ping_interval_s,
            self.config.ping_timeout_s,
        )

        if self.config.status_log_interval_s and self.config.status_log_interval_s > 0:
            self._status_thread = threading.Thread(
                target=self._status_loop, name="sigrelay-status", daemon=True
            )
            self._status_thread.start()

    def run_forever(self) -> None:
        if self._server is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.wait(0.25):
            pass

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        self.log.info("Shutting down")

        if self._server is not None:
            self._server.shutdown()

        sessions = self.directory.clear_all()
        with self._live_lock:
            sessions.extend(self._live)
            self._live.clear()

        for s in sessions:
            s.close(CLOSE_GOING_AWAY, "server shutting down")

    @property
    def port(self) -> int | None:
        """The bound port (useful when configured with port 0)."""
        if self._server is None:
            return None
        return self._server.socket.getsockname()[1]

    def _status_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.status_log_interval_s)):
            try:
                self.status_reporter.log_status(self.log)
            except Exception:
                self.log.exception("Status report failed")

    # HTTP diagnostics

    def _json_response(self, connection: ServerConnection, body: Any) -> Response:
        response = connection.respond(HTTPStatus.OK, encode(body) + "\n")
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        return response

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        path = urlsplit(request.path).path
        if path == self.config.status_path:
            return self._json_response(
                connection, self.status_reporter.snapshot().as_dict()
            )
        if path == self.config.rooms_path:
            return self._json_response(connection, self.status_reporter.rooms_listing())
        if path != self.config.ws_path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    # Connection lifecycle

    def _on_connection(self, connection: ServerConnection) -> None:
        self.handle_channel(WebSocketChannel(connection))

    def handle_channel(self, channel: Channel) -> None:
        """Run one client connection from handshake to teardown."""
        session = Session(channel)
        self.log.info("CONNECT conn=%s remote=%s", session.id, session.remote)

        if self._shutdown.is_set():
            session.close(CLOSE_GOING_AWAY, "server shutting down")
            return

        with self._live_lock:
            self._live.add(session)

        monitor: HeartbeatMonitor | None = None
        reason = "closed"
        try:
            req = self._await_join(session)
            if req is None or not self._join(session, req):
                return

            monitor = HeartbeatMonitor(
                session,
                interval_s=self.config.ping_interval_s,
                timeout_s=self.config.ping_timeout_s,
                on_timeout=self._on_liveness_timeout,
                stats=self.stats_manager,
            ).start()

            reason = self.router.run(session)
        except Exception:
            self.log.exception("Connection handler failed conn=%s", session.id)
            reason = "internal error"
        finally:
            with self._live_lock:
                self._live.discard(session)
            self.disconnect(session, reason)
            if monitor is not None:
                monitor.join(timeout=max(1.0, self.config.ping_interval_s))

    def _await_join(self, session: Session) -> JoinRequest | None:
        """Read the join request within the handshake deadline.

        On failure the session is closed without touching the directory.
        """
        timeout = float(self.config.join_timeout_s)
        try:
            frame = session.channel.recv(timeout=timeout)
        except TimeoutError:
            err = HandshakeTimeout(session.id, timeout)
            self.stats_manager.inc("handshake_timeouts")
            self.log.info("Handshake timeout conn=%s: %s", session.id, err)
            session.close(CLOSE_POLICY, "join timeout")
            return None
        except ChannelClosed:
            session.close(CLOSE_NORMAL, "closed before join")
            return None
        except MalformedFrame as e:
            err_text = str(e)
        else:
            self.stats_manager.inc("frames_in")
            self.stats_manager.inc("bytes_in", len(frame))
            try:
                return parse_join_request(
                    frame,
                    max_name_chars=self.config.name_max_chars,
                    max_room_chars=self.config.room_name_max_chars,
                )
            except MalformedFrame as e:
                err_text = str(e)

        self.stats_manager.inc("joins_rejected")
        self.log.info("Bad join request conn=%s err=%s", session.id, err_text)
        self.broadcaster.send_error(session, ERR_BAD_JOIN)
        session.close(CLOSE_POLICY, ERR_BAD_JOIN)
        return None

    def _join(self, session: Session, req: JoinRequest) -> bool:
        if not session.begin_join(req.room, req.username):
            return False

        allow_create = req.create or self.config.room_creation == ROOM_CREATION_IMPLICIT
        try:
            snapshot = self.directory.join_or_create(
                session, req.room, req.username, allow_create=allow_create
            )
        except JoinRejected as e:
            self.stats_manager.inc("joins_rejected")
            self.log.info(
                "JOIN rejected room=%s name=%r conn=%s reason=%s",
                req.room,
                req.username,
                session.id,
                e.reason,
            )
            self.broadcaster.send_error(session, e.reason)
            session.close(CLOSE_POLICY, e.reason)
            return False
        except RuntimeError as e:
            self.log.info("JOIN aborted conn=%s: %s", session.id, e)
            return False

        self.stats_manager.inc("joins")
        self.log.info(
            "JOIN room=%s name=%r conn=%s create=%s members=%s",
            req.room,
            req.username,
            session.id,
            req.create,
            len(snapshot.users),
        )
        session.touch()
        self.broadcaster.broadcast_room_info(snapshot)
        return True

    def disconnect(
        self, session: Session, reason: str, code: int = CLOSE_NORMAL
    ) -> bool:
        """
        Tear a session down. Safe to call from any thread, any number of times.

        Only the call that removes the session from the directory notifies the
        remaining members; every call after the first is a no-op.
        """
        removed, remaining = self.directory.leave(session)
        if removed:
            self.stats_manager.inc("leaves")
            self.log.info(
                "LEAVE room=%s name=%r conn=%s reason=%s",
                session.room,
                session.name,
                session.id,
                reason,
            )
            if remaining is not None:
                self.broadcaster.broadcast_room_info(remaining)

        if session.close(code, reason):
            self.log.info(
                "DISCONNECT conn=%s remote=%s reason=%s",
                session.id,
                session.remote,
                reason,
            )
        return removed

    def _on_liveness_timeout(self, session: Session, err: LivenessTimeout) -> None:
        self.log.warning(
            "Liveness timeout room=%s name=%r conn=%s: %s",
            session.room,
            session.name,
            session.id,
            err,
        )
        try:
            self.disconnect(session, "liveness timeout", CLOSE_GOING_AWAY)
        except Exception:
            self.log.exception("Teardown after liveness timeout failed conn=%s", session.id)
