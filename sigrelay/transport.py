"""WebSocket transport adapter.

The relay core talks to a duplex channel with framed ``send``/``recv``, a
liveness ``ping`` and ``close``. This module wraps a connection from the
websockets threaded server into that shape and maps library exceptions onto
:class:`ChannelClosed`.
"""

from __future__ import annotations

import threading
from typing import Protocol

from websockets.exceptions import ConnectionClosed
from websockets.sync.server import ServerConnection

from .constants import CLOSE_NORMAL
from .errors import MalformedFrame
from .util import fmt_addr


class ChannelClosed(Exception):
    """The transport is closed; no further frames can be sent or received."""


class Channel(Protocol):
    channel_id: str
    remote: str

    def recv(self, timeout: float | None = None) -> str: ...

    def send(self, text: str) -> None: ...

    def ping(self) -> threading.Event: ...

    def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None: ...


class WebSocketChannel:
    def __init__(self, connection: ServerConnection) -> None:
        self._conn = connection
        self.channel_id = str(connection.id)
        self.remote = fmt_addr(getattr(connection, "remote_address", None))

    def recv(self, timeout: float | None = None) -> str:
        """Block for the next text frame.

        Raises TimeoutError when ``timeout`` elapses and ChannelClosed when the
        peer or another thread closes the connection.
        """
        try:
            msg = self._conn.recv(timeout=timeout)
        except ConnectionClosed as e:
            raise ChannelClosed(str(e)) from e
        if isinstance(msg, (bytes, bytearray)):
            try:
                return bytes(msg).decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedFrame(f"binary frame is not UTF-8: {e}") from e
        return msg

    def send(self, text: str) -> None:
        try:
            self._conn.send(text)
        except ConnectionClosed as e:
            raise ChannelClosed(str(e)) from e

    def ping(self) -> threading.Event:
        """Send a transport ping; the returned event is set when the pong arrives."""
        try:
            return self._conn.ping()
        except ConnectionClosed as e:
            raise ChannelClosed(str(e)) from e

    def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        self._conn.close(code, reason)
