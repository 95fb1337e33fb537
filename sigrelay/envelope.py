from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .codec import decode
from .constants import (
    B_STREAMING_USERS,
    B_USERS,
    J_CREATE,
    J_ROOM,
    J_USERNAME,
    K_DATA,
    K_TYPE,
    KIND_UNKNOWN,
    NAME_MAX_CHARS,
    RELAY_KEYS,
    ROOM_NAME_MAX_CHARS,
    SERVER_ONLY_TAGS,
    T_END_STREAM,
    T_ERROR,
    T_JOIN,
    T_LEAVE,
    T_PING,
    T_PONG,
    T_RELAY,
    T_ROOM_INFO,
    T_START_STREAM,
    T_STREAM_ENDED,
)
from .errors import MalformedFrame
from .util import normalize_name, normalize_room

_CONTROL_TAGS = frozenset({T_LEAVE, T_PING, T_PONG, T_START_STREAM, T_END_STREAM})


@dataclass(frozen=True)
class JoinRequest:
    room: str
    username: str
    create: bool = False


def make_envelope(msg_type: str, data=None) -> dict:
    env: dict[str, object] = {K_TYPE: str(msg_type)}
    if data is not None:
        env[K_DATA] = data
    return env


def room_info_envelope(
    users: Iterable[str], streaming_users: Iterable[str] = ()
) -> dict:
    return make_envelope(
        T_ROOM_INFO,
        {B_USERS: list(users), B_STREAMING_USERS: list(streaming_users)},
    )


def error_envelope(text: str) -> dict:
    return make_envelope(T_ERROR, str(text))


def pong_envelope() -> dict:
    return make_envelope(T_PONG)


def stream_ended_envelope(name: str) -> dict:
    return make_envelope(T_STREAM_ENDED, name)


def parse_frame(frame: str | bytes) -> dict:
    """Decode one inbound text frame into a JSON object."""
    try:
        env = decode(frame)
    except (ValueError, TypeError) as e:
        raise MalformedFrame(f"not JSON: {e}") from e
    if not isinstance(env, dict):
        raise MalformedFrame("frame must be a JSON object")
    t = env.get(K_TYPE)
    if t is not None and not isinstance(t, str):
        raise MalformedFrame("type tag must be a string")
    return env


def parse_join_request(
    frame: str | bytes,
    *,
    max_name_chars: int = NAME_MAX_CHARS,
    max_room_chars: int = ROOM_NAME_MAX_CHARS,
) -> JoinRequest:
    """Parse the first frame of a connection.

    ``{"room": str, "username": str, "create": bool}``; an optional
    ``"type": "join"`` tag is accepted and ``create`` defaults to false.
    """
    env = parse_frame(frame)

    t = env.get(K_TYPE)
    if t is not None and t != T_JOIN:
        raise MalformedFrame(f"expected join request, got type {t!r}")

    room = normalize_room(env.get(J_ROOM), max_chars=max_room_chars)
    if room is None:
        raise MalformedFrame("join request needs a valid room name")

    username = normalize_name(env.get(J_USERNAME), max_chars=max_name_chars)
    if username is None:
        raise MalformedFrame("join request needs a valid username")

    create = env.get(J_CREATE, False)
    if create is None:
        create = False
    if not isinstance(create, bool):
        raise MalformedFrame("create must be a boolean")

    return JoinRequest(room=room, username=username, create=create)


def is_relay_payload(env: dict) -> bool:
    return any(k in env for k in RELAY_KEYS)


def classify_frame(env: dict) -> str:
    """Return the routing kind of a parsed frame.

    One of the control tags, ``relay``, ``join`` or a server-only tag (both
    dropped by the router once a session is active), or ``unknown``.
    """
    t = env.get(K_TYPE)
    if t in _CONTROL_TAGS or t in SERVER_ONLY_TAGS or t == T_JOIN:
        return t
    if t == T_RELAY or is_relay_payload(env):
        return T_RELAY
    return KIND_UNKNOWN
