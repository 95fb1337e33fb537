from __future__ import annotations

import os

from .constants import NAME_MAX_CHARS, ROOM_NAME_MAX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def _normalize_label(value, max_chars: int) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > max_chars:
        return None

    # Names end up in room_info lists and log lines.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    try:
        s.encode("utf-8", "strict")
    except UnicodeError:
        return None

    return s


def normalize_name(value, *, max_chars: int = NAME_MAX_CHARS) -> str | None:
    """Return the display name as stored in the directory, or None if invalid.

    Names are case-sensitive; "Alice" and "alice" may share a room.
    """
    return _normalize_label(value, int(max_chars))


def normalize_room(value, *, max_chars: int = ROOM_NAME_MAX_CHARS) -> str | None:
    return _normalize_label(value, int(max_chars))


def fmt_addr(addr) -> str:
    if isinstance(addr, tuple) and len(addr) >= 2:
        host, port = addr[0], addr[1]
        if ":" in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    if addr is None:
        return "-"
    return str(addr)
