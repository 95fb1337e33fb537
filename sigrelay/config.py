from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import (
    NAME_MAX_CHARS,
    RELAY_MODE_PERMISSIVE,
    RELAY_MODE_STRICT,
    ROOM_CREATION_EXPLICIT,
    ROOM_CREATION_IMPLICIT,
    ROOM_NAME_MAX_CHARS,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 8080
    ws_path: str = "/ws"
    status_path: str = "/status"
    rooms_path: str = "/rooms"
    room_creation: str = ROOM_CREATION_EXPLICIT
    relay_mode: str = RELAY_MODE_PERMISSIVE
    join_timeout_s: float = 10.0
    ping_interval_s: float = 15.0
    ping_timeout_s: float = 30.0
    close_timeout_s: float = 5.0
    status_log_interval_s: float = 60.0
    max_frame_bytes: int = 1024 * 1024  # 1 MiB
    name_max_chars: int = NAME_MAX_CHARS
    room_name_max_chars: int = ROOM_NAME_MAX_CHARS
    log_level: str = "INFO"
    log_websockets_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    """Overlay the ``[relay]`` and ``[logging]`` tables of a config file."""
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        if "level" in log_table:
            mapped["log_level"] = log_table.get("level")
        if "websockets_level" in log_table:
            mapped["log_websockets_level"] = log_table.get("websockets_level")
        if "console" in log_table:
            mapped["log_console"] = log_table.get("console")
        if "file" in log_table:
            mapped["log_file"] = log_table.get("file")
        if "format" in log_table:
            mapped["log_format"] = log_table.get("format")
        if "datefmt" in log_table:
            mapped["log_datefmt"] = log_table.get("datefmt")
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the file was read from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None
    return replace(base, **updates) if updates else base


def validate_config(cfg: RelayRuntimeConfig) -> None:
    if cfg.room_creation not in (ROOM_CREATION_EXPLICIT, ROOM_CREATION_IMPLICIT):
        raise ValueError(f"room_creation must be 'explicit' or 'implicit', got {cfg.room_creation!r}")
    if cfg.relay_mode not in (RELAY_MODE_PERMISSIVE, RELAY_MODE_STRICT):
        raise ValueError(f"relay_mode must be 'permissive' or 'strict', got {cfg.relay_mode!r}")
    if not isinstance(cfg.port, int) or not 0 <= cfg.port <= 65535:
        raise ValueError(f"port out of range: {cfg.port!r}")
    for name in ("ws_path", "status_path", "rooms_path"):
        value = getattr(cfg, name)
        if not isinstance(value, str) or not value.startswith("/"):
            raise ValueError(f"{name} must start with '/': {value!r}")
    if cfg.ws_path in (cfg.status_path, cfg.rooms_path):
        raise ValueError("ws_path must differ from the diagnostic paths")
    for name in (
        "join_timeout_s",
        "ping_interval_s",
        "ping_timeout_s",
        "close_timeout_s",
        "status_log_interval_s",
    ):
        if float(getattr(cfg, name)) < 0:
            raise ValueError(f"{name} must not be negative")
    if cfg.join_timeout_s <= 0:
        raise ValueError("join_timeout_s must be positive")
    if cfg.ping_interval_s > 0 and 0 < cfg.ping_timeout_s <= cfg.ping_interval_s:
        raise ValueError("ping_timeout_s must be longer than ping_interval_s")
    if cfg.max_frame_bytes <= 0:
        raise ValueError("max_frame_bytes must be positive")
