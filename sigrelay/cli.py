from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import RelayService


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    d = RelayRuntimeConfig()
    content = f"""# sigrelay configuration (TOML)
#
# This file was created on first run.
# Edit it, then start sigrelay again.

[relay]

# Listener. The WebSocket endpoint and the JSON diagnostics share one port.
host = {d.host!r}
port = {d.port}
ws_path = {d.ws_path!r}
status_path = {d.status_path!r}
rooms_path = {d.rooms_path!r}

# Room creation policy.
#   "explicit": a join must carry "create": true to open a new room;
#               joining a room that does not exist fails with "room not found".
#   "implicit": the first joiner always creates the room.
room_creation = {d.room_creation!r}

# Frames that are neither control frames nor sdp/ice payloads.
#   "permissive": forward them to the room like any relay payload.
#   "strict":     drop them.
relay_mode = {d.relay_mode!r}

# Seconds a new connection has to send its join request.
join_timeout_s = {d.join_timeout_s}

# Liveness checks. A ping is sent every ping_interval_s; a session with no
# pong or other traffic for ping_timeout_s is disconnected. 0 disables.
ping_interval_s = {d.ping_interval_s}
ping_timeout_s = {d.ping_timeout_s}

# Seconds to wait for the closing handshake.
close_timeout_s = {d.close_timeout_s}

# Log a status summary every N seconds (0 disables).
status_log_interval_s = {d.status_log_interval_s}

# Limits.
max_frame_bytes = {d.max_frame_bytes}
name_max_chars = {d.name_max_chars}
room_name_max_chars = {d.room_name_max_chars}

[logging]

# Log level for sigrelay itself.
level = "INFO"

# Log level for the websockets library.
websockets_level = "WARNING"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

# Log format and optional date format.
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="sigrelay", description="Run a WebRTC signaling relay"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument("--ws-path", default=None, help="WebSocket endpoint path")

    creation = p.add_mutually_exclusive_group()
    creation.add_argument(
        "--implicit-create",
        action="store_true",
        help="Let the first joiner create a room without the create flag",
    )
    creation.add_argument(
        "--explicit-create",
        action="store_true",
        help="Require the create flag to open a new room",
    )
    p.add_argument(
        "--strict-relay",
        action="store_true",
        help="Only forward frames that carry sdp or ice",
    )

    p.add_argument(
        "--join-timeout",
        type=float,
        default=None,
        help="Seconds a new connection has to send its join request",
    )
    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Liveness ping interval seconds (0 disables)",
    )
    p.add_argument(
        "--ping-timeout",
        type=float,
        default=None,
        help="Disconnect sessions idle for this many seconds",
    )
    p.add_argument(
        "--status-interval",
        type=float,
        default=None,
        help="Status log interval seconds (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    config_path = str(args.config)

    cfg = RelayRuntimeConfig(config_path=config_path)
    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.ws_path is not None:
        cfg = replace(cfg, ws_path=str(args.ws_path))

    if args.implicit_create:
        cfg = replace(cfg, room_creation="implicit")
    if args.explicit_create:
        cfg = replace(cfg, room_creation="explicit")
    if args.strict_relay:
        cfg = replace(cfg, relay_mode="strict")

    if args.join_timeout is not None:
        cfg = replace(cfg, join_timeout_s=float(args.join_timeout))
    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.ping_timeout is not None:
        cfg = replace(cfg, ping_timeout_s=float(args.ping_timeout))
    if args.status_interval is not None:
        cfg = replace(cfg, status_log_interval_s=float(args.status_interval))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = str(args.config)
    if not os.path.exists(config_path):
        _write_default_config(config_path)
        print(
            "Created default sigrelay config. Edit it before starting:\n"
            f"- Config: {config_path}\n"
            "\nThen re-run sigrelay.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)
    try:
        validate_config(cfg)
    except ValueError as e:
        print(f"sigrelay: invalid configuration: {e}", file=sys.stderr)
        raise SystemExit(2) from e

    configure_logging(cfg)

    svc = RelayService(cfg)
    try:
        svc.start()
    except OSError as e:
        logging.getLogger("sigrelay.relay").error(
            "Cannot listen on %s:%s: %s", cfg.host, cfg.port, e
        )
        raise SystemExit(1) from e
    svc.run_forever()


if __name__ == "__main__":
    main()
