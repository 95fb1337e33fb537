"""Logging setup for the relay process.

Everything comes from :class:`RelayRuntimeConfig`; command-line overrides are
already folded into it by ``cli.build_config``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .config import RelayRuntimeConfig
from .util import expand_path

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def level_from_name(value: str | int | None, default: int) -> int:
    """Map a config level ("debug", "WARN", "10") onto a logging level."""
    if isinstance(value, int):
        return value
    text = (value or "").strip().upper()
    if not text:
        return default
    if text == "WARN":
        return logging.WARNING
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text)
    return level if isinstance(level, int) else default


def _file_handler(path: str) -> logging.Handler:
    p = Path(expand_path(path))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        # Logs carry peer addresses and room names.
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def build_handlers(cfg: RelayRuntimeConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if cfg.log_file and cfg.log_file.strip():
        handlers.append(_file_handler(cfg.log_file))

    formatter = logging.Formatter(
        fmt=(cfg.log_format or "").strip() or DEFAULT_FORMAT,
        datefmt=(cfg.log_datefmt or "").strip() or None,
    )
    for h in handlers:
        h.setFormatter(formatter)
    return handlers


def configure_logging(cfg: RelayRuntimeConfig) -> None:
    """Install the relay's handlers on the root logger.

    Replaces any handlers already installed, so it is safe to call again.
    The ``websockets`` library logger gets its own level so handshake noise
    can stay quiet while ``sigrelay.*`` runs at DEBUG.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    for h in build_handlers(cfg):
        root.addHandler(h)
    root.setLevel(level_from_name(cfg.log_level, logging.INFO))

    logging.getLogger("websockets").setLevel(
        level_from_name(cfg.log_websockets_level, logging.WARNING)
    )
    logging.captureWarnings(True)
