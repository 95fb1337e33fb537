import logging
from dataclasses import replace

import pytest

from sigrelay import cli
from sigrelay.config import (
    RelayRuntimeConfig,
    apply_config_data,
    load_toml,
    validate_config,
)
from sigrelay.logging_config import build_handlers, configure_logging, level_from_name


def test_defaults_are_valid() -> None:
    cfg = RelayRuntimeConfig()
    validate_config(cfg)
    assert cfg.room_creation == "explicit"
    assert cfg.relay_mode == "permissive"


def test_apply_config_data_reads_tables(tmp_path) -> None:
    path = tmp_path / "sigrelay.toml"
    path.write_text(
        """
[relay]
host = "127.0.0.1"
port = 9000
room_creation = "implicit"
relay_mode = "strict"
ping_interval_s = 5
ping_timeout_s = 12
config_path = "/elsewhere.toml"
unknown_key = 1

[logging]
level = "DEBUG"
file = ""
datefmt = ""
""",
        encoding="utf-8",
    )

    base = RelayRuntimeConfig(config_path=str(path))
    cfg = apply_config_data(base, load_toml(str(path)))

    assert cfg.host == "127.0.0.1"
    assert cfg.port == 9000
    assert cfg.room_creation == "implicit"
    assert cfg.relay_mode == "strict"
    assert cfg.ping_interval_s == 5
    assert cfg.ping_timeout_s == 12
    assert cfg.config_path == str(path)
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None
    assert cfg.log_datefmt is None
    validate_config(cfg)


def test_apply_empty_data_returns_base() -> None:
    base = RelayRuntimeConfig()
    assert apply_config_data(base, {}) is base


@pytest.mark.parametrize(
    "changes",
    [
        {"room_creation": "sometimes"},
        {"relay_mode": "open"},
        {"port": 70000},
        {"ws_path": "ws"},
        {"ws_path": "/status"},
        {"join_timeout_s": 0},
        {"ping_timeout_s": -1},
        {"ping_interval_s": 10, "ping_timeout_s": 10},
        {"max_frame_bytes": 0},
    ],
)
def test_validate_rejects(changes) -> None:
    with pytest.raises(ValueError):
        validate_config(replace(RelayRuntimeConfig(), **changes))


def test_cli_flags_override_file(tmp_path) -> None:
    path = tmp_path / "sigrelay.toml"
    path.write_text('[relay]\nport = 9000\nroom_creation = "implicit"\n', encoding="utf-8")

    args = cli._build_arg_parser().parse_args(
        [
            "--config",
            str(path),
            "--port",
            "9100",
            "--explicit-create",
            "--strict-relay",
            "--ping-interval",
            "0",
            "--log-file",
            "",
        ]
    )
    cfg = cli.build_config(args)

    assert cfg.port == 9100
    assert cfg.room_creation == "explicit"
    assert cfg.relay_mode == "strict"
    assert cfg.ping_interval_s == 0.0
    assert cfg.log_file is None


def test_creation_flags_are_exclusive() -> None:
    with pytest.raises(SystemExit):
        cli._build_arg_parser().parse_args(["--implicit-create", "--explicit-create"])


def test_first_run_writes_default_config(tmp_path) -> None:
    path = tmp_path / "conf" / "sigrelay.toml"

    with pytest.raises(SystemExit) as exc:
        cli.main(["--config", str(path)])
    assert exc.value.code == 0
    assert path.exists()

    cfg = apply_config_data(RelayRuntimeConfig(), load_toml(str(path)))
    assert cfg == RelayRuntimeConfig()


def test_invalid_config_exits(tmp_path) -> None:
    path = tmp_path / "sigrelay.toml"
    path.write_text('[relay]\nrelay_mode = "open"\n', encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        cli.main(["--config", str(path)])
    assert exc.value.code == 2


def test_configure_logging_sets_levels(tmp_path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    log_file = tmp_path / "logs" / "sigrelay.log"
    try:
        args = cli._build_arg_parser().parse_args(
            [
                "--config",
                str(tmp_path / "missing.toml"),
                "--log-level",
                "debug",
                "--log-file",
                str(log_file),
            ]
        )
        cfg = replace(
            cli.build_config(args), log_console=False, log_websockets_level="ERROR"
        )
        configure_logging(cfg)
        assert root.level == logging.DEBUG
        assert logging.getLogger("websockets").level == logging.ERROR
        logging.getLogger("sigrelay.test").info("hello KEY=%s", "value")
        for h in root.handlers:
            h.flush()
        assert "hello KEY=value" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.getLogger("websockets").setLevel(logging.NOTSET)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("debug", logging.DEBUG),
        ("WARN", logging.WARNING),
        ("15", 15),
        (logging.ERROR, logging.ERROR),
        ("", logging.INFO),
        (None, logging.INFO),
        ("chatty", logging.INFO),
    ],
)
def test_level_from_name(value, expected: int) -> None:
    assert level_from_name(value, logging.INFO) == expected


def test_build_handlers_follows_config(tmp_path) -> None:
    assert build_handlers(RelayRuntimeConfig(log_console=False)) == []

    handlers = build_handlers(
        RelayRuntimeConfig(log_file=str(tmp_path / "relay.log"), log_datefmt="%H:%M")
    )
    try:
        assert [type(h) for h in handlers] == [logging.StreamHandler, logging.FileHandler]
        assert handlers[0].formatter.datefmt == "%H:%M"
    finally:
        for h in handlers:
            h.close()
