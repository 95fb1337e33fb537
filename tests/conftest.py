from __future__ import annotations

import threading

import pytest
from fakes import FakeChannel

from sigrelay.broadcast import Broadcaster
from sigrelay.config import RelayRuntimeConfig
from sigrelay.rooms import RoomDirectory
from sigrelay.service import RelayService
from sigrelay.session import Session
from sigrelay.stats import StatsManager


@pytest.fixture
def stats() -> StatsManager:
    return StatsManager()


@pytest.fixture
def directory(stats: StatsManager) -> RoomDirectory:
    return RoomDirectory(stats)


@pytest.fixture
def broadcaster(directory: RoomDirectory, stats: StatsManager) -> Broadcaster:
    return Broadcaster(directory, stats)


@pytest.fixture
def join(directory: RoomDirectory):
    """Create a session on a fake channel and register it in the directory."""

    def _join(room: str, name: str, *, allow_create: bool = True, **channel_kw):
        ch = FakeChannel(**channel_kw)
        s = Session(ch)
        s.begin_join(room, name)
        directory.join_or_create(s, room, name, allow_create=allow_create)
        return s, ch

    return _join


@pytest.fixture
def relay_config() -> RelayRuntimeConfig:
    return RelayRuntimeConfig(
        join_timeout_s=1.0,
        ping_interval_s=0.0,
        status_log_interval_s=0.0,
    )


@pytest.fixture
def service(relay_config: RelayRuntimeConfig):
    svc = RelayService(relay_config)
    yield svc
    svc.stop()


@pytest.fixture
def connect(service: RelayService):
    """Run service.handle_channel for a new fake client on its own thread."""
    threads: list[threading.Thread] = []

    def _connect(join_request=None, **channel_kw):
        ch = FakeChannel(**channel_kw)
        if join_request is not None:
            ch.feed_json(join_request)
        t = threading.Thread(target=service.handle_channel, args=(ch,), daemon=True)
        t.start()
        threads.append(t)
        return ch, t

    yield _connect

    service.stop()
    for t in threads:
        t.join(timeout=2.0)
