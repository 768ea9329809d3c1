from __future__ import annotations

import itertools

import pytest

from relayd.codec import JSON, Codec
from relayd.config import RelayRuntimeConfig
from relayd.connection import Connection
from relayd.constants import MODE_APP
from relayd.service import RelayService

_ids = itertools.count(1)


class FakeConnection(Connection):
    """In-memory connection that records every payload written to it."""

    def __init__(self, name: str | None = None, codec: Codec = JSON, *, fail: bool = False) -> None:
        super().__init__(f"fake:{name or next(_ids)}", codec)
        self.sent: list[bytes | str] = []
        self.fail = fail
        self.torn_down = False

    def _write(self, payload: bytes | str) -> None:
        if self.fail:
            raise OSError("simulated transport failure")
        self.sent.append(payload)

    def _teardown(self) -> None:
        self.torn_down = True

    def received(self) -> list[dict]:
        return [self.codec.decode(p) for p in self.sent]


def make_relay(mode: str = MODE_APP) -> RelayService:
    return RelayService(
        RelayRuntimeConfig(enable_rns=False, enable_websocket=False, router_mode=mode)
    )


@pytest.fixture
def relay() -> RelayService:
    return make_relay()


@pytest.fixture
def signaling_relay() -> RelayService:
    return make_relay("signaling")


@pytest.fixture
def make_conn():
    def factory(name: str | None = None, codec: Codec = JSON, *, fail: bool = False) -> FakeConnection:
        return FakeConnection(name, codec, fail=fail)

    return factory


@pytest.fixture
def connect(relay):
    """Open a fake connection on ``relay``."""

    def factory(name: str | None = None, codec: Codec = JSON, *, fail: bool = False) -> FakeConnection:
        conn = FakeConnection(name, codec, fail=fail)
        relay.session_manager.on_open(conn)
        return conn

    return factory


@pytest.fixture
def send(relay):
    """Route an envelope from ``conn`` as if it arrived on the wire."""

    def _send(conn: Connection, env: dict):
        return relay.router.route_packet(conn, conn.codec.encode(env))

    return _send
