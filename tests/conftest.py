"""Shared test fixtures and configuration for petchat tests."""

import asyncio
import os
from typing import Optional

import pytest

from petchat.realtime.transport import Transport
from petchat.realtime.types import Identity, ReconnectPolicy


@pytest.fixture(autouse=True)
def isolate_home_directory(tmp_path, monkeypatch):
    """
    Redirect Path.home() and os.path.expanduser() to a temporary directory.

    Keeps tests from reading a developer's ~/.petchat/petchat.env or
    overwriting their stored token.
    """
    fake_home = tmp_path / "home"
    (fake_home / ".petchat").mkdir(parents=True)

    monkeypatch.setattr("pathlib.Path.home", lambda: fake_home)

    original_expanduser = os.path.expanduser

    def mock_expanduser(path):
        if path.startswith("~"):
            return str(fake_home) + path[1:]
        return original_expanduser(path)

    monkeypatch.setattr("os.path.expanduser", mock_expanduser)

    yield fake_home


class FakeTransport(Transport):
    """In-memory transport. Tests play the server through the helpers."""

    def __init__(self, auto_connect: bool = False, echo: bool = False):
        self.auto_connect = auto_connect
        self.echo = echo
        self.handlers = {}
        self.opened_with: Optional[Identity] = None
        self.open_calls = 0
        self.reconnect_calls = 0
        self.closed = False
        self.emitted = []
        self.emit_error: Optional[Exception] = None
        self.handshake_error: Optional[Exception] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def on(self, event, handler):
        self.handlers[event] = handler

    async def open(self, identity):
        self.opened_with = identity
        self.open_calls += 1
        if self.handshake_error is not None:
            raise self.handshake_error
        if self.auto_connect:
            await self.server_connect()

    async def reconnect(self):
        self.reconnect_calls += 1
        if self.handshake_error is not None:
            raise self.handshake_error
        if self.auto_connect:
            await self.server_connect()

    async def emit(self, event, payload):
        if self.emit_error is not None:
            raise self.emit_error
        self.emitted.append((event, payload))
        if self.echo:
            if event == "send_message":
                await self.fire("message_sent", dict(payload, senderPetName="Rex"))
            elif event == "join_chat":
                await self.fire("joined_chat", payload)

    async def close(self):
        self.closed = True
        was_connected = self._connected
        self._connected = False
        if was_connected:
            await self.fire("disconnect", "io client disconnect")

    # Server side

    async def fire(self, event, *args):
        handler = self.handlers.get(event)
        if handler is None:
            return
        result = handler(*args)
        if asyncio.iscoroutine(result):
            await result

    async def server_connect(self):
        self._connected = True
        await self.fire("connect")

    async def server_disconnect(self, reason="io server disconnect"):
        self._connected = False
        await self.fire("disconnect", reason)

    async def connect_error(self, data="connection refused"):
        self._connected = False
        await self.fire("connect_error", data)

    def die_silently(self):
        self._connected = False

    def emitted_events(self, name):
        return [payload for event, payload in self.emitted if event == name]


class FakeTransportFactory:
    """Creates FakeTransports and remembers them in order."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.created: list[FakeTransport] = []
        self.live_at_creation: list[list[FakeTransport]] = []

    def __call__(self) -> FakeTransport:
        self.live_at_creation.append([t for t in self.created if t.connected])
        transport = FakeTransport(**self.kwargs)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


async def settle(rounds: int = 5):
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def fire_backoff(manager):
    """Run the armed backoff timer now instead of waiting for it."""
    timer = manager._backoff_timer
    assert timer is not None, "no backoff timer armed"
    timer.cancel()
    manager._fire_reconnect()


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def identity():
    return Identity(token="t1", user_id="u1", active_pet_id="p1")


@pytest.fixture
def fast_policy():
    return ReconnectPolicy(max_attempts=3, base_delay_ms=10)
