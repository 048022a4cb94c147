"""Tests for the Socket.IO transport adapter."""

import urllib.parse
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import socketio

from petchat.realtime.transport import SocketIOTransport, build_url
from petchat.realtime.types import Identity


@pytest.fixture
def mock_sio():
    sio = MagicMock()
    sio.connected = False
    sio.connect = AsyncMock()
    sio.emit = AsyncMock()
    sio.disconnect = AsyncMock()
    with patch("petchat.realtime.transport.socketio.AsyncClient", return_value=sio) as cls:
        sio.cls = cls
        yield sio


@pytest.fixture
def transport(mock_sio):
    return SocketIOTransport(
        server_url="https://chat.example.com",
        transports=["websocket", "polling"],
        connect_timeout=20,
    )


@pytest.fixture
def identity():
    return Identity(token="t1", user_id="u1", active_pet_id="p1")


class TestBuildUrl:
    def test_adds_pet_id(self):
        assert build_url("https://chat.example.com", "p1") == "https://chat.example.com?petId=p1"

    def test_keeps_existing_query(self):
        url = build_url("https://chat.example.com/?v=2", "p1")
        query = dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(url).query))
        assert query == {"v": "2", "petId": "p1"}

    def test_replaces_existing_pet_id(self):
        url = build_url("https://chat.example.com?petId=old", "new")
        assert url.count("petId") == 1
        assert url.endswith("petId=new")


class TestSocketIOTransport:
    def test_library_reconnection_disabled(self, transport, mock_sio):
        kwargs = mock_sio.cls.call_args.kwargs
        assert kwargs["reconnection"] is False

    @pytest.mark.asyncio
    async def test_open_sends_identity_both_ways(self, transport, mock_sio, identity):
        await transport.open(identity)

        kwargs = mock_sio.connect.call_args.kwargs
        assert kwargs["url"] == "https://chat.example.com?petId=p1"
        assert kwargs["auth"] == {"token": "t1", "userId": "u1", "petId": "p1"}
        assert kwargs["transports"] == ["websocket", "polling"]
        assert kwargs["wait_timeout"] == 20

    @pytest.mark.asyncio
    async def test_reconnect_reuses_handshake(self, transport, mock_sio, identity):
        await transport.open(identity)
        await transport.reconnect()

        assert mock_sio.connect.await_count == 2
        first, second = mock_sio.connect.call_args_list
        assert first == second

    @pytest.mark.asyncio
    async def test_reconnect_when_connected_is_noop(self, transport, mock_sio, identity):
        await transport.open(identity)
        mock_sio.connected = True

        await transport.reconnect()

        assert mock_sio.connect.await_count == 1

    @pytest.mark.asyncio
    async def test_reconnect_before_open(self, transport):
        with pytest.raises(RuntimeError):
            await transport.reconnect()

    @pytest.mark.asyncio
    async def test_handshake_timeout_reports_connect_error(self, transport, mock_sio, identity):
        handler = AsyncMock()
        transport.on("connect_error", handler)
        mock_sio.connect.side_effect = socketio.exceptions.ConnectionError(
            "One or more namespaces failed to connect"
        )

        await transport.open(identity)

        handler.assert_awaited_once_with("One or more namespaces failed to connect")

    @pytest.mark.asyncio
    async def test_connect_error_not_reported_twice(self, transport, mock_sio, identity):
        handler = AsyncMock()
        transport.on("connect_error", handler)

        async def rejected(**kwargs):
            await transport._on_connect_error({"message": "unauthorized"})
            raise socketio.exceptions.ConnectionError("Connection refused by the server")

        mock_sio.connect.side_effect = rejected

        await transport.open(identity)

        handler.assert_awaited_once_with({"message": "unauthorized"})

    def test_other_handlers_go_to_client(self, transport, mock_sio):
        handler = MagicMock()
        transport.on("message", handler)
        mock_sio.on.assert_any_call("message", handler)

    @pytest.mark.asyncio
    async def test_emit_and_close(self, transport, mock_sio):
        await transport.emit("typing", {"chatId": "c1"})
        await transport.close()

        mock_sio.emit.assert_awaited_once_with("typing", {"chatId": "c1"})
        mock_sio.disconnect.assert_awaited_once()
