"""Tests for inbound event fan-out and outbound chat operations."""

import json

import pytest
import pytest_asyncio

from petchat.realtime import events
from petchat.realtime.client import ConnectionManager
from petchat.realtime.dispatcher import MessageDispatcher
from petchat.realtime.types import (
    ChannelKey,
    ChatError,
    ConnectionState,
    MessageEnvelope,
    MessageType,
    PresenceEvent,
    SendResult,
    TypingEvent,
)

from conftest import settle

MESSAGE_PAYLOAD = {
    "id": "1700000000000",
    "chatId": "c1",
    "content": "woof",
    "senderId": "u2",
    "senderPetId": "p2",
    "senderPetName": "Rex",
    "timestamp": "2024-01-01T00:00:00.000Z",
    "type": "text",
}


@pytest.fixture
def manager(transport_factory, fast_policy):
    return ConnectionManager(
        transport_factory=transport_factory,
        policy=fast_policy,
        liveness_interval=3600,
    )


@pytest.fixture
def dispatcher(manager):
    return MessageDispatcher(manager)


@pytest_asyncio.fixture
async def transport(manager, dispatcher, identity, transport_factory):
    await manager.connect(identity)
    await settle()
    await transport_factory.last.server_connect()
    await settle()
    yield transport_factory.last
    await manager.disconnect()


class TestInbound:
    @pytest.mark.asyncio
    async def test_message_routed_as_envelope(self, dispatcher, transport):
        received = []
        dispatcher.on(events.MESSAGE, received.append)

        await transport.fire("message", MESSAGE_PAYLOAD)

        assert received == [MessageEnvelope.from_payload(MESSAGE_PAYLOAD)]
        assert received[0].sender_pet_name == "Rex"

    @pytest.mark.asyncio
    async def test_message_sent_has_own_slot(self, dispatcher, transport):
        messages, sent = [], []
        dispatcher.on(events.MESSAGE, messages.append)
        dispatcher.on(events.MESSAGE_SENT, sent.append)

        await transport.fire("message_sent", MESSAGE_PAYLOAD)

        assert messages == []
        assert len(sent) == 1

    @pytest.mark.asyncio
    async def test_each_category_parsed(self, dispatcher, transport):
        received = {}
        for category in events.INBOUND_EVENTS:
            dispatcher.on(category, lambda payload, c=category: received.setdefault(c, payload))

        await transport.fire("typing", {"chatId": "c1", "petId": "p2", "isTyping": True, "petName": "Rex"})
        await transport.fire("typing_stop", {"chatId": "c1", "petId": "p2", "isTyping": False})
        await transport.fire("user_online", {"userId": "u2", "petId": "p2", "isOnline": True})
        await transport.fire("user_offline", {"userId": "u2", "petId": "p2", "isOnline": False, "lastSeen": "x"})
        await transport.fire("joined_chat", {"chatId": "c1", "petId": "p1"})
        await transport.fire("left_chat", {"chatId": "c1", "petId": "p1"})
        await transport.fire("chat_error", {"message": "nope", "chatId": "c1"})

        assert received["typing"] == TypingEvent("c1", "p2", True, "Rex")
        assert received["typing_stop"] == TypingEvent("c1", "p2", False)
        assert received["user_online"] == PresenceEvent("u2", "p2", True)
        assert received["user_offline"] == PresenceEvent("u2", "p2", False, "x")
        assert received["joined_chat"] == ChannelKey("c1", "p1")
        assert received["left_chat"] == ChannelKey("c1", "p1")
        assert received["chat_error"] == ChatError("nope", "c1")

    @pytest.mark.asyncio
    async def test_delivery_preserves_arrival_order(self, dispatcher, transport):
        seen = []
        dispatcher.on(events.MESSAGE, lambda m: seen.append(m.id))

        for i in range(5):
            await transport.fire("message", dict(MESSAGE_PAYLOAD, id=str(i)))

        assert seen == ["0", "1", "2", "3", "4"]

    @pytest.mark.asyncio
    async def test_malformed_payload_dropped(self, dispatcher, transport, caplog):
        received = []
        dispatcher.on(events.MESSAGE, received.append)

        await transport.fire("message", {"content": "no chat id"})
        await transport.fire("message", "not an object")

        assert received == []
        assert "malformed message payload" in caplog.text

    @pytest.mark.asyncio
    async def test_event_without_listener_dropped(self, dispatcher, transport):
        # Must not raise
        await transport.fire("user_online", {"userId": "u2", "petId": "p2", "isOnline": True})

    @pytest.mark.asyncio
    async def test_chat_error_does_not_touch_connection(self, dispatcher, manager, transport):
        errors = []
        dispatcher.on(events.CHAT_ERROR, errors.append)

        await transport.fire("chat_error", {"message": "Chat not found"})

        assert errors == [ChatError("Chat not found")]
        assert manager.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_off_stops_delivery(self, dispatcher, transport):
        received = []
        dispatcher.on(events.MESSAGE, received.append)
        assert dispatcher.off(events.MESSAGE, received.append) is True

        await transport.fire("message", MESSAGE_PAYLOAD)

        assert received == []


class TestOutboundDisconnected:
    @pytest.mark.asyncio
    async def test_send_message_rejected(self, dispatcher):
        result = await dispatcher.send_message("c1", "hi", "p1")
        assert result is SendResult.REJECTED
        assert not result

    @pytest.mark.asyncio
    async def test_other_operations_rejected(self, dispatcher):
        assert await dispatcher.send_typing("c1", "p1", True) is SendResult.REJECTED
        assert await dispatcher.mark_message_as_read("c1", "m1", "p1") is SendResult.REJECTED
        assert await dispatcher.mark_all_messages_as_read("c1", "p1") is SendResult.REJECTED
        assert await dispatcher.join_chat("c1", "p1") is SendResult.REJECTED
        assert await dispatcher.leave_chat("c1", "p1") is SendResult.REJECTED

    @pytest.mark.asyncio
    async def test_no_emission_while_reconnecting(self, dispatcher, manager, transport):
        await transport.server_disconnect()
        transport.emitted.clear()

        result = await dispatcher.send_message("c1", "hi", "p1")

        assert result is SendResult.REJECTED
        assert transport.emitted == []


class TestOutboundConnected:
    @pytest.mark.asyncio
    async def test_send_message_envelope(self, dispatcher, transport):
        result = await dispatcher.send_message("c1", "hello", "p1")

        assert result is SendResult.DISPATCHED
        [payload] = transport.emitted_events("send_message")
        assert payload["chatId"] == "c1"
        assert payload["content"] == "hello"
        assert payload["senderId"] == "u1"
        assert payload["senderPetId"] == "p1"
        assert payload["senderPetName"] == ""
        assert payload["type"] == "text"
        assert payload["id"].isdigit()
        assert payload["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_send_image_message(self, dispatcher, transport):
        await dispatcher.send_image_message("c1", "https://cdn.example/rex.jpg", "p1")

        [payload] = transport.emitted_events("send_message")
        assert payload["type"] == "image"
        assert payload["content"] == "https://cdn.example/rex.jpg"

    @pytest.mark.asyncio
    async def test_send_location_message(self, dispatcher, transport):
        await dispatcher.send_location_message("c1", 41.0, 29.0, "p1")

        [payload] = transport.emitted_events("send_message")
        assert payload["type"] == "location"
        assert json.loads(payload["content"]) == {
            "latitude": 41.0,
            "longitude": 29.0,
            "address": "Location shared",
        }

    @pytest.mark.asyncio
    async def test_send_typing(self, dispatcher, transport):
        await dispatcher.send_typing("c1", "p1", True)

        assert transport.emitted == [("typing", {"chatId": "c1", "petId": "p1", "isTyping": True})]

    @pytest.mark.asyncio
    async def test_mark_read(self, dispatcher, transport):
        await dispatcher.mark_message_as_read("c1", "m1", "p1")
        await dispatcher.mark_all_messages_as_read("c1", "p1")

        assert transport.emitted == [
            ("mark_message_read", {"chatId": "c1", "messageId": "m1", "petId": "p1"}),
            ("mark_all_read", {"chatId": "c1", "petId": "p1"}),
        ]

    @pytest.mark.asyncio
    async def test_message_type_accepts_string(self, dispatcher, transport):
        await dispatcher.send_message("c1", "https://cdn.example/a.png", "p1", "image")

        [payload] = transport.emitted_events("send_message")
        assert payload["type"] == "image"
