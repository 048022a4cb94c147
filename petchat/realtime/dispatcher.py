"""Typed fan-out of inbound chat events and guarded outbound operations."""

import json
import logging
from functools import partial
from typing import Any, Callable, Optional

from . import events
from .client import ConnectionManager
from .events import Listener
from .types import (
    ChannelKey,
    ChatError,
    ConnectionState,
    MessageEnvelope,
    MessageType,
    PresenceEvent,
    ProtocolError,
    SendResult,
    TypingEvent,
    local_message_id,
    utc_timestamp,
)

logger = logging.getLogger("petchat")

# How each inbound event is parsed before it reaches listeners
PARSERS: dict[str, Callable[[Any], Any]] = {
    events.MESSAGE: MessageEnvelope.from_payload,
    events.MESSAGE_SENT: MessageEnvelope.from_payload,
    events.TYPING: TypingEvent.from_payload,
    events.TYPING_STOP: TypingEvent.from_payload,
    events.USER_ONLINE: PresenceEvent.from_payload,
    events.USER_OFFLINE: PresenceEvent.from_payload,
    events.JOINED_CHAT: ChannelKey.from_payload,
    events.LEFT_CHAT: ChannelKey.from_payload,
    events.CHAT_ERROR: ChatError.from_payload,
}

DEFAULT_LOCATION_ADDRESS = "Location shared"


class MessageDispatcher:
    """Routes server events to listeners and sends client events.

    Every outbound method returns a SendResult. DISPATCHED means the frame
    reached a live transport, nothing more; while not connected every
    method returns REJECTED immediately without queueing.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self.bus = manager.bus
        for event in events.INBOUND_EVENTS:
            manager.add_inbound_handler(event, partial(self._handle_inbound, event))

    # -- Listeners -----------------------------------------------------------

    def on(self, category: str, listener: Listener) -> Listener:
        return self.bus.register(category, listener)

    def off(self, category: str, listener: Listener) -> bool:
        return self.bus.unregister(category, listener)

    # -- Inbound -------------------------------------------------------------

    def _handle_inbound(self, event: str, data: Any = None) -> None:
        try:
            payload = PARSERS[event](data)
        except ProtocolError as e:
            logger.warning(f"Chat events: malformed {event} payload dropped: {e}")
            return

        if event == events.CHAT_ERROR:
            logger.warning(f"Chat events: chat error: {payload.message} (chat={payload.chat_id})")
        else:
            logger.debug(f"Chat events: received {event}")
        self.bus.publish(event, payload)

    # -- Outbound ------------------------------------------------------------

    def _connected(self) -> bool:
        return self.manager.state is ConnectionState.CONNECTED

    async def send_message(
        self,
        chat_id: str,
        content: str,
        pet_id: str,
        type: MessageType = MessageType.TEXT,
    ) -> SendResult:
        """Send a chat message. The caller owns any retry policy."""
        if not self._connected():
            logger.warning("Chat client: not connected, message not sent")
            return SendResult.REJECTED

        identity = self.manager.identity
        envelope = MessageEnvelope(
            id=local_message_id(),
            chat_id=str(chat_id),
            content=content,
            sender_id=identity.user_id if identity else "",
            sender_pet_id=str(pet_id),
            timestamp=utc_timestamp(),
            type=MessageType(type),
        )
        return await self.manager.emit(events.SEND_MESSAGE, envelope.to_payload())

    async def send_image_message(self, chat_id: str, image_url: str, pet_id: str) -> SendResult:
        return await self.send_message(chat_id, image_url, pet_id, MessageType.IMAGE)

    async def send_location_message(
        self,
        chat_id: str,
        latitude: float,
        longitude: float,
        pet_id: str,
        address: Optional[str] = None,
    ) -> SendResult:
        content = json.dumps({
            "latitude": latitude,
            "longitude": longitude,
            "address": address or DEFAULT_LOCATION_ADDRESS,
        })
        return await self.send_message(chat_id, content, pet_id, MessageType.LOCATION)

    async def send_typing(self, chat_id: str, pet_id: str, is_typing: bool) -> SendResult:
        if not self._connected():
            return SendResult.REJECTED
        return await self.manager.emit(
            events.TYPING,
            {"chatId": str(chat_id), "petId": str(pet_id), "isTyping": bool(is_typing)},
        )

    async def join_chat(self, chat_id: str, pet_id: str) -> SendResult:
        return await self.manager.membership.join_chat(chat_id, pet_id)

    async def leave_chat(self, chat_id: str, pet_id: str) -> SendResult:
        return await self.manager.membership.leave_chat(chat_id, pet_id)

    async def mark_message_as_read(self, chat_id: str, message_id: str, pet_id: str) -> SendResult:
        if not self._connected():
            return SendResult.REJECTED
        return await self.manager.emit(
            events.MARK_MESSAGE_READ,
            {"chatId": str(chat_id), "messageId": str(message_id), "petId": str(pet_id)},
        )

    async def mark_all_messages_as_read(self, chat_id: str, pet_id: str) -> SendResult:
        if not self._connected():
            return SendResult.REJECTED
        return await self.manager.emit(
            events.MARK_ALL_READ,
            {"chatId": str(chat_id), "petId": str(pet_id)},
        )
