"""Chat session: the composition root for the realtime client.

The application creates one ChatSession and passes it around; there is
no module-level singleton. Tests build as many as they like, each with
its own transport factory.
"""

import logging
from typing import Optional

from petchat.credential_store import TokenProvider, get_token_provider
from .client import ConnectionManager, TransportFactory
from .dispatcher import MessageDispatcher
from .events import EventBus, Listener
from .types import ChannelKey, ConnectionState, Identity, MessageType, ReconnectPolicy, SendResult

logger = logging.getLogger("petchat")


class ChatSession:
    """One user's realtime chat connection and its listeners.

    Usage::

        session = ChatSession()
        session.on("message", handle_message)
        await session.connect(user_id, pet_id)
        ...
        await session.disconnect()
    """

    def __init__(
        self,
        token_provider: Optional[TokenProvider] = None,
        transport_factory: Optional[TransportFactory] = None,
        policy: Optional[ReconnectPolicy] = None,
        liveness_interval: Optional[float] = None,
    ):
        self.token_provider = token_provider or get_token_provider()
        self.bus = EventBus()
        self.manager = ConnectionManager(
            bus=self.bus,
            transport_factory=transport_factory,
            policy=policy,
            liveness_interval=liveness_interval,
        )
        self.dispatcher = MessageDispatcher(self.manager)

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @property
    def state(self) -> ConnectionState:
        return self.manager.state

    def is_connected(self) -> bool:
        return self.manager.is_connected()

    def is_member(self, chat_id: str, pet_id: str) -> bool:
        return ChannelKey(str(chat_id), str(pet_id)) in self.manager.membership

    def on(self, category: str, listener: Listener) -> Listener:
        return self.bus.register(category, listener)

    def off(self, category: str, listener: Listener) -> bool:
        return self.bus.unregister(category, listener)

    async def connect(self, user_id: str, pet_id: str) -> bool:
        """Start connecting as user_id / pet_id.

        The token is read once here. Returns False, without touching the
        current connection, when no token is available.
        """
        token = self.token_provider.get_token()
        if not token:
            logger.error("Chat session: no token available, not connecting")
            return False
        await self.manager.connect(Identity(token=token, user_id=str(user_id), active_pet_id=str(pet_id)))
        return True

    async def disconnect(self) -> None:
        await self.manager.disconnect()

    async def send_message(
        self, chat_id: str, content: str, pet_id: str, type: MessageType = MessageType.TEXT
    ) -> SendResult:
        return await self.dispatcher.send_message(chat_id, content, pet_id, type)

    async def send_image_message(self, chat_id: str, image_url: str, pet_id: str) -> SendResult:
        return await self.dispatcher.send_image_message(chat_id, image_url, pet_id)

    async def send_location_message(
        self, chat_id: str, latitude: float, longitude: float, pet_id: str, address: Optional[str] = None
    ) -> SendResult:
        return await self.dispatcher.send_location_message(chat_id, latitude, longitude, pet_id, address)

    async def send_typing(self, chat_id: str, pet_id: str, is_typing: bool) -> SendResult:
        return await self.dispatcher.send_typing(chat_id, pet_id, is_typing)

    async def join_chat(self, chat_id: str, pet_id: str) -> SendResult:
        return await self.dispatcher.join_chat(chat_id, pet_id)

    async def leave_chat(self, chat_id: str, pet_id: str) -> SendResult:
        return await self.dispatcher.leave_chat(chat_id, pet_id)

    async def mark_message_as_read(self, chat_id: str, message_id: str, pet_id: str) -> SendResult:
        return await self.dispatcher.mark_message_as_read(chat_id, message_id, pet_id)

    async def mark_all_messages_as_read(self, chat_id: str, pet_id: str) -> SendResult:
        return await self.dispatcher.mark_all_messages_as_read(chat_id, pet_id)
