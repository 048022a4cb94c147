"""petchat realtime: the Socket.IO chat connection, rooms and events."""

from .client import ConnectionManager
from .dispatcher import MessageDispatcher
from .events import EventBus
from .liveness import LivenessMonitor
from .membership import ChannelMembershipTracker
from .session import ChatSession
from .transport import SocketIOTransport, Transport
from .types import (
    ChannelKey,
    ChatError,
    ConnectionFailure,
    ConnectionState,
    Identity,
    MessageEnvelope,
    MessageType,
    PresenceEvent,
    ReconnectPolicy,
    SendResult,
    TypingEvent,
)

__all__ = [
    "ChannelKey",
    "ChannelMembershipTracker",
    "ChatError",
    "ChatSession",
    "ConnectionFailure",
    "ConnectionManager",
    "ConnectionState",
    "EventBus",
    "Identity",
    "LivenessMonitor",
    "MessageDispatcher",
    "MessageEnvelope",
    "MessageType",
    "PresenceEvent",
    "ReconnectPolicy",
    "SendResult",
    "SocketIOTransport",
    "Transport",
    "TypingEvent",
]
