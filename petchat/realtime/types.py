"""Shared protocol types for the petchat realtime client.

Wire payloads use the backend's camelCase keys; the dataclasses here use
snake_case attributes and convert at the edge via ``from_payload`` /
``to_payload``.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ProtocolError(ValueError):
    """Raised when an inbound payload does not have the expected shape."""


class ConnectionState(Enum):
    """Connection state machine, owned by the ConnectionManager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"          # Terminal until the application calls connect()


class MessageType(Enum):
    TEXT = "text"
    IMAGE = "image"
    LOCATION = "location"


class SendResult(Enum):
    """Outcome of an outbound call.

    DISPATCHED only means the frame was handed to a live transport. It is
    not an acknowledgment and says nothing about delivery.
    """
    DISPATCHED = "dispatched"
    REJECTED = "rejected"

    def __bool__(self) -> bool:
        return self is SendResult.DISPATCHED


def _require(data, *keys: str) -> None:
    if not isinstance(data, dict):
        raise ProtocolError(f"expected an object, got {type(data).__name__}")
    missing = [k for k in keys if data.get(k) in (None, "")]
    if missing:
        raise ProtocolError(f"missing field(s): {', '.join(missing)}")


def _str(value) -> str:
    return "" if value is None else str(value)


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def local_message_id() -> str:
    """Client-side correlation id: milliseconds since the epoch.

    Not unique across devices and never a server-side key.
    """
    return str(int(time.time() * 1000))


@dataclass(frozen=True)
class Identity:
    """Who the connection speaks for. Fixed for the life of one connection."""
    token: str
    user_id: str
    active_pet_id: str

    def same_actor(self, other: Optional["Identity"]) -> bool:
        """Equal by user and pet; the token is deliberately ignored."""
        if other is None:
            return False
        return (self.user_id, self.active_pet_id) == (other.user_id, other.active_pet_id)

    def handshake_auth(self) -> dict:
        return {
            "token": self.token,
            "userId": self.user_id,
            "petId": self.active_pet_id,
        }

    def __repr__(self) -> str:
        # Keep tokens out of logs
        return f"Identity(user_id={self.user_id!r}, active_pet_id={self.active_pet_id!r})"


@dataclass
class ReconnectPolicy:
    """Bounded exponential backoff.

    Delay for attempt n is base_delay_ms * 2**(n-1); attempt resets to 0
    on every successful connect.
    """
    max_attempts: int = 5
    base_delay_ms: int = 1000
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt > self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Backoff before ``attempt``, in seconds."""
        return self.base_delay_ms * (2 ** (attempt - 1)) / 1000

    def record_failure(self) -> Optional[float]:
        """Count a failure. Returns the delay to wait, or None once exhausted."""
        self.attempt += 1
        if self.exhausted:
            return None
        return self.delay_for(self.attempt)

    def reset(self) -> None:
        self.attempt = 0


@dataclass(frozen=True)
class ChannelKey:
    """A room membership: one pet in one conversation."""
    chat_id: str
    pet_id: str

    @classmethod
    def from_payload(cls, data: dict) -> "ChannelKey":
        _require(data, "chatId", "petId")
        return cls(chat_id=_str(data["chatId"]), pet_id=_str(data["petId"]))

    def to_payload(self) -> dict:
        return {"chatId": self.chat_id, "petId": self.pet_id}


@dataclass
class MessageEnvelope:
    """A chat message as carried by send_message / message / message_sent."""
    id: str
    chat_id: str
    content: str
    sender_id: str
    sender_pet_id: str
    sender_pet_name: str = ""      # Filled in by the backend
    timestamp: str = ""
    type: MessageType = MessageType.TEXT

    @classmethod
    def from_payload(cls, data: dict) -> "MessageEnvelope":
        _require(data, "chatId")
        raw_type = data.get("type") or MessageType.TEXT.value
        try:
            msg_type = MessageType(raw_type)
        except ValueError:
            raise ProtocolError(f"unknown message type: {raw_type!r}")
        return cls(
            id=_str(data.get("id")),
            chat_id=_str(data["chatId"]),
            content=_str(data.get("content")),
            sender_id=_str(data.get("senderId")),
            sender_pet_id=_str(data.get("senderPetId")),
            sender_pet_name=_str(data.get("senderPetName")),
            timestamp=_str(data.get("timestamp")),
            type=msg_type,
        )

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "chatId": self.chat_id,
            "content": self.content,
            "senderId": self.sender_id,
            "senderPetId": self.sender_pet_id,
            "senderPetName": self.sender_pet_name,
            "timestamp": self.timestamp,
            "type": self.type.value,
        }


@dataclass
class TypingEvent:
    chat_id: str
    pet_id: str
    is_typing: bool
    pet_name: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict) -> "TypingEvent":
        _require(data, "chatId", "petId")
        return cls(
            chat_id=_str(data["chatId"]),
            pet_id=_str(data["petId"]),
            is_typing=bool(data.get("isTyping", False)),
            pet_name=data.get("petName"),
        )


@dataclass
class PresenceEvent:
    user_id: str
    pet_id: str
    is_online: bool
    last_seen: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict) -> "PresenceEvent":
        _require(data, "userId")
        return cls(
            user_id=_str(data["userId"]),
            pet_id=_str(data.get("petId")),
            is_online=bool(data.get("isOnline", False)),
            last_seen=data.get("lastSeen"),
        )


@dataclass
class ChatError:
    """A room-level error reported by the server. Never affects the connection."""
    message: str
    chat_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data) -> "ChatError":
        if isinstance(data, str):
            return cls(message=data)
        if not isinstance(data, dict):
            raise ProtocolError(f"expected an object, got {type(data).__name__}")
        chat_id = data.get("chatId")
        return cls(
            message=_str(data.get("message")) or "Unknown error",
            chat_id=None if chat_id is None else str(chat_id),
        )


@dataclass
class ConnectionFailure:
    """Published once when the connection gives up. Requires a manual connect()."""
    attempts: int
    reason: str = ""
