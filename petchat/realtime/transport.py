"""Transport adapter for the realtime client.

The ConnectionManager talks to a Transport; the production one wraps a
python-socketio AsyncClient. Tests substitute an in-memory fake.

Contract every Transport honors:
  - handlers registered with on() survive reconnect()
  - a failed handshake produces exactly one "connect_error" event
  - the library's own reconnection is off; the caller owns retry policy
"""

import logging
import urllib.parse
from abc import ABC, abstractmethod
from typing import Callable, Optional

import socketio

from petchat import config
from .types import Identity

logger = logging.getLogger("petchat")


class Transport(ABC):
    """A persistent bidirectional event channel."""

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether the channel currently reports itself alive."""

    @abstractmethod
    def on(self, event: str, handler: Callable) -> None:
        """Register the handler for an event name."""

    @abstractmethod
    async def open(self, identity: Identity) -> None:
        """Perform the initial handshake for identity."""

    @abstractmethod
    async def reconnect(self) -> None:
        """Repeat the handshake with the arguments given to open()."""

    @abstractmethod
    async def emit(self, event: str, payload: dict) -> None:
        """Send one event. Raises socketio.exceptions.SocketIOError on failure."""

    @abstractmethod
    async def close(self) -> None:
        """Tear the channel down."""


def build_url(server_url: str, pet_id: str) -> str:
    """Server URL with petId in the query string.

    Some backends read the pet from the URL instead of the auth frame, so
    it is sent both ways.
    """
    parts = urllib.parse.urlsplit(server_url)
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    query = [(k, v) for k, v in query if k != "petId"]
    query.append(("petId", pet_id))
    return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(query)))


class SocketIOTransport(Transport):
    """Socket.IO channel to the chat backend."""

    def __init__(
        self,
        server_url: Optional[str] = None,
        transports: Optional[list[str]] = None,
        connect_timeout: Optional[float] = None,
    ):
        self.server_url = server_url or config.SERVER_URL
        self.transports = transports or list(config.TRANSPORTS)
        self.connect_timeout = connect_timeout if connect_timeout is not None else config.CONNECT_TIMEOUT
        self._sio = socketio.AsyncClient(reconnection=False, logger=False, engineio_logger=False)
        self._connect_kwargs: Optional[dict] = None
        self._connect_error_handler: Optional[Callable] = None
        self._connect_error_seen = False
        self._sio.on("connect_error", self._on_connect_error)

    @property
    def connected(self) -> bool:
        return self._sio.connected

    @property
    def sid(self) -> Optional[str]:
        return self._sio.sid

    def on(self, event: str, handler: Callable) -> None:
        if event == "connect_error":
            self._connect_error_handler = handler
        else:
            self._sio.on(event, handler)

    async def _on_connect_error(self, data=None):
        self._connect_error_seen = True
        if self._connect_error_handler is not None:
            await _call(self._connect_error_handler, data)

    async def open(self, identity: Identity) -> None:
        self._connect_kwargs = {
            "url": build_url(self.server_url, identity.active_pet_id),
            "auth": identity.handshake_auth(),
            "transports": self.transports,
            "wait_timeout": self.connect_timeout,
        }
        logger.info(
            f"Chat transport: opening {self.server_url} "
            f"(user={identity.user_id}, pet={identity.active_pet_id})"
        )
        await self._handshake()

    async def reconnect(self) -> None:
        if self._connect_kwargs is None:
            raise RuntimeError("reconnect() called before open()")
        if self._sio.connected:
            return
        logger.debug("Chat transport: reconnecting")
        await self._handshake()

    async def _handshake(self) -> None:
        self._connect_error_seen = False
        try:
            await self._sio.connect(**self._connect_kwargs)
        except socketio.exceptions.ConnectionError as e:
            logger.debug(f"Chat transport: handshake failed: {e}")
            # Timeouts close the socket without a connect_error event
            if not self._connect_error_seen and self._connect_error_handler is not None:
                await _call(self._connect_error_handler, str(e))

    async def emit(self, event: str, payload: dict) -> None:
        await self._sio.emit(event, payload)

    async def close(self) -> None:
        try:
            await self._sio.disconnect()
        except socketio.exceptions.SocketIOError as e:
            logger.warning(f"Chat transport: error while closing: {e}")


async def _call(handler: Callable, *args) -> None:
    result = handler(*args)
    if hasattr(result, "__await__"):
        await result
