"""Room membership tracking for the realtime client."""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Iterator

from . import events
from .types import ChannelKey, ConnectionState, SendResult

if TYPE_CHECKING:
    from .client import ConnectionManager

logger = logging.getLogger("petchat")

Emitter = Callable[[str, dict], Awaitable[SendResult]]


class ChannelMembershipTracker:
    """Remembers joined rooms and re-joins them after every reconnect.

    Joins and leaves are optimistic: the set is updated when the request
    is dispatched and is not rolled back on a later chat_error.
    """

    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager
        # dict keeps insertion order for re-joins
        self._joined: dict[ChannelKey, None] = {}

    def __contains__(self, key: ChannelKey) -> bool:
        return key in self._joined

    def __iter__(self) -> Iterator[ChannelKey]:
        return iter(list(self._joined))

    def __len__(self) -> int:
        return len(self._joined)

    def snapshot(self) -> list[ChannelKey]:
        return list(self._joined)

    async def join_chat(self, chat_id: str, pet_id: str) -> SendResult:
        if self._manager.state is not ConnectionState.CONNECTED:
            logger.debug(f"Chat rooms: not connected, join {chat_id} ignored")
            return SendResult.REJECTED

        key = ChannelKey(str(chat_id), str(pet_id))
        self._joined[key] = None
        logger.info(f"Chat rooms: joining {key.chat_id} as {key.pet_id}")
        return await self._manager.emit(events.JOIN_CHAT, key.to_payload())

    async def leave_chat(self, chat_id: str, pet_id: str) -> SendResult:
        if self._manager.state is not ConnectionState.CONNECTED:
            logger.debug(f"Chat rooms: not connected, leave {chat_id} ignored")
            return SendResult.REJECTED

        key = ChannelKey(str(chat_id), str(pet_id))
        self._joined.pop(key, None)
        logger.info(f"Chat rooms: leaving {key.chat_id} as {key.pet_id}")
        return await self._manager.emit(events.LEAVE_CHAT, key.to_payload())

    async def rejoin_all(self, emit: Emitter) -> int:
        """Re-send join_chat for every remembered room, oldest first.

        Called by the manager after each connect while it holds the
        outbound lock. Returns the number of joins dispatched.
        """
        keys = self.snapshot()
        if not keys:
            return 0
        logger.info(f"Chat rooms: re-joining {len(keys)} room(s)")
        dispatched = 0
        for key in keys:
            if await emit(events.JOIN_CHAT, key.to_payload()):
                dispatched += 1
        return dispatched

    def clear(self) -> None:
        self._joined.clear()
