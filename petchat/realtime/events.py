"""Wire event names and the listener registry for the realtime client."""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger("petchat")

# Outbound (client -> server)
SEND_MESSAGE = "send_message"
TYPING = "typing"
JOIN_CHAT = "join_chat"
LEAVE_CHAT = "leave_chat"
MARK_MESSAGE_READ = "mark_message_read"
MARK_ALL_READ = "mark_all_read"

# Inbound (server -> client)
MESSAGE = "message"
MESSAGE_SENT = "message_sent"
TYPING_STOP = "typing_stop"
USER_ONLINE = "user_online"
USER_OFFLINE = "user_offline"
JOINED_CHAT = "joined_chat"
LEFT_CHAT = "left_chat"
CHAT_ERROR = "chat_error"
SERVER_ERROR = "error"

INBOUND_EVENTS = (
    MESSAGE,
    MESSAGE_SENT,
    TYPING,
    TYPING_STOP,
    USER_ONLINE,
    USER_OFFLINE,
    JOINED_CHAT,
    LEFT_CHAT,
    CHAT_ERROR,
)

# Local categories, never on the wire
CONNECTION_STATE = "connection_state"
CONNECTION_FAILED = "connection_failed"

CATEGORIES = frozenset(INBOUND_EVENTS + (CONNECTION_STATE, CONNECTION_FAILED))

Listener = Callable[[Any], Any]


class EventBus:
    """Per-category listener registry.

    Listeners run synchronously, in registration order, in the order events
    are published. A listener returning a coroutine has it scheduled as a
    task. A listener that raises is logged and does not stop the others.
    """

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._background_tasks: set[asyncio.Task] = set()

    def register(self, category: str, listener: Listener) -> Listener:
        if category not in CATEGORIES:
            raise ValueError(f"Unknown event category: {category}")
        self._listeners[category].append(listener)
        return listener

    def unregister(self, category: str, listener: Listener) -> bool:
        """Remove a listener. Returns False if it was not registered."""
        listeners = self._listeners.get(category, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def on(self, category: str) -> Callable[[Listener], Listener]:
        """Decorator form of register()."""
        def decorator(fn: Listener) -> Listener:
            return self.register(category, fn)
        return decorator

    def clear(self, category: str | None = None) -> None:
        if category is None:
            self._listeners.clear()
        else:
            self._listeners.pop(category, None)

    def has_listeners(self, category: str) -> bool:
        return bool(self._listeners.get(category))

    def publish(self, category: str, payload: Any) -> int:
        """Deliver payload to every listener of category. Returns the count."""
        listeners = list(self._listeners.get(category, []))
        if not listeners:
            logger.debug(f"Chat events: no listener for {category}, dropped")
            return 0

        for listener in listeners:
            try:
                result = listener(payload)
                if asyncio.iscoroutine(result):
                    self._schedule(result)
            except Exception:
                logger.exception(f"Chat events: listener for {category} failed")
        return len(listeners)

    def _schedule(self, coro) -> None:
        """Run a coroutine listener, holding a strong reference until done."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Chat events: async listener failed",
                exc_info=task.exception(),
            )
