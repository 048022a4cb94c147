"""Connection management for the petchat realtime client.

Owns the single transport, the connection state machine and the
reconnect policy. Everything else reads state through this object and
asks it to send; nothing else mutates it.
"""

import asyncio
import logging
from functools import partial
from typing import Awaitable, Callable, Optional

import socketio

from petchat import config
from . import events
from .events import EventBus
from .liveness import LivenessMonitor
from .membership import ChannelMembershipTracker
from .transport import SocketIOTransport, Transport
from .types import (
    ConnectionFailure,
    ConnectionState,
    Identity,
    ReconnectPolicy,
    SendResult,
)

logger = logging.getLogger("petchat")

TransportFactory = Callable[[], Transport]


class ConnectionManager:
    """Single authority over transport setup, teardown and reconnection.

    State transitions happen only from transport callbacks and from
    public calls, all on one event loop, so no locking is needed around
    state. Outbound frames go through one lock so that room re-joins
    after a reconnect are sent before any newer request.
    """

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        transport_factory: Optional[TransportFactory] = None,
        policy: Optional[ReconnectPolicy] = None,
        liveness_interval: Optional[float] = None,
    ):
        self.bus = bus or EventBus()
        self._transport_factory = transport_factory or SocketIOTransport
        self.policy = policy or ReconnectPolicy(
            max_attempts=config.RECONNECT_MAX_ATTEMPTS,
            base_delay_ms=config.RECONNECT_BASE_DELAY_MS,
        )
        self.membership = ChannelMembershipTracker(self)
        self.liveness = LivenessMonitor(self.check_liveness, liveness_interval)

        self._state = ConnectionState.DISCONNECTED
        self._identity: Optional[Identity] = None
        self._transport: Optional[Transport] = None
        self._inbound_handlers: dict[str, Callable] = {}
        self._open_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._backoff_timer: Optional[asyncio.TimerHandle] = None
        self._failure: Optional[ConnectionFailure] = None
        self._emit_lock = asyncio.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def attempt(self) -> int:
        return self.policy.attempt

    @property
    def reconnect_in_flight(self) -> bool:
        """A backoff timer is armed or a handshake is under way."""
        return (
            self._backoff_timer is not None
            or (self._reconnect_task is not None and not self._reconnect_task.done())
            or (self._open_task is not None and not self._open_task.done())
        )

    @property
    def transport_connected(self) -> bool:
        return self._transport is not None and self._transport.connected

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self.transport_connected

    @property
    def status_message(self) -> str:
        if self._state is ConnectionState.RECONNECTING:
            return f"Reconnecting (attempt {self.policy.attempt}/{self.policy.max_attempts})"
        if self._state is ConnectionState.FAILED:
            return f"Failed after {self._failure.attempts} reconnect attempts"
        return self._state.value.capitalize()

    def add_inbound_handler(self, event: str, handler: Callable) -> None:
        """Register a handler for a server event on every transport this creates."""
        self._inbound_handlers[event] = handler
        if self._transport is not None:
            self._transport.on(event, handler)

    # -- Lifecycle -----------------------------------------------------------

    async def connect(self, identity: Identity) -> None:
        """Start connecting as identity and return without waiting.

        A no-op when already connected or connecting as the same user and
        pet. Any other existing transport is torn down first so two
        transports never overlap.
        """
        if (
            self._transport is not None
            and self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING)
            and identity.same_actor(self._identity)
        ):
            logger.debug(f"Chat client: already {self._state.value} as {identity!r}")
            return

        if self._transport is not None:
            changed = not identity.same_actor(self._identity)
            logger.info(
                f"Chat client: replacing {self._state.value} connection"
                f"{' for new identity' if changed else ''}"
            )
            await self._teardown(clear_session=changed, reopening=True)

        self._identity = identity
        self.policy.reset()
        transport = self._transport_factory()
        self._transport = transport
        self._wire(transport)
        self._set_state(ConnectionState.CONNECTING)
        self._open_task = asyncio.create_task(
            self._run_handshake(transport, partial(transport.open, identity))
        )

    async def disconnect(self) -> None:
        """Application-initiated teardown. No reconnect follows."""
        if self._transport is not None:
            logger.info("Chat client: disconnecting")
        await self._teardown(clear_session=True)

    async def _teardown(self, clear_session: bool, reopening: bool = False) -> None:
        # Timers go first, before anything can yield
        self.liveness.stop()
        self._cancel_backoff()
        current = asyncio.current_task()
        for task in (self._open_task, self._reconnect_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._open_task = None
        self._reconnect_task = None

        transport = self._transport
        self._transport = None
        if clear_session:
            self._identity = None
            self.membership.clear()
        self.policy.reset()
        # A replacement transport goes straight to CONNECTING
        if not reopening:
            self._set_state(ConnectionState.DISCONNECTED)

        if transport is not None:
            await transport.close()

    def _wire(self, transport: Transport) -> None:
        transport.on("connect", partial(self._on_transport_connect, transport))
        transport.on("disconnect", partial(self._on_transport_disconnect, transport))
        transport.on("connect_error", partial(self._on_transport_connect_error, transport))
        transport.on(events.SERVER_ERROR, self._on_server_error)
        for event, handler in self._inbound_handlers.items():
            transport.on(event, handler)

    # -- Transport callbacks -------------------------------------------------

    async def _on_transport_connect(self, transport: Transport) -> None:
        if transport is not self._transport or self._identity is None:
            return
        self._cancel_backoff()
        self.policy.reset()
        # Take the outbound lock before anything else can run, so re-joins
        # precede any join the application issues once it sees CONNECTED.
        async with self._emit_lock:
            self._set_state(ConnectionState.CONNECTED)
            logger.info(f"Chat client: connected as {self._identity!r}")
            self.liveness.start()
            await self.membership.rejoin_all(self._emit_locked)

    async def _on_transport_disconnect(self, transport: Transport, reason=None) -> None:
        if transport is not self._transport:
            return
        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.FAILED):
            return
        logger.info(f"Chat client: transport disconnected ({reason or 'no reason given'})")
        self._handle_failure(f"disconnected: {reason}" if reason else "disconnected")

    async def _on_transport_connect_error(self, transport: Transport, data=None) -> None:
        if transport is not self._transport:
            return
        logger.warning(f"Chat client: connection error: {data}")
        self._handle_failure(f"connect_error: {data}")

    def _on_server_error(self, data=None) -> None:
        logger.warning(f"Chat client: server error: {data}")

    # -- Reconnection --------------------------------------------------------

    def _handle_failure(self, reason: str) -> None:
        """Count a failure and arm the backoff timer, or give up."""
        if self._identity is None or self._state in (
            ConnectionState.DISCONNECTED,
            ConnectionState.FAILED,
        ):
            return
        if self._backoff_timer is not None:
            logger.debug(f"Chat client: reconnect already scheduled, ignoring ({reason})")
            return

        delay = self.policy.record_failure()
        if delay is None:
            self._fail(reason)
            return

        self._set_state(ConnectionState.RECONNECTING)
        logger.info(
            f"Chat client: reconnecting in {delay * 1000:.0f}ms "
            f"(attempt {self.policy.attempt}/{self.policy.max_attempts})"
        )
        loop = asyncio.get_running_loop()
        self._backoff_timer = loop.call_later(delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._backoff_timer = None
        transport = self._transport
        if transport is None or self._state is not ConnectionState.RECONNECTING:
            return
        if transport.connected:
            return
        self._reconnect_task = asyncio.create_task(self._run_handshake(transport, transport.reconnect))

    async def _run_handshake(self, transport: Transport, start: Callable[[], Awaitable[None]]) -> None:
        """Run open() or reconnect(); anything it raises becomes a failure."""
        try:
            await start()
        except asyncio.CancelledError:
            raise
        except ValueError as e:
            if transport is not self._transport or self._state is ConnectionState.FAILED:
                return
            # Bad transport options fail the same way on every retry
            self._fail(f"invalid transport options: {e}", attempts=self.policy.attempt)
        except Exception as e:
            if transport is not self._transport:
                return
            logger.warning(f"Chat client: handshake raised {type(e).__name__}: {e}")
            self._handle_failure(f"handshake error: {e}")

    def _cancel_backoff(self) -> None:
        if self._backoff_timer is not None:
            self._backoff_timer.cancel()
            self._backoff_timer = None

    def _fail(self, reason: str, attempts: Optional[int] = None) -> None:
        if attempts is None:
            attempts = self.policy.max_attempts
        self.liveness.stop()
        self._set_state(ConnectionState.FAILED)
        logger.error(f"Chat client: giving up after {attempts} reconnect attempts ({reason})")
        self._failure = ConnectionFailure(attempts=attempts, reason=reason)
        self.bus.publish(events.CONNECTION_FAILED, self._failure)

    def check_liveness(self) -> bool:
        """Liveness tick. Triggers the reconnect path if the transport is down.

        Returns True if a reconnect was triggered. Never starts a second
        sequence while one is already in flight.
        """
        if self._identity is None or self._transport is None:
            return False
        if self._transport.connected:
            return False
        if self.reconnect_in_flight:
            logger.debug("Chat client: liveness check deferred, reconnect in flight")
            return False
        self._handle_failure("liveness check")
        return self._state is ConnectionState.RECONNECTING

    # -- Outbound ------------------------------------------------------------

    async def emit(self, event: str, payload: dict) -> SendResult:
        """Send one event if connected. Never raises, never queues."""
        if self._state is not ConnectionState.CONNECTED or not self.transport_connected:
            logger.debug(f"Chat client: not connected, {event} rejected")
            return SendResult.REJECTED
        async with self._emit_lock:
            return await self._emit_locked(event, payload)

    async def _emit_locked(self, event: str, payload: dict) -> SendResult:
        transport = self._transport
        if (
            self._state is not ConnectionState.CONNECTED
            or transport is None
            or not transport.connected
        ):
            return SendResult.REJECTED
        try:
            await transport.emit(event, payload)
        except socketio.exceptions.SocketIOError as e:
            logger.warning(f"Chat client: failed to send {event}: {e}")
            return SendResult.REJECTED
        logger.debug(f"Chat client: sent {event}")
        return SendResult.DISPATCHED

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        logger.debug(f"Chat client: {previous.value} -> {state.value}")
        self.bus.publish(events.CONNECTION_STATE, state)
