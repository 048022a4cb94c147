"""
Command-line interface for petchat.
"""

import asyncio
import sys
from typing import Optional

import click

from petchat import config
from petchat.credential_store import get_token_provider, get_token_store
from petchat.realtime import events
from petchat.realtime.session import ChatSession
from petchat.realtime.types import (
    ChannelKey,
    ChatError,
    ConnectionFailure,
    ConnectionState,
    MessageEnvelope,
    MessageType,
    PresenceEvent,
    TypingEvent,
)


def format_event(category: str, payload) -> str:
    """One terminal line for an event delivered by the session."""
    if isinstance(payload, MessageEnvelope):
        who = payload.sender_pet_name or payload.sender_pet_id or payload.sender_id
        marker = "sent" if category == events.MESSAGE_SENT else "msg"
        body = payload.content if payload.type is MessageType.TEXT else f"[{payload.type.value}] {payload.content}"
        return f"[{payload.chat_id}] {marker} {who}: {body}"
    if isinstance(payload, TypingEvent):
        who = payload.pet_name or payload.pet_id
        doing = "is typing" if payload.is_typing and category == events.TYPING else "stopped typing"
        return f"[{payload.chat_id}] {who} {doing}"
    if isinstance(payload, PresenceEvent):
        status = "online" if category == events.USER_ONLINE else "offline"
        seen = f" (last seen {payload.last_seen})" if payload.last_seen else ""
        return f"{payload.user_id}/{payload.pet_id} is {status}{seen}"
    if isinstance(payload, ChannelKey):
        action = "joined" if category == events.JOINED_CHAT else "left"
        return f"[{payload.chat_id}] {action} as {payload.pet_id}"
    if isinstance(payload, ChatError):
        where = f"[{payload.chat_id}] " if payload.chat_id else ""
        return f"{where}error: {payload.message}"
    if isinstance(payload, ConnectionFailure):
        return f"connection failed after {payload.attempts} attempts: {payload.reason}"
    if isinstance(payload, ConnectionState):
        return f"connection: {payload.value}"
    return f"{category}: {payload}"


def _require_token() -> None:
    if not get_token_provider().get_token():
        raise click.ClickException(
            "No token available. Run: petchat token set <TOKEN> (or set PETCHAT_TOKEN)"
        )


def _join_on_connect(session: ChatSession, chats, pet: str):
    """Listener that joins the requested rooms on the first connect.

    Later reconnects re-join them through the membership tracker.
    """
    async def listener(state: ConnectionState):
        if state is not ConnectionState.CONNECTED:
            return
        for chat in chats:
            if not session.is_member(chat, pet):
                await session.join_chat(chat, pet)
    return listener


@click.group()
@click.help_option('-h', '--help', help='Show this message and exit')
@click.version_option(package_name="petchat")
@click.option('--debug', is_flag=True, help='Enable debug logging')
def petchat_main_cli(debug):
    """Realtime chat client for the pet-matching app."""
    if debug:
        config.DEBUG = True
    config.setup_logging()


@petchat_main_cli.group()
def token():
    """Manage the bearer token used to connect."""
    pass


@token.command('set')
@click.argument('value')
def token_set(value):
    """Store the bearer token."""
    store = get_token_store()
    store.save(value.strip())
    click.echo(f"Token saved ({store.name})")


@token.command('clear')
def token_clear():
    """Remove the stored bearer token."""
    store = get_token_store()
    if store.clear():
        click.echo("Token removed")
    else:
        click.echo("No token stored")


@token.command('show')
def token_show():
    """Show whether a token is available (never prints it)."""
    if config.TOKEN:
        click.echo("Token: from PETCHAT_TOKEN")
        return
    store = get_token_store()
    if store.get_token():
        click.echo(f"Token: stored ({store.name})")
    else:
        click.echo("Token: none")


async def _listen(user: str, pet: str, chats, duration: Optional[float]) -> ConnectionState:
    done = asyncio.Event()

    async with ChatSession() as session:
        def printer(category):
            return lambda payload: click.echo(format_event(category, payload))

        for category in events.INBOUND_EVENTS + (events.CONNECTION_STATE,):
            session.on(category, printer(category))
        session.on(events.CONNECTION_FAILED, printer(events.CONNECTION_FAILED))
        session.on(events.CONNECTION_FAILED, lambda failure: done.set())
        session.on(events.CONNECTION_STATE, _join_on_connect(session, chats, pet))

        if not await session.connect(user, pet):
            return session.state
        try:
            await asyncio.wait_for(done.wait(), timeout=duration)
        except asyncio.TimeoutError:
            pass
        return session.state


@petchat_main_cli.command()
@click.option('-u', '--user', 'user', required=True, help='User id to connect as')
@click.option('-p', '--pet', 'pet', required=True, help='Active pet id')
@click.option('-c', '--chat', 'chats', multiple=True, help='Chat to join (repeatable)')
@click.option('--duration', type=float, help='Stop after this many seconds')
def listen(user, pet, chats, duration):
    """Connect and print chat events until interrupted."""
    _require_token()
    try:
        state = asyncio.run(_listen(user, pet, chats, duration))
    except KeyboardInterrupt:
        return
    if state is ConnectionState.FAILED:
        sys.exit(1)


async def _send(user: str, pet: str, chat: str, text: str, msg_type: MessageType, timeout: float) -> bool:
    connected = asyncio.Event()
    echoed = asyncio.Event()

    async with ChatSession() as session:
        def on_state(state):
            if state in (ConnectionState.CONNECTED, ConnectionState.FAILED):
                connected.set()

        def on_sent(envelope: MessageEnvelope):
            if envelope.chat_id == chat and envelope.content == text:
                echoed.set()

        session.on(events.CONNECTION_STATE, on_state)
        session.on(events.MESSAGE_SENT, on_sent)
        session.on(events.CHAT_ERROR, lambda error: click.echo(format_event(events.CHAT_ERROR, error), err=True))

        if not await session.connect(user, pet):
            return False
        try:
            await asyncio.wait_for(connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        if session.state is not ConnectionState.CONNECTED:
            click.echo(f"Could not connect ({session.manager.status_message})", err=True)
            return False

        await session.join_chat(chat, pet)
        if not await session.send_message(chat, text, pet, msg_type):
            click.echo("Message rejected: not connected", err=True)
            return False

        try:
            await asyncio.wait_for(echoed.wait(), timeout=timeout)
            click.echo("Message sent")
        except asyncio.TimeoutError:
            click.echo("Message dispatched (no confirmation from server)")
        return True


@petchat_main_cli.command()
@click.option('-u', '--user', 'user', required=True, help='User id to connect as')
@click.option('-p', '--pet', 'pet', required=True, help='Sending pet id')
@click.option('-c', '--chat', 'chat', required=True, help='Chat to send to')
@click.option('-t', '--type', 'msg_type',
              type=click.Choice([t.value for t in MessageType]),
              default=MessageType.TEXT.value,
              help='Message type')
@click.option('--timeout', type=float, default=10.0, help='Seconds to wait for connect and echo')
@click.argument('text')
def send(user, pet, chat, msg_type, timeout, text):
    """Send one message to a chat and exit."""
    _require_token()
    ok = asyncio.run(_send(user, pet, chat, text, MessageType(msg_type), timeout))
    if not ok:
        sys.exit(1)


def main():
    petchat_main_cli()


if __name__ == "__main__":
    main()
