"""
petchat - realtime messaging client for the pet-matching app

Keeps one Socket.IO connection to the chat backend alive, multiplexes
conversation rooms over it and delivers typed message, typing and
presence events to application listeners.
"""

from .version import __version__
from .realtime import ChatSession, ConnectionState, MessageType, SendResult

__all__ = [
    "__version__",
    "ChatSession",
    "ConnectionState",
    "MessageType",
    "SendResult",
]
