"""
chatsub: Redis-backed chat sessions with live topic subscriptions.

Each connected identity gets one aggregated pub/sub subscription covering the
global broadcast topics plus its own topics, rebuilt whenever membership
changes, and a delivery queue fed by a background listener task.
"""

from .broker import Message
from .errors import (
    AlreadyConnected,
    BrokerError,
    ChatError,
    QueueClosed,
    SessionClosed,
    StoreError,
    UserNotFound,
)
from .registry import ChatRegistry
from .session import Session

__version__ = "0.1.0"

__all__ = [
    "AlreadyConnected",
    "BrokerError",
    "ChatError",
    "ChatRegistry",
    "Message",
    "QueueClosed",
    "Session",
    "SessionClosed",
    "StoreError",
    "UserNotFound",
]
