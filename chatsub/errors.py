"""Exception hierarchy shared by every chatsub component."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all chatsub errors."""


class AlreadyConnected(ChatError):
    def __init__(self, identity: str):
        super().__init__(f"user {identity} is already connected")
        self.identity = identity


class UserNotFound(ChatError):
    def __init__(self, identity: str):
        super().__init__(f"user {identity} does not exist")
        self.identity = identity


class StoreError(ChatError):
    """A set-store operation failed."""


class BrokerError(ChatError):
    """A subscribe, publish, unsubscribe or close on the broker failed."""


class SessionClosed(ChatError):
    """The session was disconnected and accepts no further changes."""


class QueueClosed(ChatError):
    """The delivery queue is closed and drained."""
