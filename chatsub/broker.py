"""
Pub/sub broker adapter.

A ``Subscription`` covers a whole topic set at once and exposes the inbound
traffic as a single, non-restartable async stream of ``Message``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Iterable, Protocol

import redis.asyncio as redis
import structlog
from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from .errors import BrokerError

log = structlog.get_logger()


@dataclass(frozen=True)
class Message:
    """One inbound pub/sub message.

    ``generation`` is stamped by the listener that forwarded the message;
    ``topic`` and ``payload`` are passed through untouched.
    """
    topic: str
    payload: bytes
    generation: int | None = None


class Subscription(Protocol):
    topics: frozenset[str]

    def messages(self) -> AsyncIterator[Message]: ...

    async def close(self) -> None: ...


class Broker(Protocol):
    async def subscribe(self, topics: Iterable[str]) -> Subscription: ...

    async def publish(self, topic: str, payload: bytes | str) -> int: ...


def _text(value: bytes | str) -> str:
    if not isinstance(value, bytes):
        return value
    try:
        return value.decode()
    except UnicodeDecodeError as exc:
        raise BrokerError(f"channel name is not valid UTF-8: {value!r}") from exc


class RedisSubscription:
    """One Redis pub/sub connection subscribed to a fixed topic set."""

    def __init__(self, pubsub: PubSub, topics: frozenset[str]):
        self._pubsub = pubsub
        self.topics = topics
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def messages(self) -> AsyncIterator[Message]:
        try:
            async for frame in self._pubsub.listen():
                if frame["type"] != "message":
                    continue
                data = frame["data"]
                if isinstance(data, str):
                    data = data.encode()
                yield Message(topic=_text(frame["channel"]), payload=data)
        except RedisConnectionError as exc:
            # Broker dropped the connection: the stream simply ends.
            if not self._closed:
                log.warning("broker.stream_lost", topics=sorted(self.topics), error=str(exc))

    async def close(self) -> None:
        """Unsubscribe from every topic, then release the connection."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._pubsub.unsubscribe()
        except RedisError as exc:
            await self._pubsub.aclose()
            raise BrokerError(f"unsubscribe failed: {exc}") from exc
        try:
            await self._pubsub.aclose()
        except RedisError as exc:
            raise BrokerError(f"close failed: {exc}") from exc


class RedisBroker:
    """``Broker`` implemented with Redis PUBLISH/SUBSCRIBE."""

    def __init__(self, client: redis.Redis):
        self._client = client

    async def subscribe(self, topics: Iterable[str]) -> RedisSubscription:
        topic_set = frozenset(topics)
        if not topic_set:
            raise ValueError("cannot subscribe to an empty topic set")
        pubsub = self._client.pubsub()
        try:
            # One request for the whole set.
            await pubsub.subscribe(*sorted(topic_set))
        except RedisError as exc:
            await pubsub.aclose()
            raise BrokerError(f"subscribe failed: {exc}") from exc
        return RedisSubscription(pubsub, topic_set)

    async def publish(self, topic: str, payload: bytes | str) -> int:
        if isinstance(payload, str):
            payload = payload.encode()
        try:
            return await self._client.publish(topic, payload)
        except RedisError as exc:
            raise BrokerError(f"publish to {topic} failed: {exc}") from exc
