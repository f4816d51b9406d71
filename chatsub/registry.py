"""
Session registry: the public operation surface of chatsub.

Enforces one session per identity through the store's connected-identities
set, routes membership changes to the reconciler, and answers directory
queries (who is connected, which topics an identity receives).
"""

from __future__ import annotations

import redis.asyncio as redis
import structlog

from .broker import Broker, RedisBroker
from .config import ChatConfig, KeysConfig
from .connection import close_redis, open_redis
from .errors import AlreadyConnected, BrokerError, SessionClosed, StoreError, UserNotFound
from .reconciler import Reconciler
from .session import Session
from .store import RedisSetStore, SetStore

log = structlog.get_logger()


class ChatRegistry:
    """
    Tracks the sessions connected through this process.

    The store is the source of truth for membership; the local table only
    maps identities to the ``Session`` objects this process owns.
    """

    def __init__(
        self,
        store: SetStore,
        broker: Broker,
        queue_size: int = 0,
        client: redis.Redis | None = None,
    ):
        self._store = store
        self._broker = broker
        self._reconciler = Reconciler(store, broker)
        self._queue_size = queue_size
        self._client = client
        self._sessions: dict[str, Session] = {}

    @classmethod
    def from_config(cls, config: ChatConfig) -> ChatRegistry:
        """Build a registry backed by the configured Redis server."""
        client = open_redis(config.redis)
        return cls(
            RedisSetStore(client, config.keys),
            RedisBroker(client),
            queue_size=config.session.queue_size,
            client=client,
        )

    @property
    def keys(self) -> KeysConfig:
        return self._store.keys

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def session(self, identity: str) -> Session:
        try:
            return self._sessions[identity]
        except KeyError:
            raise UserNotFound(identity) from None

    # --- Lifecycle ---

    async def connect(self, identity: str) -> Session:
        """Register ``identity`` and install its initial subscription."""
        if identity in self._sessions:
            raise AlreadyConnected(identity)
        # SADD is the atomic check-and-register step.
        if not await self._store.add(self.keys.users_key, identity):
            raise AlreadyConnected(identity)

        session = Session(identity, self._queue_size)
        self._sessions[identity] = session
        try:
            await self._reconciler.reconcile(session)
        except Exception:
            log.warning("registry.connect_rolled_back", identity=identity)
            session.mark_closed()
            session.queue.close()
            del self._sessions[identity]
            try:
                await self._store.remove(self.keys.users_key, identity)
            except StoreError as exc:
                log.error("registry.rollback_failed", identity=identity, error=str(exc))
            raise

        log.info(
            "registry.connected",
            identity=identity,
            topics=sorted(session.topics),
            total=len(self._sessions),
        )
        return session

    async def disconnect(self, target: str | Session) -> bool:
        """Tear down a session. Safe to call again; later calls return False.

        Failures closing the broker subscription are logged and skipped. A
        store failure propagates and leaves the identity registered here, so
        the call can be retried.
        """
        identity = target.identity if isinstance(target, Session) else target
        session = self._sessions.get(identity)
        if session is None:
            log.debug("registry.disconnect_unknown", identity=identity)
            return False

        async with session.lock:
            if self._sessions.get(identity) is not session:
                return False
            if not session.closed:
                session.mark_closed()
                try:
                    await self._reconciler.teardown(session)
                except BrokerError as exc:
                    log.warning("registry.teardown_failed", identity=identity, error=str(exc))
            try:
                await self._store.remove(self.keys.users_key, identity)
            finally:
                session.queue.close()
            del self._sessions[identity]

        log.info("registry.disconnected", identity=identity, total=len(self._sessions))
        return True

    async def close(self) -> None:
        """Disconnect every local session and release the Redis client."""
        try:
            for identity in list(self._sessions):
                await self.disconnect(identity)
        finally:
            if self._client is not None:
                await close_redis(self._client)
                self._client = None

    # --- Membership ---

    async def subscribe(self, identity: str, topic: str) -> bool:
        return await self._reconciler.subscribe(self.session(identity), topic)

    async def unsubscribe(self, identity: str, topic: str) -> bool:
        return await self._reconciler.unsubscribe(self.session(identity), topic)

    async def reconcile(self, identity: str) -> None:
        """Rebuild the subscription of a local session from the store."""
        await self._reconciler.reconcile(self.session(identity))

    async def add_broadcast_topic(self, topic: str) -> bool:
        """Add a topic every session receives, then rebuild local sessions."""
        if not await self._store.add(self.keys.topics_key, topic):
            return False
        log.info("registry.broadcast_topic_added", topic=topic)
        await self._reconcile_all()
        return True

    async def remove_broadcast_topic(self, topic: str) -> bool:
        if not await self._store.remove(self.keys.topics_key, topic):
            return False
        log.info("registry.broadcast_topic_removed", topic=topic)
        await self._reconcile_all()
        return True

    async def _reconcile_all(self) -> None:
        """Rebuild every local session; the first failure is raised at the end."""
        first_error: Exception | None = None
        for session in self.sessions:
            try:
                await self._reconciler.reconcile(session)
            except SessionClosed:
                continue
            except Exception as exc:
                log.error("registry.reconcile_failed", identity=session.identity, error=str(exc))
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    # --- Broadcast & directory ---

    async def publish(self, topic: str, payload: bytes | str) -> int:
        """Publish to a topic. Returns the broker's receiver count."""
        receivers = await self._broker.publish(topic, payload)
        log.debug("registry.published", topic=topic, receivers=receivers)
        return receivers

    async def list_connected(self) -> list[str]:
        return await self._store.members(self.keys.users_key)

    async def get_topics(self, identity: str) -> frozenset[str]:
        """Persisted topic membership of a connected identity."""
        if not await self._store.is_member(self.keys.users_key, identity):
            raise UserNotFound(identity)
        return await self._reconciler.desired_topics(identity)
