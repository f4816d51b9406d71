"""
Subscription reconciliation.

Keeps a session's live broker subscription equal to its desired topic set:
the global broadcast topics plus the session's own topics, both re-read from
the store on every pass. Every change rebuilds the subscription from scratch
instead of patching it at the broker, so the installed topic set can never
drift from what the store says.

All mutating entry points hold the session lock for the whole pass,
including the wait for the outgoing listener to terminate.
"""

from __future__ import annotations

import structlog

from .broker import Broker
from .config import KeysConfig
from .errors import BrokerError, SessionClosed
from .listener import ListenerTask
from .session import Session
from .store import SetStore

log = structlog.get_logger()


class Reconciler:
    def __init__(self, store: SetStore, broker: Broker):
        self._store = store
        self._broker = broker

    @property
    def keys(self) -> KeysConfig:
        return self._store.keys

    async def desired_topics(self, identity: str) -> frozenset[str]:
        """Union of the broadcast topics and the identity's own topics."""
        broadcast = await self._store.members(self.keys.topics_key)
        own = await self._store.members(self.keys.user_topics(identity))
        return frozenset(broadcast) | frozenset(own)

    async def reconcile(self, session: Session) -> None:
        async with session.lock:
            self._check_open(session)
            await self._reconcile(session)

    async def subscribe(self, session: Session, topic: str) -> bool:
        """Add ``topic`` to the session's own topics.

        Returns False if it was already there. That path only rebuilds when
        the session lost its listener, e.g. after a failed rebuild.
        """
        async with session.lock:
            self._check_open(session)
            key = self.keys.user_topics(session.identity)
            if await self._store.is_member(key, topic):
                await self._repair(session)
                return False
            await self._store.add(key, topic)
            log.info("reconciler.topic_added", identity=session.identity, topic=topic)
            await self._reconcile(session)
            return True

    async def unsubscribe(self, session: Session, topic: str) -> bool:
        """Remove ``topic`` from the session's own topics.

        Returns False if it was not there, rebuilding only a session that
        lost its listener.
        """
        async with session.lock:
            self._check_open(session)
            key = self.keys.user_topics(session.identity)
            if not await self._store.is_member(key, topic):
                await self._repair(session)
                return False
            await self._store.remove(key, topic)
            log.info("reconciler.topic_removed", identity=session.identity, topic=topic)
            await self._reconcile(session)
            return True

    async def _repair(self, session: Session) -> None:
        if session.listening:
            return
        log.info("reconciler.repairing", identity=session.identity, generation=session.generation)
        await self._reconcile(session)

    async def teardown(self, session: Session) -> None:
        """Stop the listener and close the subscription. Caller holds the lock.

        The session is left with no listener and no subscription even when
        closing the subscription fails; the ``BrokerError`` still propagates.
        """
        listener = session.listener
        if listener is not None:
            await listener.stop()
            session.listener = None
            log.debug(
                "reconciler.listener_stopped",
                identity=session.identity,
                generation=listener.generation,
                forwarded=listener.forwarded,
            )

        subscription = session.subscription
        session.subscription = None
        session.topics = frozenset()
        if subscription is not None:
            await subscription.close()

    async def _reconcile(self, session: Session) -> None:
        desired = await self.desired_topics(session.identity)

        if not desired:
            if session.listener is not None or session.subscription is not None:
                session.generation += 1
                await self.teardown(session)
            log.info("reconciler.no_topics", identity=session.identity)
            return

        session.generation += 1
        await self.teardown(session)

        try:
            subscription = await self._broker.subscribe(desired)
        except BrokerError:
            log.error(
                "reconciler.subscribe_failed",
                identity=session.identity,
                topics=sorted(desired),
            )
            raise
        session.subscription = subscription
        session.topics = desired

        listener = ListenerTask(session.identity, session.generation, subscription, session.queue)
        listener.start()
        session.listener = listener
        log.info(
            "reconciler.rebuilt",
            identity=session.identity,
            generation=session.generation,
            topics=sorted(desired),
        )

    @staticmethod
    def _check_open(session: Session) -> None:
        if session.closed:
            raise SessionClosed(f"session {session.identity} is disconnected")
