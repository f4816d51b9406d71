"""
Shared fixtures: a registry wired to the in-process store and broker.
"""

import pytest

from chatsub.registry import ChatRegistry

from .mock_backends import MemoryBroker, MemorySetStore


@pytest.fixture
def store():
    s = MemorySetStore()
    s.sets[s.keys.topics_key] = {"general"}
    return s


@pytest.fixture
def broker():
    return MemoryBroker()


@pytest.fixture
async def registry(store, broker):
    reg = ChatRegistry(store, broker, queue_size=10)
    yield reg
    store.fail = False
    await reg.close()
