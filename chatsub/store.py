"""
Set-store adapter.

The store holds three kinds of sets: the connected identities, the global
broadcast topics, and one topic set per identity. Key names come from
``KeysConfig`` rather than module constants.
"""

from __future__ import annotations

from typing import Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from .config import KeysConfig
from .errors import StoreError


class SetStore(Protocol):
    keys: KeysConfig

    async def is_member(self, key: str, element: str) -> bool: ...

    async def add(self, key: str, element: str) -> bool: ...

    async def remove(self, key: str, element: str) -> bool: ...

    async def members(self, key: str) -> list[str]: ...


def _decode(key: str, value: bytes | str) -> str:
    if not isinstance(value, bytes):
        return value
    try:
        return value.decode()
    except UnicodeDecodeError as exc:
        raise StoreError(f"member of {key} is not valid UTF-8: {value!r}") from exc


class RedisSetStore:
    """``SetStore`` backed by Redis sets.

    ``add`` and ``remove`` report whether the set changed, using the counts
    returned by SADD and SREM.
    """

    def __init__(self, client: redis.Redis, keys: KeysConfig | None = None):
        self._client = client
        self.keys = keys or KeysConfig()

    async def is_member(self, key: str, element: str) -> bool:
        try:
            return bool(await self._client.sismember(key, element))
        except RedisError as exc:
            raise StoreError(f"SISMEMBER {key} failed: {exc}") from exc

    async def add(self, key: str, element: str) -> bool:
        try:
            return await self._client.sadd(key, element) > 0
        except RedisError as exc:
            raise StoreError(f"SADD {key} failed: {exc}") from exc

    async def remove(self, key: str, element: str) -> bool:
        try:
            return await self._client.srem(key, element) > 0
        except RedisError as exc:
            raise StoreError(f"SREM {key} failed: {exc}") from exc

    async def members(self, key: str) -> list[str]:
        try:
            raw = await self._client.smembers(key)
        except RedisError as exc:
            raise StoreError(f"SMEMBERS {key} failed: {exc}") from exc
        return [_decode(key, m) for m in raw]
