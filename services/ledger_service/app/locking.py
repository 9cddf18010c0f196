"""Advisory locks that serialize sync runs per report kind."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .errors import SyncInProgressError

# Delete only when the stored token still matches, so an expired holder cannot free a newer lock.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class SyncLock:
    """Non-blocking lock keyed by report kind.

    Uses Redis ``SET NX PX`` when a client is configured so separate processes serialize;
    otherwise falls back to per-process ``asyncio.Lock`` objects.
    """

    def __init__(
        self,
        redis_client: Redis | None = None,
        *,
        key_prefix: str = "ledger:sync-lock",
        ttl_seconds: int = 900,
    ) -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._ttl_ms = max(ttl_seconds, 1) * 1000
        self._local: dict[str, asyncio.Lock] = {}

    def _key(self, name: str) -> str:
        return f"{self._key_prefix}:{name}"

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        if self._redis is None:
            async with self._hold_local(name):
                yield
            return

        key = self._key(name)
        token = uuid.uuid4().hex
        try:
            acquired = await self._redis.set(key, token, nx=True, px=self._ttl_ms)
        except RedisError as exc:
            raise SyncInProgressError(f"Could not acquire sync lock {key}: {exc}") from exc
        if not acquired:
            raise SyncInProgressError(f"A sync for {name} is already running", context={"lock": key})
        try:
            yield
        finally:
            await self._redis.eval(_RELEASE_SCRIPT, 1, key, token)

    @asynccontextmanager
    async def _hold_local(self, name: str) -> AsyncIterator[None]:
        lock = self._local.setdefault(name, asyncio.Lock())
        if lock.locked():
            raise SyncInProgressError(f"A sync for {name} is already running", context={"lock": self._key(name)})
        async with lock:
            yield
