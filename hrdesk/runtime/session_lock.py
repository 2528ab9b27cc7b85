"""Per-session lock: one in-flight turn per conversation.

Backed by Redis when a client is supplied so that several service instances
serialise turns for the same session key; otherwise an in-process
``asyncio.Lock`` per key.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError


class SessionLockTimeout(RuntimeError):
    """Raised when lock acquisition times out."""


class SessionLock:
    def __init__(self, redis: Redis | None = None, ttl_seconds: int = 60) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._local: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 60) -> SessionLock:
        if not url:
            return cls(None, ttl_seconds)
        return cls(Redis.from_url(url), ttl_seconds)

    @asynccontextmanager
    async def acquire(self, session_key: str, timeout: float = 10.0) -> AsyncIterator[None]:
        if self._redis is not None:
            rlock = self._redis.lock(f"hrdesk:lock:{session_key}", timeout=self._ttl)
            try:
                acquired = await rlock.acquire(blocking=True, blocking_timeout=timeout)
            except RedisError as exc:
                logger.warning(f"Redis lock unavailable for {session_key}, using local lock: {exc}")
                acquired = None
            if acquired is False:
                raise SessionLockTimeout(f"lock timeout: {session_key}")
            if acquired:
                try:
                    yield
                finally:
                    try:
                        await rlock.release()
                    except LockError as exc:
                        # ttl elapsed mid-turn; the key is already gone
                        logger.warning(f"Session lock for {session_key} expired before release: {exc}")
                return

        local = self._local.setdefault(session_key, asyncio.Lock())
        try:
            await asyncio.wait_for(local.acquire(), timeout=timeout)
        except TimeoutError as exc:
            raise SessionLockTimeout(f"lock timeout: {session_key}") from exc
        try:
            yield
        finally:
            local.release()

    def forget(self, session_key: str) -> None:
        """Drop the in-process lock for a finished session unless a turn holds it."""
        local = self._local.get(session_key)
        if local is not None and not local.locked():
            del self._local[session_key]

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
