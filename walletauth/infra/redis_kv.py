from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from walletauth.core.errors import BackendUnavailable
from walletauth.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TIMEOUTS = (RedisTimeoutError, asyncio.TimeoutError)
_TRANSIENT = (RedisConnectionError,) + _TIMEOUTS

SCAN_PAGE_SIZE = 500


def _text(v: Any) -> str:
    return v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)


class RedisKVBackend:
    """
    Key-value backend over a pooled redis.asyncio client.

    Every call is bounded by `timeout_sec` and retried up to `retries` times on
    connection/timeout errors, with a short linear backoff. When retries run
    out the call raises BackendUnavailable. INCRBY is not idempotent, so it
    is not retried after a timeout.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        timeout_sec: float = 2.0,
        retries: int = 3,
        backoff_sec: float = 0.1,
    ):
        self.client = client
        self.timeout_sec = timeout_sec
        self.retries = retries
        self.backoff_sec = backoff_sec

    @classmethod
    def from_settings(cls, s: Settings) -> "RedisKVBackend":
        # from_url does not connect; the pool opens connections on first command
        client = aioredis.from_url(
            s.REDIS_URL,
            max_connections=s.REDIS_MAX_CONNECTIONS,
            socket_timeout=s.BACKEND_TIMEOUT_SEC,
            socket_connect_timeout=s.BACKEND_TIMEOUT_SEC,
        )
        return cls(client, timeout_sec=s.BACKEND_TIMEOUT_SEC, retries=s.BACKEND_RETRIES)

    async def _call(self, op: str, fn: Callable[[], Awaitable[T]], idempotent: bool = True) -> T:
        last_err: Optional[Exception] = None
        attempts = 0

        for attempt in range(self.retries + 1):
            attempts = attempt + 1
            try:
                return await asyncio.wait_for(fn(), timeout=self.timeout_sec)
            except _TRANSIENT as e:
                last_err = e
                if not idempotent and isinstance(e, _TIMEOUTS):
                    # the command may have been applied; a retry could apply it twice
                    break
                if attempt < self.retries:
                    logger.debug("redis %s failed (attempt %d), retrying: %s", op, attempt + 1, e)
                    await asyncio.sleep(self.backoff_sec * (attempt + 1))
                    continue
                break
            except RedisError as e:
                raise BackendUnavailable(f"redis {op} failed: {e}") from e

        raise BackendUnavailable(f"redis {op} failed after {attempts} attempt(s): {last_err}") from last_err

    async def get(self, key: str) -> Optional[bytes]:
        return await self._call("get", lambda: self.client.get(key))

    async def set_with_expiry(self, key: str, value: bytes, ttl_sec: int) -> None:
        await self._call("set", lambda: self.client.set(key, value, ex=ttl_sec))

    async def delete(self, key: str) -> int:
        return int(await self._call("delete", lambda: self.client.delete(key)))

    async def expire(self, key: str, ttl_sec: int) -> bool:
        return bool(await self._call("expire", lambda: self.client.expire(key, ttl_sec)))

    async def add_to_set(self, set_key: str, member: str) -> int:
        return int(await self._call("sadd", lambda: self.client.sadd(set_key, member)))

    async def remove_from_set(self, set_key: str, member: str) -> int:
        return int(await self._call("srem", lambda: self.client.srem(set_key, member)))

    async def members_of_set(self, set_key: str) -> Set[str]:
        raw = await self._call("smembers", lambda: self.client.smembers(set_key))
        return {_text(m) for m in raw}

    async def expire_set(self, set_key: str, ttl_sec: int) -> bool:
        return await self.expire(set_key, ttl_sec)

    async def ttl_of(self, key: str) -> int:
        return int(await self._call("ttl", lambda: self.client.ttl(key)))

    async def keys_matching(self, pattern: str) -> List[str]:
        # SCAN, not KEYS: does not block the server on a large keyspace.
        # Each page gets its own deadline and retries; the walk as a whole has none.
        keys: List[str] = []
        seen: Set[str] = set()
        cursor = 0
        while True:
            cursor, page = await self._call(
                "scan",
                lambda c=cursor: self.client.scan(c, match=pattern, count=SCAN_PAGE_SIZE),
            )
            for k in map(_text, page):
                # SCAN may return a key more than once
                if k not in seen:
                    seen.add(k)
                    keys.append(k)
            if int(cursor) == 0:
                return keys

    async def increment(self, key: str, amount: int = 1) -> int:
        return int(await self._call("incrby", lambda: self.client.incrby(key, amount), idempotent=False))

    async def ping(self) -> bool:
        return bool(await self._call("ping", lambda: self.client.ping()))

    async def close(self) -> None:
        await self.client.aclose()
        logger.info("Redis connection pool closed")
