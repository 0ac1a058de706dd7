from __future__ import annotations

import fnmatch
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Set, Union


# Same sentinels Redis TTL returns.
TTL_MISSING = -2
TTL_NO_EXPIRY = -1


class KVBackend(Protocol):
    async def get(self, key: str) -> Optional[bytes]: ...
    async def set_with_expiry(self, key: str, value: bytes, ttl_sec: int) -> None: ...
    async def delete(self, key: str) -> int: ...
    async def expire(self, key: str, ttl_sec: int) -> bool: ...
    async def add_to_set(self, set_key: str, member: str) -> int: ...
    async def remove_from_set(self, set_key: str, member: str) -> int: ...
    async def members_of_set(self, set_key: str) -> Set[str]: ...
    async def expire_set(self, set_key: str, ttl_sec: int) -> bool: ...
    async def ttl_of(self, key: str) -> int: ...
    async def keys_matching(self, pattern: str) -> List[str]: ...
    async def increment(self, key: str, amount: int = 1) -> int: ...
    async def ping(self) -> bool: ...
    async def close(self) -> None: ...


@dataclass
class _Entry:
    value: Union[bytes, Set[str]]
    expires_at: Optional[float] = None


class MemoryKVBackend:
    """
    In-process backend with Redis semantics for the operations the store uses.

    Expiry is lazy: an entry past its deadline is dropped the next time it is
    touched. `clock` is injectable so tests can move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, _Entry] = {}

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._live(key)
        if entry is None or not isinstance(entry.value, bytes):
            return None
        return entry.value

    async def set_with_expiry(self, key: str, value: bytes, ttl_sec: int) -> None:
        self._data[key] = _Entry(value=bytes(value), expires_at=self._clock() + ttl_sec)

    async def set(self, key: str, value: bytes) -> None:
        # no expiry; used to simulate records left without TTL
        self._data[key] = _Entry(value=bytes(value))

    async def delete(self, key: str) -> int:
        entry = self._live(key)
        self._data.pop(key, None)
        return 1 if entry is not None else 0

    async def expire(self, key: str, ttl_sec: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        if ttl_sec <= 0:
            self._data.pop(key, None)
            return True
        entry.expires_at = self._clock() + ttl_sec
        return True

    async def add_to_set(self, set_key: str, member: str) -> int:
        entry = self._live(set_key)
        if entry is None:
            entry = _Entry(value=set())
            self._data[set_key] = entry
        members = entry.value
        if member in members:
            return 0
        members.add(member)
        return 1

    async def remove_from_set(self, set_key: str, member: str) -> int:
        entry = self._live(set_key)
        if entry is None or member not in entry.value:
            return 0
        entry.value.discard(member)
        if not entry.value:
            self._data.pop(set_key, None)
        return 1

    async def members_of_set(self, set_key: str) -> Set[str]:
        entry = self._live(set_key)
        if entry is None or not isinstance(entry.value, set):
            return set()
        return set(entry.value)

    async def expire_set(self, set_key: str, ttl_sec: int) -> bool:
        return await self.expire(set_key, ttl_sec)

    async def ttl_of(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return TTL_MISSING
        if entry.expires_at is None:
            return TTL_NO_EXPIRY
        return max(0, math.ceil(entry.expires_at - self._clock()))

    async def keys_matching(self, pattern: str) -> List[str]:
        return [k for k in list(self._data) if fnmatch.fnmatchcase(k, pattern) and self._live(k) is not None]

    async def increment(self, key: str, amount: int = 1) -> int:
        entry = self._live(key)
        current = int(entry.value) if entry is not None else 0
        new_val = current + amount
        expires_at = entry.expires_at if entry is not None else None
        self._data[key] = _Entry(value=str(new_val).encode("utf-8"), expires_at=expires_at)
        return new_val

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return entry
