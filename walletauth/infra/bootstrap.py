from __future__ import annotations

import logging

from walletauth.core.errors import BackendUnavailable
from walletauth.core.kv_store import KVBackend, MemoryKVBackend
from walletauth.infra.redis_kv import RedisKVBackend
from walletauth.settings import Settings

logger = logging.getLogger(__name__)


def build_backend(s: Settings) -> KVBackend:
    if s.KV_BACKEND == "memory":
        logger.warning("Using in-process key-value backend; sessions are not shared between processes")
        return MemoryKVBackend()
    if s.KV_BACKEND != "redis":
        raise ValueError(f"Unknown KV_BACKEND: {s.KV_BACKEND}")
    return RedisKVBackend.from_settings(s)


async def check_backend(backend: KVBackend) -> bool:
    """PING the backend once at startup. A failure is logged, not fatal: requests get 503 until it recovers."""
    try:
        await backend.ping()
    except BackendUnavailable as e:
        logger.error("Key-value backend unreachable at startup: %s", e)
        return False
    logger.info("Key-value backend reachable")
    return True
