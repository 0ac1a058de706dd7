import asyncio
from unittest import mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from walletauth.core.errors import BackendUnavailable
from walletauth.infra.redis_kv import RedisKVBackend
from walletauth.settings import Settings


def _backend(client, **kw):
    kw.setdefault("backoff_sec", 0)
    return RedisKVBackend(client, timeout_sec=kw.pop("timeout_sec", 1.0), retries=kw.pop("retries", 2), **kw)


@pytest.mark.asyncio
async def test_retries_transient_errors():
    client = mock.AsyncMock()
    client.get.side_effect = [RedisConnectionError("reset"), RedisConnectionError("reset"), b"value"]

    assert await _backend(client).get("k") == b"value"
    assert client.get.await_count == 3


@pytest.mark.asyncio
async def test_gives_up_after_retries():
    client = mock.AsyncMock()
    client.set.side_effect = RedisConnectionError("refused")

    with pytest.raises(BackendUnavailable):
        await _backend(client, retries=2).set_with_expiry("k", b"v", 10)
    assert client.set.await_count == 3


@pytest.mark.asyncio
async def test_command_errors_are_not_retried():
    client = mock.AsyncMock()
    client.sadd.side_effect = ResponseError("WRONGTYPE")

    with pytest.raises(BackendUnavailable):
        await _backend(client).add_to_set("k", "m")
    assert client.sadd.await_count == 1


@pytest.mark.asyncio
async def test_slow_call_times_out():
    client = mock.AsyncMock()

    async def hang(key):
        await asyncio.sleep(5)

    client.get.side_effect = hang

    with pytest.raises(BackendUnavailable):
        await _backend(client, timeout_sec=0.01, retries=1).get("k")
    assert client.get.await_count == 2


@pytest.mark.asyncio
async def test_set_and_ttl_commands():
    client = mock.AsyncMock()
    client.ttl.return_value = -1
    client.expire.return_value = 1
    backend = _backend(client)

    await backend.set_with_expiry("session:a", b"{}", 86400)
    client.set.assert_awaited_once_with("session:a", b"{}", ex=86400)

    assert await backend.ttl_of("session:a") == -1
    assert await backend.expire_set("address:0xabc", 60) is True
    client.expire.assert_awaited_once_with("address:0xabc", 60)


@pytest.mark.asyncio
async def test_members_and_keys_are_decoded():
    client = mock.AsyncMock()
    client.smembers.return_value = {b"session_1", b"session_2"}

    client.scan.side_effect = [
        (7, [b"session:session_1"]),
        (0, [b"session:session_2", b"session:session_1"]),
    ]
    backend = _backend(client)

    assert await backend.members_of_set("address:0xabc") == {"session_1", "session_2"}
    assert await backend.keys_matching("session:*") == ["session:session_1", "session:session_2"]
    assert client.scan.await_args_list == [
        mock.call(0, match="session:*", count=500),
        mock.call(7, match="session:*", count=500),
    ]


@pytest.mark.asyncio
async def test_scan_deadline_applies_per_page():
    client = mock.AsyncMock()
    pages = iter(range(5, -1, -1))

    async def slow_page(cursor, match=None, count=None):
        await asyncio.sleep(0.06)
        nxt = next(pages)
        return nxt, [f"session:s{nxt}".encode()]

    client.scan.side_effect = slow_page

    # six pages at 0.06s each: the walk outlasts the deadline, no single page does
    keys = await _backend(client, timeout_sec=0.2, retries=1).keys_matching("session:*")
    assert len(keys) == 6
    assert client.scan.await_count == 6


@pytest.mark.asyncio
async def test_scan_retries_a_failed_page_only():
    client = mock.AsyncMock()
    client.scan.side_effect = [
        (3, [b"session:a"]),
        RedisConnectionError("reset"),
        (0, [b"session:b"]),
    ]

    assert await _backend(client).keys_matching("session:*") == ["session:a", "session:b"]
    assert client.scan.await_args_list[1:] == [mock.call(3, match="session:*", count=500)] * 2


@pytest.mark.asyncio
async def test_increment_not_retried_after_timeout():
    client = mock.AsyncMock()
    client.incrby.side_effect = RedisTimeoutError("read timed out")

    with pytest.raises(BackendUnavailable):
        await _backend(client, retries=3).increment("analytics:requests:total:2025-01-01")
    assert client.incrby.await_count == 1


@pytest.mark.asyncio
async def test_increment_retried_after_connection_error():
    client = mock.AsyncMock()
    client.incrby.side_effect = [RedisConnectionError("refused"), 4]

    assert await _backend(client).increment("k") == 4
    assert client.incrby.await_count == 2


@pytest.mark.asyncio
async def test_close_releases_pool():
    client = mock.AsyncMock()
    await _backend(client).close()
    client.aclose.assert_awaited_once()


def test_from_settings_uses_pool_options():
    s = Settings(_env_file=None, REDIS_URL="redis://cache:6380/2", REDIS_MAX_CONNECTIONS=7, BACKEND_TIMEOUT_SEC=0.5)
    with mock.patch("walletauth.infra.redis_kv.aioredis.from_url") as from_url:
        backend = RedisKVBackend.from_settings(s)

    from_url.assert_called_once_with(
        "redis://cache:6380/2",
        max_connections=7,
        socket_timeout=0.5,
        socket_connect_timeout=0.5,
    )
    assert backend.timeout_sec == 0.5
    assert backend.retries == s.BACKEND_RETRIES
