from unittest import mock

import pytest

from conftest import ADDRESS, TTL
from walletauth.core.codec import encode
from walletauth.core.errors import BackendUnavailable
from walletauth.core.session_store import address_key, session_key


@pytest.mark.asyncio
async def test_create_then_get(store, make_session):
    s = make_session(metadata={"wallet": "coinbase"})
    await store.create(s)
    assert await store.get(s.id) == s


@pytest.mark.asyncio
async def test_create_writes_record_and_index_with_same_ttl(store, backend, make_session):
    s = make_session()
    await store.create(s)

    assert await backend.ttl_of(session_key(s.id)) == TTL
    assert await backend.ttl_of(address_key(s.address)) == TTL
    assert [x.id for x in await store.list_by_address(s.address)] == [s.id]


@pytest.mark.asyncio
async def test_list_by_address_is_case_insensitive(store, make_session):
    s = make_session()
    await store.create(s)
    found = await store.list_by_address(ADDRESS.upper().replace("0X", "0x"))
    assert [x.id for x in found] == [s.id]


@pytest.mark.asyncio
async def test_get_unknown_is_none(store):
    assert await store.get("session_nope") is None


@pytest.mark.asyncio
async def test_delete_removes_both_views(store, backend, make_session):
    s = make_session()
    await store.create(s)
    await store.delete(s.id)

    assert await store.get(s.id) is None
    assert s.id not in await backend.members_of_set(address_key(s.address))
    assert await store.list_by_address(s.address) == []


@pytest.mark.asyncio
async def test_delete_is_idempotent(store, make_session):
    s = make_session()
    await store.create(s)
    await store.delete(s.id)
    await store.delete(s.id)
    await store.delete("session_never_existed")


@pytest.mark.asyncio
async def test_update_restarts_ttl(store, backend, clock, make_session):
    s = make_session()
    await store.create(s)

    clock.advance(TTL - 3600)
    assert await backend.ttl_of(session_key(s.id)) == 3600

    await store.update(s.model_copy(update={"chain_id": 1}))
    assert await backend.ttl_of(session_key(s.id)) == TTL

    # past the original deadline, still alive
    clock.advance(7200)
    got = await store.get(s.id)
    assert got is not None
    assert got.chain_id == 1


@pytest.mark.asyncio
async def test_update_does_not_touch_index(store, backend, clock, make_session):
    s = make_session()
    await store.create(s)
    clock.advance(100)
    await store.update(s)
    assert await backend.ttl_of(address_key(s.address)) == TTL - 100


@pytest.mark.asyncio
async def test_passive_expiry(store, clock, make_session):
    s = make_session()
    await store.create(s)
    clock.advance(TTL + 1)
    assert await store.get(s.id) is None
    assert await store.list_by_address(s.address) == []


@pytest.mark.asyncio
async def test_lifecycle_scenario(store, make_session):
    s = make_session(address="0xabc0000000000000000000000000000000000abc", chain_id=8453)
    await store.create(s)

    got = await store.get(s.id)
    assert got.chain_id == 8453

    await store.update(got.model_copy(update={"chain_id": 1}))
    assert (await store.get(s.id)).chain_id == 1

    await store.delete(s.id)
    assert await store.get(s.id) is None
    assert await store.list_by_address("0xabc0000000000000000000000000000000000abc") == []


@pytest.mark.asyncio
async def test_two_sessions_same_address(store, make_session):
    a = make_session()
    b = make_session()
    await store.create(a)
    await store.create(b)

    assert {s.id for s in await store.list_by_address(ADDRESS)} == {a.id, b.id}

    await store.delete(a.id)
    assert [s.id for s in await store.list_by_address(ADDRESS)] == [b.id]


@pytest.mark.asyncio
async def test_list_by_address_drops_stale_members(store, backend, make_session):
    s = make_session()
    await store.create(s)
    await backend.add_to_set(address_key(ADDRESS), "session_gone")

    assert [x.id for x in await store.list_by_address(ADDRESS)] == [s.id]
    # lazily dropped, not repaired
    assert "session_gone" in await backend.members_of_set(address_key(ADDRESS))


@pytest.mark.asyncio
async def test_list_by_address_skips_member_lookup_failures(store, backend, make_session):
    a = make_session()
    b = make_session()
    await store.create(a)
    await store.create(b)

    real_get = backend.get

    async def flaky_get(key):
        if key == session_key(a.id):
            raise BackendUnavailable("timeout")
        return await real_get(key)

    with mock.patch.object(backend, "get", side_effect=flaky_get):
        found = await store.list_by_address(ADDRESS)
    assert [s.id for s in found] == [b.id]


@pytest.mark.asyncio
async def test_corrupt_record_reads_as_missing(store, backend):
    await backend.set_with_expiry(session_key("session_bad"), b"{broken", TTL)
    assert await store.get("session_bad") is None


@pytest.mark.asyncio
async def test_delete_corrupt_record_removes_key(store, backend):
    await backend.set_with_expiry(session_key("session_bad"), b"{broken", TTL)
    await store.delete("session_bad")
    assert await backend.get(session_key("session_bad")) is None


@pytest.mark.asyncio
async def test_create_fails_loudly_when_record_write_fails(store, backend, make_session):
    s = make_session()
    with mock.patch.object(backend, "set_with_expiry", side_effect=BackendUnavailable("down")):
        with pytest.raises(BackendUnavailable):
            await store.create(s)
    assert await store.get(s.id) is None


@pytest.mark.asyncio
async def test_create_tolerates_index_write_failure(store, backend, make_session):
    s = make_session()
    with mock.patch.object(backend, "add_to_set", side_effect=BackendUnavailable("down")):
        await store.create(s)

    # readable by id, not discoverable by address until the sweep runs
    assert await store.get(s.id) == s
    assert await store.list_by_address(s.address) == []

    assert await store.run_reconciliation() > 0
    assert [x.id for x in await store.list_by_address(s.address)] == [s.id]


@pytest.mark.asyncio
async def test_update_and_delete_fail_loudly(store, backend, make_session):
    s = make_session()
    await store.create(s)

    with mock.patch.object(backend, "set_with_expiry", side_effect=BackendUnavailable("down")):
        with pytest.raises(BackendUnavailable):
            await store.update(s)

    with mock.patch.object(backend, "delete", side_effect=BackendUnavailable("down")):
        with pytest.raises(BackendUnavailable):
            await store.delete(s.id)
    assert await store.get(s.id) == s


@pytest.mark.asyncio
async def test_delete_tolerates_index_remove_failure(store, backend, make_session):
    s = make_session()
    await store.create(s)

    with mock.patch.object(backend, "remove_from_set", side_effect=BackendUnavailable("down")):
        await store.delete(s.id)

    assert await store.get(s.id) is None
    assert s.id in await backend.members_of_set(address_key(s.address))

    await store.run_reconciliation()
    assert s.id not in await backend.members_of_set(address_key(s.address))


@pytest.mark.asyncio
async def test_list_all(store, backend, make_session):
    a = make_session()
    b = make_session(address="0x1110000000000000000000000000000000000000")
    await store.create(a)
    await store.create(b)
    await backend.set_with_expiry(session_key("session_bad"), b"nope", TTL)
    await backend.set_with_expiry("unrelated:key", encode(a), TTL)

    assert {s.id for s in await store.list_all()} == {a.id, b.id}
