from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from walletauth.core.kv_store import MemoryKVBackend
from walletauth.core.models import WalletSession
from walletauth.core.session_service import SessionService
from walletauth.core.session_store import SessionStore

TTL = 86400
GRACE = 60
ADDRESS = "0xabc0000000000000000000000000000000000001"
EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic seconds for the backend, UTC datetimes for the service. Both move together."""

    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def utc(self) -> datetime:
        return EPOCH + timedelta(seconds=self.t)

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> MemoryKVBackend:
    return MemoryKVBackend(clock=clock)


@pytest.fixture
def store(backend: MemoryKVBackend) -> SessionStore:
    return SessionStore(backend, ttl_sec=TTL, index_grace_sec=GRACE)


@pytest.fixture
def service(store: SessionStore, clock: FakeClock) -> SessionService:
    return SessionService(store, supported_chain_ids=[1, 8453], clock=clock.utc)


@pytest.fixture
def make_session(clock: FakeClock):
    counter = {"n": 0}

    def _make(address: str = ADDRESS, chain_id: int = 8453, **kw) -> WalletSession:
        counter["n"] += 1
        now = clock.utc()
        return WalletSession(
            id=kw.pop("id", f"session_test{counter['n']:04d}"),
            address=address,
            chain_id=chain_id,
            connected_at=kw.pop("connected_at", now),
            last_activity=kw.pop("last_activity", now),
            **kw,
        )

    return _make
