from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple

from walletauth.core.codec import decode, encode
from walletauth.core.errors import BackendUnavailable, DecodeError
from walletauth.core.kv_store import TTL_MISSING, TTL_NO_EXPIRY, KVBackend
from walletauth.core.logging import log_event
from walletauth.core.models import WalletSession

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
ADDRESS_PREFIX = "address:"


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


def address_key(address: str) -> str:
    return f"{ADDRESS_PREFIX}{address.strip().lower()}"


class SessionStore:
    """
    Session records plus a per-address index of their ids.

    Two views of the same fact live in the backend:

      session:<id>        -> encoded session, expires after ttl_sec
      address:<address>   -> set of session ids, expires with its sessions

    They are written one after the other without a transaction. Drift
    between them (an index write lost after the record was stored, an index
    member whose record already expired, a record left without TTL) is
    repaired by `run_reconciliation`, which is idempotent and safe to run
    next to live traffic.

    Write paths (create/update/delete) raise BackendUnavailable when the
    primary record could not be written. Read and cleanup paths log and skip
    what they cannot resolve.
    """

    def __init__(self, backend: KVBackend, ttl_sec: int = 86400, index_grace_sec: int = 60):
        self.backend = backend
        self.ttl_sec = ttl_sec
        self.index_grace_sec = index_grace_sec

    # -----------------------
    # CRUD
    # -----------------------
    async def create(self, session: WalletSession) -> None:
        await self.backend.set_with_expiry(session_key(session.id), encode(session), self.ttl_sec)

        idx = address_key(session.address)
        try:
            await self.backend.add_to_set(idx, session.id)
            await self.backend.expire_set(idx, self.ttl_sec)
        except BackendUnavailable as e:
            # record is stored and readable by id; the sweep restores the index
            log_event(
                "session.index_write_failed",
                level=logging.WARNING,
                session_id=session.id,
                address=session.address,
                error=str(e),
            )

    async def get(self, session_id: str) -> Optional[WalletSession]:
        raw = await self.backend.get(session_key(session_id))
        if raw is None:
            return None
        try:
            return decode(raw)
        except DecodeError:
            logger.error("Corrupt session record session_id=%s", session_id, exc_info=True)
            return None

    async def update(self, session: WalletSession) -> None:
        # full overwrite; the TTL restarts from now
        await self.backend.set_with_expiry(session_key(session.id), encode(session), self.ttl_sec)

    async def delete(self, session_id: str) -> None:
        key = session_key(session_id)
        raw = await self.backend.get(key)
        if raw is None:
            return

        address: Optional[str] = None
        try:
            address = decode(raw).address
        except DecodeError:
            logger.error("Corrupt session record on delete session_id=%s", session_id, exc_info=True)

        await self.backend.delete(key)

        if address is None:
            return
        try:
            await self.backend.remove_from_set(address_key(address), session_id)
        except BackendUnavailable as e:
            log_event(
                "session.index_remove_failed",
                level=logging.WARNING,
                session_id=session_id,
                address=address,
                error=str(e),
            )

    async def list_by_address(self, address: str) -> List[WalletSession]:
        ids = await self.backend.members_of_set(address_key(address))

        sessions: List[WalletSession] = []
        for sid in sorted(ids):
            try:
                s = await self.get(sid)
            except BackendUnavailable as e:
                logger.warning("Skipping session_id=%s while listing address: %s", sid, e)
                continue
            # stale members are dropped here and cleaned by the sweep
            if s is not None:
                sessions.append(s)
        return sessions

    async def list_all(self) -> List[WalletSession]:
        """Decode every live session. Scans the keyspace: admin/analytics use only."""
        keys = await self.backend.keys_matching(f"{SESSION_PREFIX}*")

        sessions: List[WalletSession] = []
        for key in keys:
            try:
                raw = await self.backend.get(key)
            except BackendUnavailable as e:
                logger.warning("Skipping %s while listing sessions: %s", key, e)
                continue
            if raw is None:
                continue
            try:
                sessions.append(decode(raw))
            except DecodeError:
                logger.error("Corrupt session record key=%s", key, exc_info=True)
        return sessions

    # -----------------------
    # Reconciliation
    # -----------------------
    async def run_reconciliation(self) -> int:
        """
        Repair drift between session records and address indexes.

        Pass 1 walks the session records: a record without TTL gets one, a
        record missing from its address index is added back, and each index
        is kept alive at least as long as its longest-lived record (plus
        `index_grace_sec`). Pass 2 walks the indexes and removes members whose
        record is verified gone.

        Returns the number of repairs made; a second run with no mutations in
        between returns 0.
        """
        ttl_applied, index_added, index_extended = await self._reconcile_records()
        dangling_removed, index_ttl_applied = await self._reconcile_indexes()

        repaired = ttl_applied + index_added + index_extended + dangling_removed + index_ttl_applied
        log_event(
            "session.reconciled",
            repaired=repaired,
            ttl_applied=ttl_applied,
            index_added=index_added,
            index_extended=index_extended,
            dangling_removed=dangling_removed,
            index_ttl_applied=index_ttl_applied,
        )
        return repaired

    async def _reconcile_records(self) -> Tuple[int, int, int]:
        ttl_applied = index_added = index_extended = 0

        try:
            keys = await self.backend.keys_matching(f"{SESSION_PREFIX}*")
        except BackendUnavailable as e:
            logger.warning("Reconciliation: cannot enumerate sessions, skipping pass: %s", e)
            return 0, 0, 0

        members_cache: Dict[str, Set[str]] = {}
        needed_ttl: Dict[str, int] = {}

        for key in keys:
            sid = key[len(SESSION_PREFIX):]
            try:
                ttl = await self.backend.ttl_of(key)
                if ttl == TTL_MISSING:
                    # gone since the scan; pass 2 cleans any index entry
                    continue
                if ttl == TTL_NO_EXPIRY:
                    if await self.backend.expire(key, self.ttl_sec):
                        ttl_applied += 1
                        ttl = self.ttl_sec
                    else:
                        continue

                raw = await self.backend.get(key)
                if raw is None:
                    continue
                try:
                    session = decode(raw)
                except DecodeError:
                    logger.error("Reconciliation: corrupt session record key=%s", key, exc_info=True)
                    continue

                idx = address_key(session.address)
                if idx not in members_cache:
                    members_cache[idx] = await self.backend.members_of_set(idx)
                if sid not in members_cache[idx]:
                    await self.backend.add_to_set(idx, sid)
                    members_cache[idx].add(sid)
                    index_added += 1
                needed_ttl[idx] = max(needed_ttl.get(idx, 0), ttl)
            except BackendUnavailable as e:
                logger.warning("Reconciliation: skipping %s: %s", key, e)

        for idx, need in needed_ttl.items():
            try:
                current = await self.backend.ttl_of(idx)
                if current == TTL_NO_EXPIRY or 0 <= current < need:
                    await self.backend.expire_set(idx, need + self.index_grace_sec)
                    index_extended += 1
            except BackendUnavailable as e:
                logger.warning("Reconciliation: skipping index %s: %s", idx, e)

        return ttl_applied, index_added, index_extended

    async def _reconcile_indexes(self) -> Tuple[int, int]:
        dangling_removed = index_ttl_applied = 0

        try:
            index_keys = await self.backend.keys_matching(f"{ADDRESS_PREFIX}*")
        except BackendUnavailable as e:
            logger.warning("Reconciliation: cannot enumerate address indexes, skipping pass: %s", e)
            return 0, 0

        for idx in index_keys:
            try:
                members = await self.backend.members_of_set(idx)
                for sid in members:
                    if await self.backend.ttl_of(session_key(sid)) == TTL_MISSING:
                        dangling_removed += await self.backend.remove_from_set(idx, sid)

                if await self.backend.ttl_of(idx) == TTL_NO_EXPIRY:
                    if await self.backend.expire_set(idx, self.ttl_sec):
                        index_ttl_applied += 1
            except BackendUnavailable as e:
                logger.warning("Reconciliation: skipping index %s: %s", idx, e)

        return dangling_removed, index_ttl_applied
