from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from walletauth.core.errors import SessionNotFound, ValidationError
from walletauth.core.logging import log_event
from walletauth.core.models import WalletSession, utcnow
from walletauth.core.session_store import SessionStore
from walletauth.core.validators import validate_address, validate_chain_id, validate_metadata
from walletauth.infra.utils import new_session_id

if TYPE_CHECKING:
    from walletauth.core.analytics import AnalyticsService

logger = logging.getLogger(__name__)

_FIELD_ALIASES = {"chainId": "chain_id", "chain_id": "chain_id", "metadata": "metadata"}


class SessionService:
    """
    Session lifecycle on top of SessionStore.

    Every successful read is also an activity touch: `get_session` bumps
    `last_activity` and writes the record back, which restarts its TTL.
    """

    def __init__(
        self,
        store: SessionStore,
        supported_chain_ids: Iterable[int] = (1, 8453),
        metadata_max_bytes: int = 10 * 1024,
        analytics: Optional["AnalyticsService"] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.supported_chain_ids = list(supported_chain_ids)
        self.metadata_max_bytes = metadata_max_bytes
        self.analytics = analytics
        self._now = clock

    async def create_session(
        self,
        address: str,
        chain_id: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WalletSession:
        address = validate_address(address)
        chain_id = validate_chain_id(chain_id, self.supported_chain_ids)
        metadata = validate_metadata(metadata, self.metadata_max_bytes)

        now = self._now()
        session = WalletSession(
            id=new_session_id(),
            address=address,
            chain_id=chain_id,
            connected_at=now,
            last_activity=now,
            metadata=metadata,
        )
        await self.store.create(session)
        log_event("session.created", session_id=session.id, address=address, chain_id=chain_id)

        if self.analytics is not None:
            await self.analytics.track_session_created(address, chain_id)
        return session

    async def get_session(self, session_id: str) -> Optional[WalletSession]:
        session = await self.store.get(session_id)
        if session is None:
            return None
        session = session.model_copy(update={"last_activity": self._now()})
        await self.store.update(session)
        return session

    async def require_session(self, session_id: str) -> WalletSession:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFound(f"Session not found: {session_id}")
        return session

    async def update_session(self, session_id: str, fields: Dict[str, Any]) -> bool:
        changes: Dict[str, Any] = {}
        for name, value in fields.items():
            attr = _FIELD_ALIASES.get(name)
            if attr is None:
                raise ValidationError(f"Field cannot be updated: {name}")
            changes[attr] = value

        if "chain_id" in changes:
            changes["chain_id"] = validate_chain_id(changes["chain_id"], self.supported_chain_ids)
        if "metadata" in changes:
            changes["metadata"] = validate_metadata(changes["metadata"], self.metadata_max_bytes)

        session = await self.store.get(session_id)
        if session is None:
            return False

        changes["last_activity"] = self._now()
        await self.store.update(session.model_copy(update=changes))
        log_event("session.updated", session_id=session_id, fields=sorted(k for k in changes if k != "last_activity"))
        return True

    async def extend_session(self, session_id: str) -> bool:
        return await self.get_session(session_id) is not None

    async def disconnect_session(self, session_id: str) -> bool:
        session = await self.store.get(session_id)
        await self.store.delete(session_id)
        log_event("session.disconnected", session_id=session_id, existed=session is not None)

        if session is not None and self.analytics is not None:
            duration = int((self._now() - session.connected_at).total_seconds())
            await self.analytics.track_session_disconnected(session_id, duration)
        return True

    async def disconnect_address(self, address: str) -> int:
        """Disconnect every live session of `address`; returns how many were found."""
        address = validate_address(address)
        sessions = await self.store.list_by_address(address)
        for session in sessions:
            await self.disconnect_session(session.id)
        log_event("wallet.disconnected", address=address, sessions_disconnected=len(sessions))
        return len(sessions)

    async def sessions_for_address(self, address: str) -> List[WalletSession]:
        return await self.store.list_by_address(validate_address(address))

    async def active_sessions(self) -> List[WalletSession]:
        return await self.store.list_all()

    async def cleanup_expired_sessions(self) -> int:
        count = await self.store.run_reconciliation()
        logger.info("Cleaned up expired sessions count=%d", count)
        return count
