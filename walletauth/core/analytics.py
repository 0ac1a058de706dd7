from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from walletauth.core.errors import BackendUnavailable
from walletauth.core.kv_store import KVBackend
from walletauth.core.models import utcnow
from walletauth.core.session_store import SessionStore

logger = logging.getLogger(__name__)

PREFIX = "analytics"


class AnalyticsService:
    """
    Increment-only daily counters keyed by UTC date (YYYY-MM-DD).

    Tracking never fails the caller: a backend failure is logged and the
    counter update is dropped. Session figures come from `SessionStore.list_all`.
    """

    def __init__(
        self,
        backend: KVBackend,
        store: SessionStore,
        active_window_sec: int = 86400,
        chain_ids: Iterable[int] = (1, 8453),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.backend = backend
        self.store = store
        self.active_window_sec = active_window_sec
        self.chain_ids = list(chain_ids)
        self._now = clock

    def _today(self) -> str:
        return self._now().date().isoformat()

    async def _incr(self, *keys: str, amount: int = 1) -> None:
        for key in keys:
            try:
                await self.backend.increment(key, amount)
            except BackendUnavailable as e:
                logger.warning("Analytics counter %s not updated: %s", key, e)

    async def _read(self, key: str) -> int:
        try:
            raw = await self.backend.get(key)
        except BackendUnavailable as e:
            logger.warning("Analytics counter %s unreadable: %s", key, e)
            return 0
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError:
            logger.error("Analytics counter %s holds a non-integer value", key)
            return 0

    # -----------------------
    # Tracking
    # -----------------------
    async def track_session_created(self, address: str, chain_id: int) -> None:
        d = self._today()
        await self._incr(
            f"{PREFIX}:sessions:created:{d}",
            f"{PREFIX}:addresses:unique:{d}:{address.lower()}",
            f"{PREFIX}:chains:{chain_id}:{d}",
        )

    async def track_session_disconnected(self, session_id: str, duration_sec: int) -> None:
        d = self._today()
        await self._incr(f"{PREFIX}:sessions:disconnected:{d}")
        await self._incr(f"{PREFIX}:durations:{d}", amount=max(0, int(duration_sec)))
        logger.debug("Session disconnection tracked session_id=%s duration=%s", session_id, duration_sec)

    async def track_request(self, endpoint: str, method: str, status_code: int) -> None:
        d = self._today()
        keys = [
            f"{PREFIX}:requests:total:{d}",
            f"{PREFIX}:requests:endpoint:{endpoint}:{d}",
            f"{PREFIX}:requests:status:{status_code}:{d}",
        ]
        if status_code >= 400:
            keys.append(f"{PREFIX}:requests:errors:{d}")
        await self._incr(*keys)

    async def track_action(self, action: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        await self._incr(f"{PREFIX}:actions:{action}:{self._today()}")
        logger.info("Action tracked action=%s metadata=%s", action, metadata)

    # -----------------------
    # Reports
    # -----------------------
    async def session_metrics(self) -> Dict[str, Any]:
        try:
            sessions = await self.store.list_all()
        except BackendUnavailable as e:
            logger.warning("Session metrics unavailable: %s", e)
            sessions = []

        now = self._now()
        active = [s for s in sessions if s.status(self.active_window_sec, now) == "active"]
        total_duration = sum(s.duration_sec() for s in sessions)
        avg = total_duration / len(sessions) if sessions else 0

        return {
            "totalSessions": len(sessions),
            "activeSessions": len(active),
            "uniqueAddresses": len({s.address for s in sessions}),
            "averageSessionDuration": round(avg),
        }

    async def daily_request_stats(self, date: Optional[str] = None) -> Dict[str, Any]:
        d = date or self._today()
        total = await self._read(f"{PREFIX}:requests:total:{d}")
        errors = await self._read(f"{PREFIX}:requests:errors:{d}")
        rate = (errors / total) * 100 if total > 0 else 0
        return {"total": total, "errors": errors, "errorRate": round(rate, 2)}

    async def most_active_chains(self, date: Optional[str] = None) -> List[Dict[str, int]]:
        d = date or self._today()
        results = []
        for chain_id in self.chain_ids:
            results.append({"chainId": chain_id, "count": await self._read(f"{PREFIX}:chains:{chain_id}:{d}")})
        return sorted(results, key=lambda r: r["count"], reverse=True)

    async def summary(self) -> Dict[str, Any]:
        return {
            "sessions": await self.session_metrics(),
            "requests": await self.daily_request_stats(),
            "chains": await self.most_active_chains(),
        }
