from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from walletauth.api.deps import get_analytics, get_sessions, require_internal_key, session_view
from walletauth.core.analytics import AnalyticsService
from walletauth.core.session_service import SessionService

router = APIRouter(tags=["admin"], dependencies=[Depends(require_internal_key)])


@router.get("/api/session/active/all")
async def active_sessions(sessions: SessionService = Depends(get_sessions)):
    found = await sessions.active_sessions()
    return {
        "success": True,
        "count": len(found),
        "sessions": [session_view(s, "id", "address", "chainId", "connectedAt", "lastActivity") for s in found],
    }


@router.post("/api/session/cleanup")
async def cleanup_sessions(sessions: SessionService = Depends(get_sessions)):
    cleaned = await sessions.cleanup_expired_sessions()
    return {
        "success": True,
        "cleanedCount": cleaned,
        "message": f"Cleaned up {cleaned} expired session(s)",
    }


@router.get("/api/analytics/summary")
async def analytics_summary(analytics: Optional[AnalyticsService] = Depends(get_analytics)):
    if analytics is None:
        raise HTTPException(status_code=404, detail="Analytics disabled")
    return {"success": True, **(await analytics.summary())}
