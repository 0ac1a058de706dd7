from __future__ import annotations

from fastapi import APIRouter, Depends

from walletauth.api.deps import get_sessions, session_view
from walletauth.core.session_service import SessionService

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


@router.get("/info/{address}")
async def wallet_info(address: str, sessions: SessionService = Depends(get_sessions)):
    found = await sessions.sessions_for_address(address)
    return {
        "success": True,
        "address": address.strip().lower(),
        "sessionsCount": len(found),
        "sessions": [session_view(s, "id", "chainId", "connectedAt", "lastActivity") for s in found],
    }


@router.post("/disconnect/{address}")
async def disconnect_wallet(address: str, sessions: SessionService = Depends(get_sessions)):
    count = await sessions.disconnect_address(address)
    return {
        "success": True,
        "address": address.strip().lower(),
        "sessionsDisconnected": count,
        "message": f"Disconnected {count} session(s)",
    }
