from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from walletauth.api.deps import get_sessions, session_view
from walletauth.api.schema import CreateSessionRequest, UpdateSessionRequest
from walletauth.core.errors import SessionNotFound
from walletauth.core.session_service import SessionService
from walletauth.core.validators import validate_session_id

router = APIRouter(prefix="/api/session", tags=["session"])


@router.post("/create", status_code=201)
async def create_session(body: CreateSessionRequest, sessions: SessionService = Depends(get_sessions)):
    session = await sessions.create_session(body.address, body.chain_id, metadata=body.metadata)
    return {
        "success": True,
        "session": session_view(session, "id", "address", "chainId", "connectedAt"),
    }


@router.get("/address/{address}")
async def sessions_for_address(address: str, sessions: SessionService = Depends(get_sessions)):
    found = await sessions.sessions_for_address(address)
    return {
        "success": True,
        "count": len(found),
        "sessions": [session_view(s, "id", "address", "chainId", "connectedAt", "lastActivity") for s in found],
    }


@router.get("/{session_id}")
async def get_session(session_id: str, request: Request, sessions: SessionService = Depends(get_sessions)):
    session = await sessions.require_session(validate_session_id(session_id))
    view = session_view(session, "id", "address", "chainId", "connectedAt", "lastActivity", "metadata")
    view["status"] = session.status(request.app.state.settings.ACTIVE_WINDOW_SEC)
    return {"success": True, "session": view}


@router.put("/{session_id}")
async def update_session(
    session_id: str,
    body: UpdateSessionRequest,
    sessions: SessionService = Depends(get_sessions),
):
    ok = await sessions.update_session(validate_session_id(session_id), body.changes())
    if not ok:
        raise SessionNotFound(f"Session not found: {session_id}")
    return {"success": True, "message": "Session updated successfully"}


@router.delete("/{session_id}")
async def disconnect_session(session_id: str, sessions: SessionService = Depends(get_sessions)):
    await sessions.disconnect_session(validate_session_id(session_id))
    return {"success": True, "message": "Session disconnected successfully"}
