from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Header, HTTPException, Request

from walletauth.core.analytics import AnalyticsService
from walletauth.core.models import WalletSession
from walletauth.core.session_service import SessionService


def get_sessions(request: Request) -> SessionService:
    return request.app.state.sessions


def get_analytics(request: Request) -> Optional[AnalyticsService]:
    return request.app.state.analytics


def require_internal_key(request: Request, x_api_key: str = Header(default="", alias="x-api-key")) -> None:
    expected = request.app.state.settings.INTERNAL_API_KEY
    if not expected:
        raise HTTPException(status_code=500, detail="INTERNAL_API_KEY not set")
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def session_view(session: WalletSession, *fields: str) -> Dict[str, Any]:
    data = session.model_dump(mode="json", by_alias=True)
    if not fields:
        return data
    return {k: data.get(k) for k in fields}
