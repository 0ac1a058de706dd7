from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


SessionStatus = Literal["active", "expired"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WalletSession(BaseModel):
    """
    One authenticated wallet connection.

    Serialized with camelCase keys (``chainId``, ``connectedAt``...) so the
    stored record stays readable by any other process sharing the backend.
    """

    id: str
    address: str
    chain_id: int = Field(alias="chainId")
    connected_at: datetime = Field(alias="connectedAt")
    last_activity: datetime = Field(alias="lastActivity")
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("address")
    @classmethod
    def _lowercase_address(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("connected_at", "last_activity")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def status(self, active_window_sec: int, now: Optional[datetime] = None) -> SessionStatus:
        now = now or utcnow()
        idle = (now - self.last_activity).total_seconds()
        return "active" if idle < active_window_sec else "expired"

    def duration_sec(self) -> float:
        return (self.last_activity - self.connected_at).total_seconds()
