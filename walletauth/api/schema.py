from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateSessionRequest(BaseModel):
    address: str
    chain_id: int = Field(alias="chainId")
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)


class UpdateSessionRequest(BaseModel):
    chain_id: Optional[int] = Field(default=None, alias="chainId")
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def changes(self) -> Dict[str, Any]:
        """Only the fields the client actually sent."""
        return self.model_dump(by_alias=True, exclude_unset=True)
