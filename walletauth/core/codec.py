from __future__ import annotations

from typing import Union

from pydantic import ValidationError as PydanticValidationError

from walletauth.core.errors import DecodeError
from walletauth.core.models import WalletSession


def encode(session: WalletSession) -> bytes:
    """Serialize a session to the backend value (UTF-8 JSON, ISO-8601 UTC timestamps)."""
    return session.model_dump_json(by_alias=True).encode("utf-8")


def decode(raw: Union[bytes, str]) -> WalletSession:
    """
    Parse a stored value back into a session.

    Unknown fields are ignored; missing required fields, bad JSON or a
    non-object payload raise DecodeError.
    """
    try:
        return WalletSession.model_validate_json(raw)
    except PydanticValidationError as e:
        raise DecodeError(f"Invalid session record: {e.error_count()} error(s)") from e
