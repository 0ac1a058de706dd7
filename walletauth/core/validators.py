from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, Optional

from walletauth.core.errors import ValidationError

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
SESSION_ID_PREFIX = "session_"


def validate_address(address: Any) -> str:
    """Return the lowercase address or raise ValidationError."""
    if not address:
        raise ValidationError("Address is required")
    if not isinstance(address, str):
        raise ValidationError("Address must be a string")
    address = address.strip()
    if not ADDRESS_RE.match(address):
        raise ValidationError("Invalid Ethereum address format")
    return address.lower()


def validate_chain_id(chain_id: Any, supported: Iterable[int]) -> int:
    supported = list(supported)
    # bool is an int subclass; reject it explicitly
    if isinstance(chain_id, bool) or not isinstance(chain_id, int):
        raise ValidationError("Chain ID must be a number")
    if chain_id not in supported:
        raise ValidationError(
            f"Unsupported chain ID. Supported chains: {', '.join(str(c) for c in supported)}"
        )
    return chain_id


def validate_metadata(metadata: Any, max_bytes: int) -> Optional[Dict[str, Any]]:
    if metadata is None:
        return None
    if not isinstance(metadata, dict):
        raise ValidationError("Metadata must be an object")
    try:
        size = len(json.dumps(metadata, ensure_ascii=False).encode("utf-8"))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Metadata is not serializable: {e}") from e
    if size > max_bytes:
        raise ValidationError(f"Metadata too large. Max size: {max_bytes} bytes")
    return metadata


def validate_session_id(session_id: Any) -> str:
    if not session_id:
        raise ValidationError("Session ID is required")
    if not isinstance(session_id, str):
        raise ValidationError("Session ID must be a string")
    if not session_id.startswith(SESSION_ID_PREFIX):
        raise ValidationError("Invalid session ID format")
    return session_id
