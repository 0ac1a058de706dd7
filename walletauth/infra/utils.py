from __future__ import annotations

import uuid


def new_session_id() -> str:
    # uuid4: ids are never reused across the session store's lifetime
    return f"session_{uuid.uuid4().hex}"
