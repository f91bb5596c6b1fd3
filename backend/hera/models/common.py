from __future__ import annotations

import uuid


def new_id() -> str:
    """Primary keys are opaque UUID strings so ids never hint at other tenants' row counts."""
    return str(uuid.uuid4())
