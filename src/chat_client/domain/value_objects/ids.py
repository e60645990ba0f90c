from __future__ import annotations

import uuid
from typing import NewType

TempId = NewType("TempId", str)

TEMP_ID_PREFIX = "pending-"


def new_temp_id() -> TempId:
    """Client-side id for an unconfirmed message.

    The prefix keeps temp ids disjoint from server-assigned message ids.
    """
    return TempId(f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}")


def is_temp_id(value: str) -> bool:
    return value.startswith(TEMP_ID_PREFIX)
