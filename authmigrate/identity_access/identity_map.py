"""
Deterministic legacy id → target user id mapping.

Why: Re-running the migration must land on the same target identity without a
side table of "already migrated" markers. Prefixing the legacy id keeps the
mapping pure and keeps migrated ids apart from ids the auth service generates
itself (those never start with the prefix).
"""
from __future__ import annotations

MIGRATED_ID_PREFIX = "migrated_"


def map_identifier(native_id: object) -> str:
    """Return the target user id for a legacy record id (ObjectId, str, int, …)."""
    return f"{MIGRATED_ID_PREFIX}{native_id}"


def is_migrated_identifier(user_id: str) -> bool:
    return user_id.startswith(MIGRATED_ID_PREFIX)


__all__ = ["MIGRATED_ID_PREFIX", "map_identifier", "is_migrated_identifier"]
