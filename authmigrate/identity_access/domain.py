"""
Identity domain constants and the target-side account records.

Why:
- Centralize values shared by the migration tool and the verifier so the
  provider id and the default locale cannot drift between them.
- Keep the target rows as plain immutable values; the store adapter turns
  them into SQL parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Provider discriminator the auth service uses for email/password accounts.
CREDENTIAL_PROVIDER_ID = "credential"

# Locale assigned to migrated users; the legacy store has no locale field.
DEFAULT_LOCALE = "zh"

FALLBACK_DISPLAY_NAME = "User"


def normalize_email(email: str | None) -> str | None:
    """Return the lower-cased, trimmed email or None when nothing is left."""
    if email is None:
        return None
    normalized = str(email).strip().lower()
    return normalized or None


@dataclass(frozen=True)
class TargetUser:
    id: str
    email: str
    name: str
    email_verified: bool
    locale: str
    image: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class TargetCredentialAccount:
    """Password credential owned by a TargetUser (at most one per user)."""

    id: str
    user_id: str
    account_id: str
    password: str
    created_at: datetime
    updated_at: datetime
    provider_id: str = CREDENTIAL_PROVIDER_ID


__all__ = [
    "CREDENTIAL_PROVIDER_ID",
    "DEFAULT_LOCALE",
    "FALLBACK_DISPLAY_NAME",
    "TargetCredentialAccount",
    "TargetUser",
    "normalize_email",
]
