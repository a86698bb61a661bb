"""Per-record idempotent write of a legacy account into the target store.

Why:
    Each legacy record either creates exactly one user (plus at most one
    password credential) or leaves the target untouched. Existing users are
    detected by normalised email and skipped, which makes re-runs safe without
    any "already migrated" bookkeeping.
Behaviour:
    - Missing email → ERRORED (`missing_email`); nothing is attempted.
    - Email already present → SKIPPED. Existing rows are never overwritten.
    - Digest without salt → user is migrated without a credential (warning).
    - Salt/digest that cannot be stored in the tagged format → ERRORED
      (`malformed_password_hash`).
    - Dry run → MIGRATED is reported, no write happens.
    - Live → user and credential are inserted in one transaction.
    - Any exception from the store is converted to ERRORED and logged with the
      legacy id; it never propagates to the batch.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

from authmigrate.identity_access.domain import (
    DEFAULT_LOCALE,
    FALLBACK_DISPLAY_NAME,
    TargetCredentialAccount,
    TargetUser,
    normalize_email,
)
from authmigrate.identity_access.identity_map import is_migrated_identifier
from authmigrate.identity_access.passwords import MalformedPasswordHash, format_legacy_password

from .legacy_source import LegacyAccountRecord

logger = logging.getLogger("authmigrate.tools.migration_writer")

REASON_MISSING_EMAIL = "missing_email"
REASON_MALFORMED_HASH = "malformed_password_hash"
REASON_EXISTING_USER = "existing_user"
REASON_DRY_RUN = "dry-run"


class Outcome(str, Enum):
    MIGRATED = "migrated"
    SKIPPED = "skipped"
    # Reserved: reconciling drifted fields of existing users is not implemented.
    UPDATED = "updated"
    ERRORED = "errored"


@dataclass(frozen=True)
class RecordResult:
    outcome: Outcome
    native_id: str
    email: str | None = None
    reason: str | None = None


class TargetWriteStore(Protocol):
    def find_user_id_by_email(self, email: str) -> str | None:
        ...

    def create_user(self, user: TargetUser, account: Optional[TargetCredentialAccount] = None) -> None:
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mask_email(email: str | None) -> str:
    """Mask email for logs to reduce PII exposure in operator logs."""
    if not email:
        return "<no email>"
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}"


def build_target_user(
    record: LegacyAccountRecord,
    mapped_id: str,
    *,
    email: str,
    locale: str = DEFAULT_LOCALE,
    now: datetime,
) -> TargetUser:
    name = record.display_name or email.split("@", 1)[0] or FALLBACK_DISPLAY_NAME
    return TargetUser(
        id=mapped_id,
        email=email,
        name=name,
        email_verified=record.verified,
        locale=locale,
        image=record.avatar_url,
        created_at=record.created_at or now,
        updated_at=record.updated_at or now,
    )


def build_credential_account(
    record: LegacyAccountRecord,
    user: TargetUser,
    *,
    now: datetime,
) -> TargetCredentialAccount | None:
    """Legacy-tagged credential for the user, or None when digest or salt is missing.

    Raises MalformedPasswordHash for parts that contain the format delimiter.
    """
    if not record.password_digest:
        return None
    if not record.password_salt:
        logger.warning(
            "Legacy user %s has a password digest but no salt; migrating without credential",
            record.native_id,
        )
        return None
    return TargetCredentialAccount(
        id=str(uuid.uuid4()),
        user_id=user.id,
        account_id=user.email,
        password=format_legacy_password(record.password_salt, record.password_digest),
        created_at=record.created_at or now,
        updated_at=record.updated_at or now,
    )


class MigrationWriter:
    """Applies one legacy record to the target store."""

    def __init__(
        self,
        store: TargetWriteStore,
        *,
        default_locale: str = DEFAULT_LOCALE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.default_locale = default_locale
        self.clock = clock

    def apply(self, record: LegacyAccountRecord, mapped_id: str, dry_run: bool) -> RecordResult:
        email = normalize_email(record.email)
        if not email:
            logger.warning("Skipping legacy user %s: no email", record.native_id)
            return RecordResult(Outcome.ERRORED, record.native_id, None, REASON_MISSING_EMAIL)

        try:
            existing_id = self.store.find_user_id_by_email(email)
            if existing_id is not None:
                # Field reconciliation for drifted users (Outcome.UPDATED) would go here.
                origin = "migrated" if is_migrated_identifier(existing_id) else "native"
                logger.info("Skipping existing user %s (%s, %s)", mask_email(email), existing_id, origin)
                return RecordResult(Outcome.SKIPPED, record.native_id, email, REASON_EXISTING_USER)

            now = self.clock()
            user = build_target_user(record, mapped_id, email=email, locale=self.default_locale, now=now)
            try:
                account = build_credential_account(record, user, now=now)
            except MalformedPasswordHash as exc:
                logger.error(
                    "Legacy user %s (%s) has unusable password data: %s",
                    record.native_id,
                    mask_email(email),
                    exc,
                )
                return RecordResult(Outcome.ERRORED, record.native_id, email, REASON_MALFORMED_HASH)

            if dry_run:
                logger.info("[dry-run] Would create user %s -> %s", mask_email(email), mapped_id)
                return RecordResult(Outcome.MIGRATED, record.native_id, email, REASON_DRY_RUN)

            self.store.create_user(user, account)
        except Exception as exc:
            logger.error(
                "Error migrating legacy user %s (%s): %s",
                record.native_id,
                mask_email(email),
                exc,
            )
            return RecordResult(Outcome.ERRORED, record.native_id, email, f"{type(exc).__name__}: {exc}")

        logger.info(
            "Migrated user %s -> %s%s",
            mask_email(email),
            mapped_id,
            " (with legacy credential)" if account else "",
        )
        return RecordResult(Outcome.MIGRATED, record.native_id, email)


__all__ = [
    "MigrationWriter",
    "Outcome",
    "RecordResult",
    "TargetWriteStore",
    "build_credential_account",
    "build_target_user",
    "mask_email",
    "utcnow",
]
