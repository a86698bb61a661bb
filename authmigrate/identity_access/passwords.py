"""
Dual-format password hashes for migrated accounts.

Why: Users imported from the legacy store keep their salted MD5 digest until
they change their password. The credential column therefore holds one of two
shapes, and the auth service must pick the right verifier for each row:

    legacy-md5:{salt}:{digest}   legacy digest, MD5(password + salt) in hex
    anything else                modern hash, handed to the modern hasher

Internally the two shapes are an explicit tagged union (`LegacyHash` |
`ModernHash`); only `serialize_password_hash` and `parse_password_hash`
touch the flat string stored in the database.

Security:
- New hashes are always modern (argon2id by default). The legacy format is
  read, never produced for new passwords.
- The modern hasher's output must never start with `legacy-md5:`. Argon2
  hashes start with `$argon2`, so the two spaces are disjoint; keep it that
  way when swapping the modern algorithm.
- `PasswordStrategy.verify` fails closed: malformed input returns False and
  never raises.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Protocol, Union

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

logger = logging.getLogger("authmigrate.identity_access.passwords")

LEGACY_SENTINEL = "legacy-md5"
DELIMITER = ":"
LEGACY_PREFIX = f"{LEGACY_SENTINEL}{DELIMITER}"


class MalformedPasswordHash(ValueError):
    """Stored hash carries the legacy sentinel but not a `salt:digest` body."""


@dataclass(frozen=True)
class LegacyHash:
    salt: str
    digest: str


@dataclass(frozen=True)
class ModernHash:
    opaque: str


PasswordHash = Union[LegacyHash, ModernHash]


def legacy_digest(password: str, salt: str) -> str:
    """MD5 hex digest of `password + salt` (salt appended, as the legacy system did)."""
    data = (password + salt).encode("utf-8")
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def _check_legacy_part(name: str, value: str | None) -> str:
    if not value:
        raise MalformedPasswordHash(f"legacy {name} is empty")
    if DELIMITER in value:
        raise MalformedPasswordHash(f"legacy {name} contains '{DELIMITER}'")
    return value


def format_legacy_password(salt: str, digest: str) -> str:
    """Flat storage form of a legacy salt/digest pair."""
    return serialize_password_hash(LegacyHash(salt=salt, digest=digest))


def serialize_password_hash(value: PasswordHash) -> str:
    if isinstance(value, LegacyHash):
        salt = _check_legacy_part("salt", value.salt)
        digest = _check_legacy_part("digest", value.digest)
        return f"{LEGACY_PREFIX}{salt}{DELIMITER}{digest}"
    if isinstance(value, ModernHash):
        if value.opaque.startswith(LEGACY_PREFIX):
            # Would be read back as a legacy hash.
            raise MalformedPasswordHash("modern hash collides with the legacy sentinel")
        return value.opaque
    raise TypeError(f"unsupported password hash: {type(value).__name__}")


def parse_password_hash(stored: str) -> PasswordHash:
    """Parse the stored column value.

    Raises MalformedPasswordHash when the legacy sentinel is present but the
    remainder does not split into exactly two non-empty parts.
    """
    if not stored.startswith(LEGACY_PREFIX):
        return ModernHash(opaque=stored)
    parts = stored[len(LEGACY_PREFIX):].split(DELIMITER)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedPasswordHash("legacy hash must be 'legacy-md5:{salt}:{digest}'")
    return LegacyHash(salt=parts[0], digest=parts[1])


class ModernHasher(Protocol):
    """Memory-hard hash supplied by the hosting auth service."""

    def hash(self, password: str) -> str:
        ...

    def verify(self, password: str, hashed: str) -> bool:
        ...

    def needs_rehash(self, hashed: str) -> bool:
        ...


class Argon2Hasher:
    """argon2id via argon2-cffi; comparison is constant time inside the library."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher()

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        try:
            return self._hasher.verify(hashed, password)
        except (VerificationError, InvalidHashError, UnicodeError):
            return False

    def needs_rehash(self, hashed: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(hashed)
        except InvalidHashError:
            return True


class PasswordStrategy:
    """Password hash/verify pair the auth service plugs into its login flow.

    Parameters
    ----------
    modern:
        Hasher for new passwords and non-legacy rows. Defaults to argon2id.
    """

    def __init__(self, modern: ModernHasher | None = None) -> None:
        self.modern = modern or Argon2Hasher()

    def hash(self, password: str) -> str:
        hashed = self.modern.hash(password)
        # Reject hashers whose output would be mistaken for the legacy format.
        return serialize_password_hash(ModernHash(opaque=hashed))

    def verify(self, password: str, stored_hash: str | None) -> bool:
        if not isinstance(password, str) or not isinstance(stored_hash, str) or not stored_hash:
            return False
        try:
            parsed = parse_password_hash(stored_hash)
        except MalformedPasswordHash:
            logger.warning("Rejecting login against malformed legacy password hash")
            return False
        if isinstance(parsed, LegacyHash):
            return _verify_legacy(password, parsed)
        return self.modern.verify(password, parsed.opaque)

    def needs_rehash(self, stored_hash: str) -> bool:
        """True when the stored hash should be replaced by `hash(password)` after login."""
        try:
            parsed = parse_password_hash(stored_hash)
        except MalformedPasswordHash:
            return True
        if isinstance(parsed, LegacyHash):
            return True
        return self.modern.needs_rehash(parsed.opaque)


def _verify_legacy(password: str, stored: LegacyHash) -> bool:
    expected = stored.digest.strip().lower().encode("utf-8")
    computed = legacy_digest(password, stored.salt).encode("utf-8")
    return hmac.compare_digest(computed, expected)


__all__ = [
    "Argon2Hasher",
    "DELIMITER",
    "LEGACY_PREFIX",
    "LEGACY_SENTINEL",
    "LegacyHash",
    "MalformedPasswordHash",
    "ModernHash",
    "ModernHasher",
    "PasswordHash",
    "PasswordStrategy",
    "format_legacy_password",
    "legacy_digest",
    "parse_password_hash",
    "serialize_password_hash",
]
