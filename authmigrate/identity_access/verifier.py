"""
Email/password verification against the target store.

Why: This is the `verifyCredential(email, password)` half of the auth service
boundary. It shows how a host wires `PasswordStrategy` to the stored
credential so migrated users with legacy hashes can log in.
"""
from __future__ import annotations

import logging
from typing import Protocol

from .domain import TargetUser, normalize_email
from .passwords import PasswordStrategy

logger = logging.getLogger("authmigrate.identity_access.verifier")


class CredentialLookup(Protocol):
    def find_password_credential(self, email: str) -> tuple[TargetUser, str | None] | None:
        ...


class CredentialVerifier:
    def __init__(self, store: CredentialLookup, strategy: PasswordStrategy | None = None) -> None:
        self.store = store
        self.strategy = strategy or PasswordStrategy()

    def verify_credential(self, email: str, password: str) -> TargetUser | None:
        """Return the user when the password matches; None otherwise."""
        normalized = normalize_email(email)
        if not normalized:
            return None
        found = self.store.find_password_credential(normalized)
        if found is None:
            return None
        user, stored_hash = found
        if not stored_hash:
            # Social-only or credential-less user.
            return None
        if not self.strategy.verify(password, stored_hash):
            return None
        if self.strategy.needs_rehash(stored_hash):
            logger.debug("User %s authenticated with an outdated hash", user.id)
        return user


__all__ = ["CredentialVerifier", "CredentialLookup"]
