"""
Configuration for the legacy credential migration.

Why: Connection strings come from the environment (optionally a `.env` file)
and must be validated before any store is touched. Missing values abort the
run up front instead of failing halfway through a batch.

Variables:
- MONGODB_URI: legacy document store (required).
- DATABASE_URL: target relational store (required).
- LEGACY_DB_NAME: legacy database name; defaults to the one in MONGODB_URI.
- LEGACY_USERS_COLLECTION: legacy user collection, default `users`.
- MIGRATION_DEFAULT_LOCALE: locale assigned to migrated users, default `zh`.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import find_dotenv, load_dotenv

from authmigrate.errors import ConfigurationError
from authmigrate.identity_access.domain import DEFAULT_LOCALE

DEFAULT_COLLECTION = "users"


def load_env_file(path: str | None = None) -> bool:
    """Load `.env` (nearest to the working directory unless `path` is given).

    Real environment variables always win over file values.
    """
    return load_dotenv(path or find_dotenv(usecwd=True), override=False)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class MigrationSettings:
    legacy_uri: str
    database_url: str
    legacy_db: str | None = None
    collection: str = DEFAULT_COLLECTION
    default_locale: str = DEFAULT_LOCALE

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: str | None,
    ) -> "MigrationSettings":
        """Build settings from the environment; explicit overrides win.

        Raises ConfigurationError when either connection string is absent.
        """
        env = os.environ if environ is None else environ

        def pick(key: str, env_name: str) -> str | None:
            return _clean(overrides.get(key)) or _clean(env.get(env_name))

        legacy_uri = pick("legacy_uri", "MONGODB_URI")
        if not legacy_uri:
            raise ConfigurationError("MONGODB_URI environment variable is required")
        database_url = pick("database_url", "DATABASE_URL")
        if not database_url:
            raise ConfigurationError("DATABASE_URL environment variable is required")

        return cls(
            legacy_uri=legacy_uri,
            database_url=database_url,
            legacy_db=pick("legacy_db", "LEGACY_DB_NAME"),
            collection=pick("collection", "LEGACY_USERS_COLLECTION") or DEFAULT_COLLECTION,
            default_locale=pick("default_locale", "MIGRATION_DEFAULT_LOCALE") or DEFAULT_LOCALE,
        )


__all__ = ["MigrationSettings", "load_env_file", "DEFAULT_COLLECTION"]
