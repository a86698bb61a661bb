"""
Pytest configuration for the migration tests.

Why: Keep the tests independent of any real MongoDB/Postgres and of a local
`.env` file. Connection strings are removed from the environment for every
test; tests that need them set their own values.
"""
import sys
from pathlib import Path

import pytest
from argon2 import PasswordHasher

# Ensure `authmigrate` is importable when running from a plain checkout
REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from authmigrate.identity_access.passwords import Argon2Hasher, PasswordStrategy  # noqa: E402
from authmigrate.tests.utils.fake_stores import InMemoryTargetStore  # noqa: E402

_ENV_VARS = (
    "MONGODB_URI",
    "DATABASE_URL",
    "LEGACY_DB_NAME",
    "LEGACY_USERS_COLLECTION",
    "MIGRATION_DEFAULT_LOCALE",
)


@pytest.fixture(autouse=True)
def _clean_migration_env(monkeypatch: pytest.MonkeyPatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def fast_strategy() -> PasswordStrategy:
    """argon2id with minimal cost so hashing stays fast in tests."""
    hasher = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)
    return PasswordStrategy(modern=Argon2Hasher(hasher))


@pytest.fixture
def target_store() -> InMemoryTargetStore:
    return InMemoryTargetStore()
