"""
Fatal error types for the migration tooling.

Why: Only configuration and connectivity problems may stop a run. Everything
that goes wrong for a single legacy record is folded into the statistics
instead, so these classes are intentionally few.
"""
from __future__ import annotations


class MigrationError(Exception):
    """Base class for run-level migration failures."""


class ConfigurationError(MigrationError):
    """Required configuration (e.g. a connection string) is missing or invalid."""


class StoreConnectionError(MigrationError):
    """A legacy or target store could not be reached."""

    def __init__(self, store: str, message: str):
        super().__init__(f"{store} store: {message}")
        self.store = store


__all__ = ["MigrationError", "ConfigurationError", "StoreConnectionError"]
