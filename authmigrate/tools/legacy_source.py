"""Read-only access to the legacy user collection (MongoDB).

Only verified accounts are eligible. Records are streamed in ascending
creation order (ties broken by `_id`) so a numeric skip offset points at the
same position on every run, as long as the collection only grows at the tail.

Known limitation: documents inserted into the middle of that order while a run
is in progress (e.g. with back-dated `createdAt`) shift the offsets, so a
later `--skip` may re-visit or miss records. Resuming is reliable for a static
collection or tail appends only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterator, Mapping, Sequence

from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from authmigrate.errors import StoreConnectionError

logger = logging.getLogger("authmigrate.tools.legacy_source")

ELIGIBLE_FILTER: Mapping[str, Any] = {"verified": True}
DEFAULT_SORT: Sequence[tuple[str, int]] = (("createdAt", ASCENDING), ("_id", ASCENDING))


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _secret(value: Any) -> str | None:
    # Password material is hashed byte for byte, so it is never trimmed.
    return value if isinstance(value, str) and value else None


def _timestamp(value: Any) -> datetime | None:
    return value if isinstance(value, datetime) else None


@dataclass(frozen=True)
class LegacyAccountRecord:
    """One legacy user document, reduced to the fields the migration reads."""

    native_id: str
    email: str | None = None
    display_name: str | None = None
    password_digest: str | None = None
    password_salt: str | None = None
    verified: bool = False
    avatar_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "LegacyAccountRecord":
        return cls(
            native_id=str(doc["_id"]),
            email=_text(doc.get("email")),
            display_name=_text(doc.get("nickName")),
            password_digest=_secret(doc.get("password")),
            password_salt=_secret(doc.get("salt")),
            verified=bool(doc.get("verified", False)),
            avatar_url=_text(doc.get("avatarUrl")),
            created_at=_timestamp(doc.get("createdAt")),
            updated_at=_timestamp(doc.get("updatedAt")),
        )


class LegacySource:
    """Streams eligible legacy accounts from one collection."""

    def __init__(self, collection: Collection, client: MongoClient | None = None) -> None:
        self.collection = collection
        self._client = client

    @classmethod
    def connect(
        cls,
        uri: str,
        database: str | None = None,
        collection: str = "users",
    ) -> "LegacySource":
        """Open the client and ping the server so a bad URI fails before any work."""
        client: MongoClient | None = None
        try:
            client = MongoClient(uri, tz_aware=True)
            client.admin.command("ping")
            db = client[database] if database else client.get_default_database()
        except PyMongoError as exc:
            if client is not None:
                client.close()
            raise StoreConnectionError("legacy", str(exc)) from exc
        logger.debug("Connected to legacy database %s", db.name)
        return cls(db[collection], client=client)

    def count_eligible(self, query: Mapping[str, Any] = ELIGIBLE_FILTER) -> int:
        """Best-effort total; concurrent writes only affect the displayed percentage."""
        return int(self.collection.count_documents(dict(query)))

    def stream_records(
        self,
        skip: int = 0,
        *,
        query: Mapping[str, Any] = ELIGIBLE_FILTER,
        sort: Sequence[tuple[str, int]] = DEFAULT_SORT,
        fetch_size: int | None = None,
    ) -> Iterator[LegacyAccountRecord]:
        """Yield records lazily in stable order, starting after `skip` of them."""
        if skip < 0:
            raise ValueError("skip must be >= 0")
        cursor = self.collection.find(dict(query)).sort(list(sort)).skip(skip)
        if fetch_size:
            cursor = cursor.batch_size(fetch_size)
        try:
            for doc in cursor:
                yield LegacyAccountRecord.from_document(doc)
        finally:
            cursor.close()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


__all__ = ["DEFAULT_SORT", "ELIGIBLE_FILTER", "LegacyAccountRecord", "LegacySource"]
