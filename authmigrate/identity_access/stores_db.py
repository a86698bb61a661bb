"""
Postgres adapter for the auth service's user and account tables.

Why: The migration and the credential verifier both need a handful of
queries against the target schema (`public."user"`, `public.account`). Keeping
them behind one small class lets tests swap in an in-memory store and keeps
SQL out of the migration logic.

Security:
- Intended to be used with a role that may insert into both tables. The DSN is
  never logged.
- User and credential rows are written in one transaction: both or neither.

Note: This module uses psycopg3. The connection runs in autocommit mode; the
paired insert opens an explicit transaction block.
"""
from __future__ import annotations

import logging
from typing import Optional

import psycopg

from authmigrate.errors import StoreConnectionError

from .domain import CREDENTIAL_PROVIDER_ID, TargetCredentialAccount, TargetUser

logger = logging.getLogger("authmigrate.identity_access.stores_db")

SCHEMA_SQL = """
create table if not exists public."user" (
  id text primary key,
  name text not null,
  email text not null unique,
  email_verified boolean not null default false,
  image text null,
  locale text not null default 'en',
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now()
);
create table if not exists public.account (
  id text primary key,
  account_id text not null,
  provider_id text not null,
  user_id text not null references public."user"(id) on delete cascade,
  password text null,
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now()
);
"""


class TargetStore:
    """Target-store operations used by the migration writer and the verifier."""

    def __init__(self, conn: "psycopg.Connection") -> None:
        self._conn = conn

    @classmethod
    def connect(cls, dsn: str) -> "TargetStore":
        try:
            conn = psycopg.connect(dsn, autocommit=True)
        except psycopg.Error as exc:
            raise StoreConnectionError("target", str(exc)) from exc
        return cls(conn)

    def ensure_schema(self) -> None:
        """Create the user/account tables when missing (idempotent)."""
        with self._conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)

    def find_user_id_by_email(self, email: str) -> str | None:
        with self._conn.cursor() as cur:
            cur.execute('select id from public."user" where email = %s', (email,))
            row = cur.fetchone()
        return str(row[0]) if row else None

    def create_user(self, user: TargetUser, account: Optional[TargetCredentialAccount] = None) -> None:
        """Insert the user and, when given, its password credential atomically."""
        with self._conn.transaction():
            with self._conn.cursor() as cur:
                cur.execute(
                    """
                    insert into public."user"
                        (id, name, email, email_verified, image, locale, created_at, updated_at)
                    values (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user.id,
                        user.name,
                        user.email,
                        user.email_verified,
                        user.image,
                        user.locale,
                        user.created_at,
                        user.updated_at,
                    ),
                )
                if account is not None:
                    cur.execute(
                        """
                        insert into public.account
                            (id, account_id, provider_id, user_id, password, created_at, updated_at)
                        values (%s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            account.id,
                            account.account_id,
                            account.provider_id,
                            account.user_id,
                            account.password,
                            account.created_at,
                            account.updated_at,
                        ),
                    )

    def count_users(self) -> int:
        with self._conn.cursor() as cur:
            cur.execute('select count(*) from public."user"')
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def count_accounts(self) -> int:
        with self._conn.cursor() as cur:
            cur.execute("select count(*) from public.account")
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def find_password_credential(self, email: str) -> tuple[TargetUser, str | None] | None:
        """Return the user and its stored password hash (None without a credential)."""
        with self._conn.cursor() as cur:
            cur.execute(
                """
                select u.id, u.email, u.name, u.email_verified, u.locale, u.image,
                       u.created_at, u.updated_at, a.password
                from public."user" u
                left join public.account a
                  on a.user_id = u.id and a.provider_id = %s
                where u.email = %s
                """,
                (CREDENTIAL_PROVIDER_ID, email),
            )
            row = cur.fetchone()
        if not row:
            return None
        user = TargetUser(
            id=row[0],
            email=row[1],
            name=row[2],
            email_verified=bool(row[3]),
            locale=row[4],
            image=row[5],
            created_at=row[6],
            updated_at=row[7],
        )
        return user, row[8]

    def close(self) -> None:
        if not self._conn.closed:
            self._conn.close()


__all__ = ["TargetStore", "SCHEMA_SQL"]
