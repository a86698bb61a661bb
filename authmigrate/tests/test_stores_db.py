"""
TargetStore SQL behaviour against a recording fake connection.
"""
from __future__ import annotations

from datetime import datetime, timezone

import psycopg
import pytest

from authmigrate.errors import StoreConnectionError
from authmigrate.identity_access import stores_db
from authmigrate.identity_access.domain import TargetCredentialAccount, TargetUser
from authmigrate.identity_access.stores_db import TargetStore
from authmigrate.tests.utils.fake_stores import FakeConnection

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _user() -> TargetUser:
    return TargetUser(
        id="migrated_abc",
        email="b@x.com",
        name="b",
        email_verified=True,
        locale="zh",
        image=None,
        created_at=NOW,
        updated_at=NOW,
    )


def _account() -> TargetCredentialAccount:
    return TargetCredentialAccount(
        id="acc-1",
        user_id="migrated_abc",
        account_id="b@x.com",
        password="legacy-md5:s1:7b307b8d878cc3d0d61a5df0bf453bf5",
        created_at=NOW,
        updated_at=NOW,
    )


def test_find_user_id_by_email_returns_id() -> None:
    conn = FakeConnection(rows=[("migrated_abc",)])
    store = TargetStore(conn)  # type: ignore[arg-type]

    assert store.find_user_id_by_email("b@x.com") == "migrated_abc"
    sql, params = conn.executed[0]
    assert sql.startswith('select id from public."user" where email = %s')
    assert params == ("b@x.com",)


def test_find_user_id_by_email_returns_none_when_absent() -> None:
    store = TargetStore(FakeConnection())  # type: ignore[arg-type]
    assert store.find_user_id_by_email("nobody@x.com") is None


def test_create_user_inserts_user_and_account_in_one_transaction() -> None:
    conn = FakeConnection()
    TargetStore(conn).create_user(_user(), _account())  # type: ignore[arg-type]

    assert conn.transactions == ["begin", "commit"]
    statements = [sql for sql, _ in conn.executed]
    assert statements[0].startswith('insert into public."user"')
    assert statements[1].startswith("insert into public.account")
    account_params = conn.executed[1][1]
    assert account_params[2] == "credential"
    assert account_params[3] == "migrated_abc"
    assert account_params[4].startswith("legacy-md5:")


def test_create_user_without_account_inserts_only_user() -> None:
    conn = FakeConnection()
    TargetStore(conn).create_user(_user())  # type: ignore[arg-type]
    assert len(conn.executed) == 1


def test_failed_account_insert_rolls_back_user() -> None:
    conn = FakeConnection()
    conn.fail_on = "insert into public.account"
    with pytest.raises(RuntimeError):
        TargetStore(conn).create_user(_user(), _account())  # type: ignore[arg-type]
    assert conn.transactions == ["begin", "rollback"]


def test_find_password_credential_maps_row() -> None:
    row = ("migrated_abc", "b@x.com", "b", True, "zh", None, NOW, NOW, "legacy-md5:s1:d")
    conn = FakeConnection(rows=[row])
    found = TargetStore(conn).find_password_credential("b@x.com")  # type: ignore[arg-type]
    assert found is not None
    user, password = found
    assert user == _user()
    assert password == "legacy-md5:s1:d"
    assert conn.executed[0][1] == ("credential", "b@x.com")


def test_counts_and_schema() -> None:
    conn = FakeConnection(rows=[(3,), (1,)])
    store = TargetStore(conn)  # type: ignore[arg-type]
    assert store.count_users() == 3
    assert store.count_accounts() == 1
    store.ensure_schema()
    assert "create table if not exists public.account" in conn.executed[-1][0]


def test_close_is_idempotent() -> None:
    conn = FakeConnection()
    store = TargetStore(conn)  # type: ignore[arg-type]
    store.close()
    store.close()
    assert conn.closed is True


def test_connect_failure_raises_store_connection_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_connect(dsn: str, **kwargs):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(stores_db.psycopg, "connect", fake_connect)

    with pytest.raises(StoreConnectionError) as excinfo:
        TargetStore.connect("postgresql://fake")
    assert excinfo.value.store == "target"
    assert "postgresql://fake" not in str(excinfo.value)
