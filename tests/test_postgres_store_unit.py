from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import pytest
from psycopg import errors

from vidtube.storage.errors import ConstraintViolation
from vidtube.storage.postgres import PostgresStore


class FakeCursor:
    def __init__(self, rows=None, rowcount=1):
        self._rows = rows or []
        self.rowcount = rowcount

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    """Returns scripted cursors in order and records every statement."""

    def __init__(self, script):
        self.script = list(script)
        self.statements = []

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        result = self.script.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @contextmanager
    def connection(self):
        yield self.conn


def _store(tmp_path: Path, script) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = FakePool(FakeConnection(script))
    return store


def _account_row(**overrides):
    now = datetime(2026, 1, 1)
    row = {
        "id": "acc-1",
        "username": "alice",
        "email": "alice@example.com",
        "full_name": "Alice",
        "password_hash": "hash",
        "avatar": "/media/a.png",
        "cover_image": None,
        "refresh_token": "tok",
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return row


def test_missing_tables_reported(tmp_path):
    store = _store(
        tmp_path,
        [FakeCursor([{"oid": "account"}]), FakeCursor([{"oid": None}]),
         FakeCursor([{"oid": "video"}]), FakeCursor([{"oid": None}])],
    )
    with pytest.raises(RuntimeError) as excinfo:
        store._verify_required_schema()
    assert "subscription" in str(excinfo.value)
    assert "watch_history" in str(excinfo.value)


def test_get_account_loads_watch_history(tmp_path):
    store = _store(
        tmp_path,
        [FakeCursor([_account_row()]), FakeCursor([{"video_id": "v1"}, {"video_id": "v2"}])],
    )
    account = store.get_account("acc-1")
    assert account.username == "alice"
    assert account.watch_history == ["v1", "v2"]


def test_unique_violation_maps_to_constraint(tmp_path):
    store = _store(tmp_path, [errors.UniqueViolation("duplicate key")])
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_account(
            username="alice", email="alice@example.com", full_name="Alice", password_hash="h"
        )
    assert isinstance(excinfo.value.__cause__, errors.UniqueViolation)


def test_unknown_channel_on_subscribe_keeps_cause(tmp_path):
    store = _store(tmp_path, [errors.ForeignKeyViolation("no such account")])
    with pytest.raises(ConstraintViolation) as excinfo:
        store.add_subscription("acc-1", "missing")
    assert excinfo.value.detail == {"subscriber_id": "acc-1", "channel_id": "missing"}
    assert isinstance(excinfo.value.__cause__, errors.ForeignKeyViolation)


def test_update_account_uses_allow_list(tmp_path):
    store = _store(tmp_path, [])
    with pytest.raises(ValueError):
        store.update_account("acc-1", refresh_token="x")


def test_update_account_missing_row(tmp_path):
    store = _store(tmp_path, [FakeCursor(rowcount=0)])
    assert store.update_account("acc-1", full_name="New") is None
    sql, params = store.pool.conn.statements[0]
    assert sql.startswith("UPDATE account SET full_name = %s, updated_at = now()")
    assert params == ("New", "acc-1")


def test_channel_profile_mapping(tmp_path):
    row = _account_row()
    row.update(subscribers_count=3, subscribed_to_count=1, is_subscribed=True)
    store = _store(tmp_path, [FakeCursor([row])])
    profile = store.get_channel_profile("alice", viewer_id="acc-2")
    assert profile.subscribers_count == 3
    assert profile.channels_subscribed_to_count == 1
    assert profile.is_subscribed is True
    _, params = store.pool.conn.statements[0]
    assert params == ("acc-2", "alice")


def test_set_refresh_token_reports_missing_account(tmp_path):
    store = _store(tmp_path, [FakeCursor(rowcount=0)])
    assert store.set_refresh_token("missing", None) is False
