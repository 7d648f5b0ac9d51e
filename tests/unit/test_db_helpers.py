from contextlib import asynccontextmanager

import psycopg
import pytest

from app.db import helpers
from app.db.helpers import DatabaseError, db_transaction, execute_many, execute_query, fetch_val, with_db_retry


class FakeCursor:
    def __init__(self, rows=None, rowcount=0, error=None):
        self.rows = rows or []
        self.rowcount = rowcount
        self.error = error
        self.executed = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, query, params=()):
        if self.error:
            raise self.error
        self.executed.append((query, params))

    async def fetchone(self):
        return self.rows[0] if self.rows else None

    async def executemany(self, query, params_seq):
        self.executed.extend((query, params) for params in params_seq)


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor

    def cursor(self):
        return self._cursor


@pytest.mark.asyncio
async def test_fetch_val_on_given_connection():
    conn = FakeConnection(FakeCursor(rows=[{"attempts": 3}]))

    assert await fetch_val("SELECT attempts FROM x", (1,), connection=conn) == 3


@pytest.mark.asyncio
async def test_fetch_val_without_rows():
    assert await fetch_val("SELECT 1", connection=FakeConnection(FakeCursor())) is None


@pytest.mark.asyncio
async def test_execute_query_borrows_pooled_connection(monkeypatch):
    cursor = FakeCursor(rowcount=2)

    @asynccontextmanager
    async def borrowed():
        yield FakeConnection(cursor)

    async def fake_get_db_connection():
        return borrowed()

    monkeypatch.setattr(helpers, "get_db_connection", fake_get_db_connection)

    assert await execute_query("UPDATE todos SET status = %s", ("done",)) == 2
    assert cursor.executed == [("UPDATE todos SET status = %s", ("done",))]


@pytest.mark.asyncio
async def test_psycopg_errors_become_database_error():
    conn = FakeConnection(FakeCursor(error=psycopg.errors.UniqueViolation("duplicate key")))

    with pytest.raises(DatabaseError) as exc:
        await execute_query("INSERT INTO events ...", connection=conn)

    assert exc.value.operation == "execute"
    assert isinstance(exc.value.__cause__, psycopg.errors.UniqueViolation)


@pytest.mark.asyncio
async def test_retry_only_on_operational_errors(monkeypatch):
    monkeypatch.setattr(helpers.asyncio, "sleep", _no_sleep)
    calls = {"n": 0}

    @with_db_retry(max_retries=2, base_delay=0)
    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise DatabaseError("lost connection") from psycopg.OperationalError("server closed")
        return "ok"

    assert await flaky() == "ok"
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried():
    calls = {"n": 0}

    @with_db_retry(max_retries=3)
    async def broken():
        calls["n"] += 1
        raise DatabaseError("bad query") from psycopg.ProgrammingError("syntax error")

    with pytest.raises(DatabaseError):
        await broken()

    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_execute_many_joins_given_connection(monkeypatch):
    async def no_transaction():
        raise AssertionError("execute_many opened its own transaction")

    monkeypatch.setattr(helpers, "get_db_transaction", no_transaction)
    cursor = FakeCursor()

    await execute_many("INSERT INTO t VALUES (%s)", [(1,), (2,)], connection=FakeConnection(cursor))

    assert cursor.executed == [("INSERT INTO t VALUES (%s)", (1,)), ("INSERT INTO t VALUES (%s)", (2,))]


@pytest.mark.asyncio
async def test_failed_commit_becomes_database_error(monkeypatch):
    @asynccontextmanager
    async def failing_commit():
        yield FakeConnection(FakeCursor())
        raise psycopg.errors.SerializationFailure("could not serialize access")

    async def fake_get_db_transaction():
        return failing_commit()

    monkeypatch.setattr(helpers, "get_db_transaction", fake_get_db_transaction)

    with pytest.raises(DatabaseError) as exc:
        async with db_transaction():
            pass

    assert exc.value.operation == "transaction"


@pytest.mark.asyncio
async def test_transaction_passes_database_errors_through(monkeypatch):
    @asynccontextmanager
    async def transaction():
        yield FakeConnection(FakeCursor())

    async def fake_get_db_transaction():
        return transaction()

    monkeypatch.setattr(helpers, "get_db_transaction", fake_get_db_transaction)

    with pytest.raises(DatabaseError) as exc:
        async with db_transaction():
            raise DatabaseError("insert failed", operation="fetch_one")

    assert exc.value.operation == "fetch_one"


async def _no_sleep(_delay):
    return None
