"""Tests for query classification and the executor."""

from __future__ import annotations

import asyncio
from typing import Sequence

import pytest

from dbterm.drivers import RowStream
from dbterm.errors import ConnectionLostError, ErrorKind, QueryExecutionError, QueryTimeoutError
from dbterm.models import BackendKind
from dbterm.query import (
    QueryExecutor,
    ReadResult,
    WriteResult,
    first_keyword,
    is_read_query,
    preview_query,
    quote_identifier,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


async def _rows(rows: Sequence[Sequence[object]]):  # type: ignore[no-untyped-def]
    for row in rows:
        yield row


class _FakeHandle:
    kind = BackendKind.SQLITE

    def __init__(
        self,
        *,
        columns: tuple[str, ...] = ("id", "email"),
        rows: Sequence[Sequence[object]] = ((1, "alice@example.com"), (2, None)),
        affected: int = 1,
        error: Exception | None = None,
        ping_error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.columns = columns
        self.rows = rows
        self.affected = affected
        self.error = error
        self.ping_error = ping_error
        self.delay = delay
        self.fetched: list[str] = []
        self.executed: list[str] = []

    async def ping(self) -> None:
        if self.ping_error:
            raise self.ping_error

    async def fetch(self, sql: str) -> RowStream:
        self.fetched.append(sql)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return RowStream(columns=self.columns, rows=_rows(self.rows))

    async def execute(self, sql: str) -> int:
        self.executed.append(sql)
        if self.error:
            raise self.error
        return self.affected

    async def close(self) -> None:
        return None


@pytest.mark.parametrize(
    ("sql", "keyword"),
    [
        ("select 1", "SELECT"),
        ("  -- leading comment\n  SHOW TABLES", "SHOW"),
        ("/* block */ with t as (select 1) select * from t", "WITH"),
        ("(SELECT 1) UNION (SELECT 2)", "SELECT"),
        ("PRAGMA table_info(users)", "PRAGMA"),
        ("", ""),
        ("'unterminated", ""),
    ],
)
def test_first_keyword(sql: str, keyword: str) -> None:
    assert first_keyword(sql) == keyword


@pytest.mark.parametrize(
    ("sql", "is_read"),
    [
        ("SELECT * FROM users", True),
        ("describe users", True),
        ("EXPLAIN SELECT 1", True),
        ("VALUES (1), (2)", True),
        ("INSERT INTO users VALUES (1)", False),
        ("update users set name = 'x'", False),
        ("CREATE TABLE t (id int)", False),
    ],
)
def test_is_read_query(sql: str, is_read: bool) -> None:
    assert is_read_query(sql) is is_read


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT 'O\\'Brien'",
        "SELECT * FROM users WHERE name = 'O\\'Brien'",
        "-- it's a comment\nSELECT 'a\\'b'",
        "/* don't */ SHOW TABLES LIKE 'x\\'y'",
    ],
)
def test_mysql_backslash_escapes_still_classify_as_reads(sql: str) -> None:
    assert is_read_query(sql, BackendKind.MYSQL) is True
    assert is_read_query(sql) is True


def test_only_the_head_of_the_statement_decides() -> None:
    assert first_keyword("UPDATE t SET name = 'O\\'Brien'", BackendKind.MYSQL) == "UPDATE"
    assert first_keyword("SELECT 'it''s'", BackendKind.POSTGRES) == "SELECT"
    assert first_keyword("/* unterminated", BackendKind.SQLITE) == ""


@pytest.mark.anyio
async def test_executor_fetches_mysql_reads_with_escaped_quotes() -> None:
    handle = _FakeHandle(columns=("name",), rows=[("O'Brien",)])
    handle.kind = BackendKind.MYSQL

    result = await QueryExecutor().run(handle, "SELECT name FROM users WHERE name = 'O\\'Brien'")

    assert isinstance(result, ReadResult)
    assert handle.executed == []
    assert result.grid.texts() == (("O'Brien",),)


def test_quote_identifier_per_backend() -> None:
    assert quote_identifier(BackendKind.MYSQL, "we`ird") == "`we``ird`"
    assert quote_identifier(BackendKind.POSTGRES, 'we"ird') == '"we""ird"'


def test_preview_query_quotes_each_part() -> None:
    assert preview_query(BackendKind.POSTGRES, "sales.orders", 100) == 'SELECT * FROM "sales"."orders" LIMIT 100'
    assert preview_query(BackendKind.MYSQL, "orders", None) == "SELECT * FROM `orders`"


@pytest.mark.anyio
async def test_executor_reads_rows() -> None:
    handle = _FakeHandle()

    result = await QueryExecutor().run(handle, "  SELECT id, email FROM users ")

    assert isinstance(result, ReadResult)
    assert result.grid.columns == ("id", "email")
    assert result.grid.texts() == (("1", "alice@example.com"), ("2", "NULL"))
    assert result.sql == "SELECT id, email FROM users"
    assert result.status.startswith("2 rows in ")


@pytest.mark.anyio
async def test_executor_runs_writes() -> None:
    handle = _FakeHandle(affected=3)

    result = await QueryExecutor().run(handle, "DELETE FROM users")

    assert isinstance(result, WriteResult)
    assert result.rows_affected == 3
    assert handle.executed == ["DELETE FROM users"]
    assert handle.fetched == []


@pytest.mark.anyio
async def test_executor_respects_limit() -> None:
    handle = _FakeHandle(columns=("n",), rows=[(i,) for i in range(10)])

    result = await QueryExecutor().run(handle, "SELECT n FROM t", limit=4)

    assert isinstance(result, ReadResult)
    assert result.row_count == 4
    assert result.grid.truncated is True


@pytest.mark.anyio
async def test_executor_rejects_empty_sql() -> None:
    handle = _FakeHandle()

    with pytest.raises(QueryExecutionError, match="Provide SQL"):
        await QueryExecutor().run(handle, "   ")

    assert handle.fetched == [] and handle.executed == []


@pytest.mark.anyio
async def test_rerunning_a_read_is_idempotent() -> None:
    handle = _FakeHandle()
    executor = QueryExecutor()

    first = await executor.run(handle, "SELECT * FROM users")
    second = await executor.run(handle, "SELECT * FROM users")

    assert isinstance(first, ReadResult) and isinstance(second, ReadResult)
    assert first.grid == second.grid


@pytest.mark.anyio
async def test_driver_errors_are_classified_and_redacted() -> None:
    handle = _FakeHandle(error=RuntimeError('syntax error at or near "SELEC" for hunter2'))
    executor = QueryExecutor(secrets=("hunter2",))

    with pytest.raises(QueryExecutionError) as excinfo:
        await executor.run(handle, "SELEC 1")

    error = excinfo.value
    assert error.kind is ErrorKind.SYNTAX
    assert "hunter2" not in str(error)
    assert error.hint == "Hint: Check your SQL syntax."
    assert isinstance(error.__cause__, RuntimeError)


@pytest.mark.anyio
async def test_queries_time_out_within_deadline() -> None:
    handle = _FakeHandle(delay=5.0)
    executor = QueryExecutor(timeout=0.05)

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(QueryTimeoutError) as excinfo:
        await executor.run(handle, "SELECT pg_sleep(5)")

    assert loop.time() - started < 1.0
    assert excinfo.value.kind is ErrorKind.TIMEOUT


@pytest.mark.anyio
async def test_failed_ping_reports_connection_lost() -> None:
    handle = _FakeHandle(ping_error=OSError("broken pipe, password=hunter2"))
    executor = QueryExecutor().with_secrets(("hunter2",))

    with pytest.raises(ConnectionLostError) as excinfo:
        await executor.run(handle, "SELECT 1")

    assert "hunter2" not in str(excinfo.value)
    assert handle.fetched == []
