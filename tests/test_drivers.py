"""Tests for the per-backend driver handles and table listing."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import httpx
import pytest

from dbterm.drivers import (
    AsyncpgDriver,
    D1Driver,
    D1Error,
    PoolLimits,
    SQLiteDriver,
    _affected_from_status,
    _mysql_bit,
    _mysql_connect_kwargs,
    _split_pg_options,
    open_driver,
)
from dbterm.errors import UnsupportedBackendError
from dbterm.models import BackendKind, ConnectionConfig, DialTarget
from dbterm.query import QueryExecutor, ReadResult, WriteResult
from dbterm.resolver import resolve
from dbterm.results import IntValue, build_grid
from dbterm.schema import list_tables, tables_query


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def sample_db(tmp_path: Path) -> Path:
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT, score REAL, avatar BLOB);
        CREATE TABLE orders (id INTEGER PRIMARY KEY, user_id INTEGER);
        INSERT INTO users VALUES (1, 'alice@example.com', 9.5, X'00FF');
        INSERT INTO users VALUES (2, NULL, NULL, NULL);
        """
    )
    conn.commit()
    conn.close()
    return path


async def _open_sqlite(path: Path) -> SQLiteDriver:
    cfg = ConnectionConfig(name="Shop", kind=BackendKind.SQLITE, file_path=str(path))
    handle = await open_driver(resolve(cfg))
    assert isinstance(handle, SQLiteDriver)
    return handle


@pytest.mark.anyio
async def test_sqlite_lists_user_tables_sorted(sample_db: Path) -> None:
    handle = await _open_sqlite(sample_db)
    try:
        assert await list_tables(handle, BackendKind.SQLITE) == ("orders", "users")
    finally:
        await handle.close()


@pytest.mark.anyio
async def test_sqlite_end_to_end_read_and_write(sample_db: Path) -> None:
    handle = await _open_sqlite(sample_db)
    executor = QueryExecutor()
    try:
        read = await executor.run(handle, "SELECT id, email, score, avatar FROM users ORDER BY id")
        write = await executor.run(handle, "UPDATE users SET score = 1 WHERE score IS NULL")
    finally:
        await handle.close()

    assert isinstance(read, ReadResult)
    assert read.grid.columns == ("id", "email", "score", "avatar")
    assert read.grid.texts() == (
        ("1", "alice@example.com", "9.5", "0x00ff"),
        ("2", "NULL", "NULL", "NULL"),
    )
    assert isinstance(write, WriteResult)
    assert write.rows_affected == 1


@pytest.mark.anyio
async def test_sqlite_close_is_idempotent(sample_db: Path) -> None:
    handle = await _open_sqlite(sample_db)

    await handle.close()
    await handle.close()


@pytest.mark.anyio
async def test_sqlite_statement_without_rows_yields_empty_stream(sample_db: Path) -> None:
    handle = await _open_sqlite(sample_db)
    try:
        stream = await handle.fetch("CREATE TABLE scratch (id INTEGER)")
        grid = await build_grid(stream)
    finally:
        await handle.close()

    assert grid.columns == ()
    assert grid.rows == ()


def test_table_queries_exclude_internal_tables() -> None:
    assert "sqlite_%" in tables_query(BackendKind.SQLITE)
    assert "_cf_%" in tables_query(BackendKind.D1)
    assert tables_query(BackendKind.MYSQL) == "SHOW TABLES"
    assert "information_schema.tables" in tables_query(BackendKind.POSTGRES)


@pytest.mark.anyio
async def test_open_driver_rejects_unknown_driver() -> None:
    target = DialTarget(kind=BackendKind.SQLITE, driver="nope", dsn="x")

    with pytest.raises(UnsupportedBackendError):
        await open_driver(target)


def test_split_pg_options_moves_timeouts_out_of_dsn() -> None:
    dsn, options = _split_pg_options("postgresql://u:p@h:5432/d?sslmode=disable&connect_timeout=5&command_timeout=30")

    assert dsn == "postgresql://u:p@h:5432/d?sslmode=disable"
    assert options == {"connect_timeout": 5.0, "command_timeout": 30.0}


@pytest.mark.parametrize(
    ("status", "count"),
    [("INSERT 0 3", 3), ("UPDATE 2", 2), ("CREATE TABLE", 0), ("", 0)],
)
def test_affected_from_status(status: str, count: int) -> None:
    assert _affected_from_status(status) == count


class _FakePool:
    def __init__(self) -> None:
        self.closed = 0

    async def fetchval(self, sql: str) -> int:
        return 1

    async def execute(self, sql: str) -> str:
        return "DELETE 4"

    async def close(self) -> None:
        self.closed += 1


@pytest.mark.anyio
async def test_asyncpg_driver_uses_a_small_pool(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    pool = _FakePool()

    async def _create_pool(**kwargs: Any) -> _FakePool:
        captured.update(kwargs)
        return pool

    monkeypatch.setattr("dbterm.drivers.asyncpg.create_pool", _create_pool)
    cfg = ConnectionConfig(name="pg", kind=BackendKind.POSTGRES, host="h", user="u", password="p", database="d")

    handle = await open_driver(resolve(cfg), limits=PoolLimits())
    await handle.ping()
    affected = await handle.execute("DELETE FROM t")
    await handle.close()
    await handle.close()

    assert isinstance(handle, AsyncpgDriver)
    assert captured["max_size"] == 5
    assert captured["max_inactive_connection_lifetime"] == 300.0
    assert captured["timeout"] == 5.0
    assert captured["command_timeout"] == 30.0
    assert "connect_timeout" not in captured["dsn"]
    assert affected == 4
    assert pool.closed == 1


def test_mysql_connect_kwargs_from_dial_string() -> None:
    cfg = ConnectionConfig(
        name="my",
        kind=BackendKind.MYSQL,
        host="db",
        user="root",
        password="p@ss",
        database="inv",
        ssl_mode="required",
    )

    kwargs = _mysql_connect_kwargs(resolve(cfg).dsn, default_timeout=5.0)

    assert kwargs["host"] == "db"
    assert kwargs["port"] == 3306
    assert kwargs["password"] == "p@ss"
    assert kwargs["database"] == "inv"
    assert kwargs["connect_timeout"] == 5
    assert kwargs["read_timeout"] == 30
    assert kwargs["write_timeout"] == 30
    assert kwargs["autocommit"] is True
    assert "ssl" in kwargs


def test_mysql_bit_columns_become_integers() -> None:
    assert _mysql_bit(b"\x01\x00") == IntValue(256)


def _d1_handler(requests: list[httpx.Request]):  # type: ignore[no-untyped-def]
    def _handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        sql = json.loads(request.content)["sql"]
        if sql.startswith("SELECT broken"):
            return httpx.Response(400, json={"success": False, "errors": [{"message": "no such table: broken"}]})
        if sql.startswith("SELECT"):
            result = {"results": {"columns": ["id", "name"], "rows": [[1, "a"], [2, None]]}, "meta": {}}
        else:
            result = {"results": {"columns": [], "rows": []}, "meta": {"changes": 2}}
        return httpx.Response(200, json={"success": True, "errors": [], "result": [result]})

    return _handle


@pytest.mark.anyio
async def test_d1_driver_speaks_raw_endpoint() -> None:
    requests: list[httpx.Request] = []
    client = httpx.AsyncClient(transport=httpx.MockTransport(_d1_handler(requests)))
    endpoint = "https://api.cloudflare.com/client/v4/accounts/a/d1/database/b/query"
    handle = D1Driver(client, endpoint, "tok")

    read = await QueryExecutor().run(handle, "SELECT id, name FROM t")
    write = await QueryExecutor().run(handle, "DELETE FROM t")
    with pytest.raises(D1Error, match="no such table"):
        await handle.fetch("SELECT broken")
    await handle.close()

    assert isinstance(read, ReadResult)
    assert read.grid.texts() == (("1", "a"), ("2", "NULL"))
    assert isinstance(write, WriteResult) and write.rows_affected == 2
    assert requests[0].url.path.endswith("/d1/database/b/raw")
    assert requests[0].headers["Authorization"] == "Bearer tok"
