"""Per-backend driver handles behind one async interface."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, Sequence, runtime_checkable
from urllib.parse import parse_qs, unquote, urlencode, urlsplit, urlunsplit

import asyncpg
import httpx
import pymysql
from pymysql.constants import FIELD_TYPE

from .errors import UnsupportedBackendError
from .models import BackendKind, DialTarget
from .results import CellValue, IntValue, to_cell_value

LOG = logging.getLogger(__name__)

FETCH_BATCH = 500

ValueAdapter = Callable[[object], CellValue]


@dataclass(frozen=True, slots=True)
class PoolLimits:
    """Conservative pool sizing for an interactive client."""

    max_open: int = 5
    max_idle: int = 2
    max_lifetime: float = 300.0


@dataclass(slots=True)
class RowStream:
    """Column names plus an async iterator over raw driver rows."""

    columns: tuple[str, ...]
    rows: AsyncIterator[Sequence[object]]
    adapters: tuple[ValueAdapter, ...] | None = None
    _closer: Callable[[], Awaitable[None]] | None = field(default=None, repr=False)

    def adapter_for(self, index: int) -> ValueAdapter:
        if self.adapters is not None and index < len(self.adapters):
            return self.adapters[index]
        return to_cell_value

    async def aclose(self) -> None:
        closer, self._closer = self._closer, None
        if closer is not None:
            await closer()


@runtime_checkable
class DriverHandle(Protocol):
    """Interface every backend handle implements."""

    kind: BackendKind

    async def ping(self) -> None:
        """Round-trip a trivial statement; raise on failure."""

    async def fetch(self, sql: str) -> RowStream:
        """Run a row-returning statement."""

    async def execute(self, sql: str) -> int:
        """Run a statement and return the affected row count."""

    async def close(self) -> None:
        """Release the handle; safe to call twice."""


async def _empty_rows() -> AsyncIterator[Sequence[object]]:
    return
    yield  # pragma: no cover


async def _list_rows(rows: Sequence[Sequence[object]]) -> AsyncIterator[Sequence[object]]:
    for row in rows:
        yield row


async def _batched_rows(fetch_batch: Callable[[], list[Any]]) -> AsyncIterator[Sequence[object]]:
    while True:
        batch = await asyncio.to_thread(fetch_batch)
        if not batch:
            return
        for row in batch:
            yield row


class AsyncpgDriver:
    """PostgreSQL handle backed by a small asyncpg pool."""

    kind = BackendKind.POSTGRES

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool
        self._closed = False

    @classmethod
    async def open(cls, target: DialTarget, *, limits: PoolLimits, timeout: float) -> AsyncpgDriver:
        dsn, options = _split_pg_options(target.dsn)
        pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=1,
            max_size=limits.max_open,
            max_inactive_connection_lifetime=limits.max_lifetime,
            timeout=options.get("connect_timeout", timeout),
            command_timeout=options.get("command_timeout"),
        )
        return cls(pool)

    async def ping(self) -> None:
        await self._pool.fetchval("SELECT 1")

    async def fetch(self, sql: str) -> RowStream:
        async with self._pool.acquire() as conn:
            statement = await conn.prepare(sql)
            columns = tuple(attr.name for attr in statement.get_attributes())
            records = await statement.fetch()
        return RowStream(columns=columns, rows=_list_rows([tuple(record) for record in records]))

    async def execute(self, sql: str) -> int:
        status = await self._pool.execute(sql)
        return _affected_from_status(status)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pool.close()


def _split_pg_options(dsn: str) -> tuple[str, dict[str, float]]:
    """Pull client-side timeouts out of the dial string; asyncpg takes them as kwargs."""

    parts = urlsplit(dsn)
    query = parse_qs(parts.query)
    options: dict[str, float] = {}
    for key in ("connect_timeout", "command_timeout"):
        values = query.pop(key, None)
        if values:
            options[key] = float(values[0])
    cleaned = urlunsplit(parts._replace(query=urlencode(query, doseq=True)))
    return cleaned, options


def _affected_from_status(status: str) -> int:
    """`INSERT 0 3` / `UPDATE 2` / `CREATE TABLE` -> trailing count or 0."""

    tail = status.rsplit(" ", 1)[-1] if status else ""
    return int(tail) if tail.isdigit() else 0


class PyMySQLDriver:
    """MySQL handle; the blocking client runs on worker threads."""

    kind = BackendKind.MYSQL

    def __init__(self, conn: pymysql.connections.Connection) -> None:
        self._conn = conn
        self._closed = False

    @classmethod
    async def open(cls, target: DialTarget, *, limits: PoolLimits, timeout: float) -> PyMySQLDriver:
        kwargs = _mysql_connect_kwargs(target.dsn, default_timeout=timeout)
        conn = await asyncio.to_thread(pymysql.connect, **kwargs)
        return cls(conn)

    async def ping(self) -> None:
        await asyncio.to_thread(self._conn.ping, reconnect=False)

    async def fetch(self, sql: str) -> RowStream:
        cursor = self._conn.cursor()
        try:
            await asyncio.to_thread(cursor.execute, sql)
        except Exception:
            cursor.close()
            raise
        description = cursor.description or ()
        columns = tuple(str(col[0]) for col in description)
        adapters = tuple(_mysql_adapter(col[1]) for col in description)

        async def _close() -> None:
            await asyncio.to_thread(cursor.close)

        rows = _batched_rows(lambda: list(cursor.fetchmany(FETCH_BATCH))) if description else _empty_rows()
        return RowStream(columns=columns, rows=rows, adapters=adapters, _closer=_close)

    async def execute(self, sql: str) -> int:
        def _run() -> int:
            with self._conn.cursor() as cursor:
                affected = cursor.execute(sql)
            return max(int(affected or 0), 0)

        return await asyncio.to_thread(_run)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await asyncio.to_thread(self._conn.close)
        except pymysql.err.Error:
            LOG.debug("MySQL connection already closed")


def _mysql_connect_kwargs(dsn: str, *, default_timeout: float) -> dict[str, object]:
    parts = urlsplit(dsn)
    query = {key: values[0] for key, values in parse_qs(parts.query).items()}
    kwargs: dict[str, object] = {
        "host": parts.hostname or "localhost",
        "port": parts.port or 3306,
        "user": unquote(parts.username or ""),
        "password": unquote(parts.password or ""),
        "database": unquote(parts.path.lstrip("/")) or None,
        "charset": "utf8mb4",
        "autocommit": True,
        "connect_timeout": int(float(query.get("connect_timeout", default_timeout))),
    }
    for key in ("read_timeout", "write_timeout"):
        if key in query:
            kwargs[key] = int(float(query[key]))
    ssl_mode = query.get("ssl_mode", "disabled").lower()
    if ssl_mode in ("required", "preferred", "require"):
        kwargs["ssl"] = {"check_hostname": False, "verify_mode": "none"}
    elif ssl_mode.startswith("verify"):
        kwargs["ssl"] = {"check_hostname": ssl_mode == "verify_identity"}
    return kwargs


def _mysql_bit(raw: object) -> CellValue:
    if isinstance(raw, (bytes, bytearray)):
        return IntValue(int.from_bytes(raw, "big"))
    return to_cell_value(raw)


def _mysql_adapter(type_code: int) -> ValueAdapter:
    if type_code == FIELD_TYPE.BIT:
        return _mysql_bit
    return to_cell_value


class SQLiteDriver:
    """Embedded-file handle; sqlite3 calls run on worker threads."""

    kind = BackendKind.SQLITE

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._closed = False

    @classmethod
    async def open(cls, target: DialTarget, *, limits: PoolLimits, timeout: float) -> SQLiteDriver:
        conn = await asyncio.to_thread(
            sqlite3.connect,
            target.dsn,
            timeout=timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        return cls(conn)

    async def ping(self) -> None:
        await asyncio.to_thread(self._conn.execute, "SELECT 1")

    async def fetch(self, sql: str) -> RowStream:
        cursor = await asyncio.to_thread(self._conn.execute, sql)
        description = cursor.description or ()
        columns = tuple(str(col[0]) for col in description)

        async def _close() -> None:
            await asyncio.to_thread(cursor.close)

        rows = _batched_rows(lambda: cursor.fetchmany(FETCH_BATCH)) if description else _empty_rows()
        return RowStream(columns=columns, rows=rows, _closer=_close)

    async def execute(self, sql: str) -> int:
        def _run() -> int:
            cursor = self._conn.execute(sql)
            try:
                return max(cursor.rowcount, 0)
            finally:
                cursor.close()

        return await asyncio.to_thread(_run)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self._conn.close)


class D1Error(RuntimeError):
    """Raised when the D1 HTTP API reports a failure."""


class D1Driver:
    """Cloudflare D1 handle speaking the HTTP query API through httpx."""

    kind = BackendKind.D1

    def __init__(self, client: httpx.AsyncClient, endpoint: str, token: str) -> None:
        self._client = client
        self._endpoint = endpoint
        self._token = token
        self._closed = False

    @classmethod
    async def open(cls, target: DialTarget, *, limits: PoolLimits, timeout: float) -> D1Driver:
        parts = urlsplit(target.dsn)
        token = (parse_qs(parts.query).get("token") or [""])[0]
        endpoint = urlunsplit(parts._replace(query=""))
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(30.0, connect=timeout),
            limits=httpx.Limits(
                max_connections=limits.max_open,
                max_keepalive_connections=limits.max_idle,
                keepalive_expiry=limits.max_lifetime,
            ),
        )
        return cls(client, endpoint, token)

    async def ping(self) -> None:
        await self._query("SELECT 1")

    async def fetch(self, sql: str) -> RowStream:
        result = await self._query(sql)
        payload = result.get("results") or {}
        columns = tuple(str(name) for name in payload.get("columns") or ())
        rows = [tuple(row) for row in payload.get("rows") or ()]
        return RowStream(columns=columns, rows=_list_rows(rows))

    async def execute(self, sql: str) -> int:
        result = await self._query(sql)
        meta = result.get("meta") or {}
        return int(meta.get("changes") or 0)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def _query(self, sql: str) -> dict[str, Any]:
        # The raw endpoint keeps column order, unlike /query which returns objects.
        url = self._endpoint.removesuffix("/query") + "/raw"
        response = await self._client.post(
            url,
            json={"sql": sql},
            headers={"Authorization": f"Bearer {self._token}"},
        )
        try:
            body = response.json()
        except ValueError:
            response.raise_for_status()
            raise D1Error(f"Unexpected D1 response ({response.status_code})") from None
        if not body.get("success", False):
            errors = body.get("errors") or [{"message": f"HTTP {response.status_code}"}]
            raise D1Error("; ".join(str(error.get("message", error)) for error in errors))
        results = body.get("result") or [{}]
        return results[0]


_DRIVERS: dict[str, Any] = {
    "asyncpg": AsyncpgDriver,
    "pymysql": PyMySQLDriver,
    "sqlite3": SQLiteDriver,
    "d1": D1Driver,
}


async def open_driver(
    target: DialTarget,
    *,
    limits: PoolLimits | None = None,
    timeout: float = 5.0,
) -> DriverHandle:
    """Open (but do not verify) a handle for the resolved target."""

    factory = _DRIVERS.get(target.driver)
    if factory is None:
        raise UnsupportedBackendError(f"No driver registered for {target.driver!r}")
    LOG.debug("Opening driver", extra={"driver": target.driver, "backend": target.kind.value})
    return await factory.open(target, limits=limits or PoolLimits(), timeout=timeout)


__all__ = [
    "AsyncpgDriver",
    "D1Driver",
    "D1Error",
    "DriverHandle",
    "PoolLimits",
    "PyMySQLDriver",
    "RowStream",
    "SQLiteDriver",
    "open_driver",
]
