"""Query execution services for the results pane and reloads."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Iterator, Union

from sqlglot.errors import TokenError
from sqlglot.dialects.dialect import Dialect
from sqlglot.tokens import Token, TokenType

from .drivers import DriverHandle
from .errors import (
    ConnectionLostError,
    QueryExecutionError,
    QueryTimeoutError,
    WorkspaceError,
    classify_error,
    redact,
    truncate_sql,
)
from .models import BackendKind, ResultGrid
from .results import build_grid, format_duration

LOG = logging.getLogger(__name__)

QUERY_TIMEOUT = 30.0
PING_TIMEOUT = 5.0

READ_KEYWORDS = frozenset({"SELECT", "SHOW", "DESCRIBE", "DESC", "EXPLAIN", "PRAGMA", "WITH", "VALUES"})


@dataclass(frozen=True, slots=True)
class ReadResult:
    """Grid produced by a row-returning statement."""

    grid: ResultGrid
    elapsed: float
    sql: str

    @property
    def row_count(self) -> int:
        return self.grid.row_count

    @property
    def status(self) -> str:
        return f"{self.row_count} rows in {format_duration(self.elapsed)}"


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Affected-row count produced by a mutation."""

    rows_affected: int
    elapsed: float
    sql: str

    @property
    def status(self) -> str:
        return f"{self.rows_affected} row(s) affected in {format_duration(self.elapsed)}"


QueryResult = Union[ReadResult, WriteResult]


_DIALECTS = {
    BackendKind.POSTGRES: "postgres",
    BackendKind.MYSQL: "mysql",
    BackendKind.SQLITE: "sqlite",
    BackendKind.D1: "sqlite",
}

_QUOTES = "'\"`"


def first_keyword(sql: str, kind: BackendKind | None = None) -> str:
    """Upper-cased first keyword, ignoring comments and leading parentheses.

    Only the head of the statement matters: when a later literal does not
    tokenize, the text is cut before each quote in turn until a prefix does.
    """

    dialect = Dialect.get_or_raise(_DIALECTS.get(kind) if kind else None)
    for end in _prefix_ends(sql):
        try:
            tokens = dialect.tokenize(sql[:end])
        except TokenError:
            continue
        word = _leading_word(tokens)
        if word is not None:
            return word
        if end == len(sql):
            return ""
    return ""


def _prefix_ends(sql: str) -> Iterator[int]:
    yield len(sql)
    for pos, char in enumerate(sql):
        if char in _QUOTES:
            yield pos


def _leading_word(tokens: Iterable[Token]) -> str | None:
    for token in tokens:
        if token.token_type is TokenType.L_PAREN:
            continue
        word = token.text
        return word.upper() if word.replace("_", "").isalpha() else ""
    return None


def is_read_query(sql: str, kind: BackendKind | None = None) -> bool:
    """Heuristic read/write split on the first keyword."""

    return first_keyword(sql, kind) in READ_KEYWORDS


def quote_identifier(kind: BackendKind, name: str) -> str:
    if kind is BackendKind.MYSQL:
        return "`" + name.replace("`", "``") + "`"
    return '"' + name.replace('"', '""') + '"'


def preview_query(kind: BackendKind, table: str, limit: int | None) -> str:
    """`SELECT *` for a table, quoting each dotted part."""

    quoted = ".".join(quote_identifier(kind, part) for part in table.split("."))
    sql = f"SELECT * FROM {quoted}"
    if limit is not None:
        sql += f" LIMIT {int(limit)}"
    return sql


class QueryExecutor:
    """Classifies and runs SQL against a driver handle under deadlines."""

    def __init__(
        self,
        *,
        timeout: float = QUERY_TIMEOUT,
        ping_timeout: float = PING_TIMEOUT,
        secrets: Iterable[str] = (),
    ) -> None:
        self._timeout = timeout
        self._ping_timeout = ping_timeout
        self._secrets = tuple(secrets)

    @property
    def secrets(self) -> tuple[str, ...]:
        return self._secrets

    def with_secrets(self, secrets: Iterable[str]) -> QueryExecutor:
        return QueryExecutor(timeout=self._timeout, ping_timeout=self._ping_timeout, secrets=secrets)

    async def run(self, handle: DriverHandle, sql: str, *, limit: int | None = None) -> QueryResult:
        statement = sql.strip()
        if not statement:
            raise QueryExecutionError("Provide SQL to execute.")
        await self.ping(handle)
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._dispatch(handle, statement, limit), self._timeout)
        except asyncio.TimeoutError:
            LOG.warning("Query timed out", extra={"timeout": self._timeout, "sql": truncate_sql(statement)})
            raise QueryTimeoutError(
                f"Query exceeded the {self._timeout:g}s deadline.",
                hint="Hint: Narrow the query or add a LIMIT.",
            ) from None
        elapsed = time.perf_counter() - started
        if isinstance(result, ResultGrid):
            return ReadResult(grid=result, elapsed=elapsed, sql=statement)
        return WriteResult(rows_affected=result, elapsed=elapsed, sql=statement)

    async def ping(self, handle: DriverHandle) -> None:
        """Fail fast with ConnectionLostError instead of hanging on a stale handle."""

        try:
            await asyncio.wait_for(handle.ping(), self._ping_timeout)
        except asyncio.TimeoutError:
            raise ConnectionLostError(
                f"Connection lost: no response within {self._ping_timeout:g}s.",
                hint="Hint: Reconnect from the connection list.",
            ) from None
        except Exception as exc:
            raise ConnectionLostError(
                f"Connection lost: {redact(str(exc), self._secrets)}",
                hint="Hint: Reconnect from the connection list.",
            ) from exc

    async def _dispatch(self, handle: DriverHandle, sql: str, limit: int | None) -> ResultGrid | int:
        try:
            if is_read_query(sql, handle.kind):
                stream = await handle.fetch(sql)
                return await build_grid(stream, limit, sql=sql)
            return await handle.execute(sql)
        except WorkspaceError:
            raise
        except Exception as exc:
            message = redact(str(exc) or type(exc).__name__, self._secrets)
            kind, hint = classify_error(message)
            raise QueryExecutionError(message, kind=kind, hint=hint, sql=sql) from exc


__all__ = [
    "PING_TIMEOUT",
    "QUERY_TIMEOUT",
    "QueryExecutor",
    "QueryResult",
    "READ_KEYWORDS",
    "ReadResult",
    "WriteResult",
    "first_keyword",
    "is_read_query",
    "preview_query",
    "quote_identifier",
]
