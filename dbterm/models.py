"""Shared dataclasses used across the connection, query and view modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class BackendKind(str, Enum):
    """Relational engines a connection can target."""

    POSTGRES = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    D1 = "d1"

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]

    @property
    def is_file_based(self) -> bool:
        return self is BackendKind.SQLITE

    @property
    def is_http(self) -> bool:
        return self is BackendKind.D1

    @classmethod
    def parse(cls, value: str) -> BackendKind:
        """Accept enum values plus a few common aliases ("postgres", "sqlite3")."""

        key = value.strip().lower()
        key = _KIND_ALIASES.get(key, key)
        return cls(key)


_KIND_LABELS = {
    BackendKind.POSTGRES: "PostgreSQL",
    BackendKind.MYSQL: "MySQL",
    BackendKind.SQLITE: "SQLite",
    BackendKind.D1: "Cloudflare D1",
}

_KIND_ALIASES = {
    "postgres": "postgresql",
    "pg": "postgresql",
    "mariadb": "mysql",
    "sqlite3": "sqlite",
    "cloudflare-d1": "d1",
}


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Runtime representation of a saved connection."""

    name: str
    kind: BackendKind = BackendKind.POSTGRES
    host: str = ""
    port: int | None = None
    user: str = ""
    password: str = field(default="", repr=False)
    database: str = ""
    file_path: str = ""
    ssl_mode: str = ""
    account_id: str = ""
    database_id: str = ""
    auth_token: str = field(default="", repr=False)

    @property
    def secrets(self) -> tuple[str, ...]:
        """Values that must never show up in errors or logs."""

        return tuple(value for value in (self.password, self.auth_token) if value)

    def display_label(self) -> str:
        if self.kind is BackendKind.SQLITE:
            target = self.file_path
        elif self.kind is BackendKind.D1:
            target = self.database_id
        else:
            port = f":{self.port}" if self.port is not None else ""
            target = f"{self.user}@{self.host}{port}/{self.database}"
        return f"[{self.kind.value}] {self.name} ({target})"


class CellKind(str, Enum):
    """Semantic type of a rendered cell."""

    NULL = "null"
    TEXT = "text"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    BINARY = "binary"


@dataclass(frozen=True, slots=True)
class Cell:
    """Display text plus the untruncated value used for export."""

    text: str
    kind: CellKind = CellKind.TEXT
    value: str | None = None

    @property
    def full_text(self) -> str:
        return self.text if self.value is None else self.value


Row = tuple[Cell, ...]

NO_ROWS_MARKER = "No rows returned"
NO_COLUMNS_MARKER = "No columns returned"


@dataclass(frozen=True, slots=True)
class ResultGrid:
    """Materialized result set ready for rendering."""

    columns: tuple[str, ...] = ()
    rows: tuple[Row, ...] = ()
    truncated: bool = False

    def __post_init__(self) -> None:
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(f"Row {index} has {len(row)} cells, expected {width}.")

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.columns)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def renderable_rows(self) -> tuple[Row, ...]:
        """Rows to draw; a single marker row stands in for an empty result."""

        if self.rows:
            return self.rows
        marker = NO_COLUMNS_MARKER if not self.columns else NO_ROWS_MARKER
        width = max(1, len(self.columns))
        padding = tuple(Cell("", CellKind.NULL) for _ in range(width - 1))
        return ((Cell(marker, CellKind.NULL), *padding),)

    def texts(self) -> tuple[tuple[str, ...], ...]:
        return tuple(tuple(cell.text for cell in row) for row in self.rows)

    def with_rows(self, rows: tuple[Row, ...]) -> ResultGrid:
        return ResultGrid(columns=self.columns, rows=rows, truncated=self.truncated)


@dataclass(frozen=True, slots=True)
class ReachabilityResult:
    """Outcome of probing one saved connection."""

    index: int
    name: str
    reachable: bool
    detail: str = ""


@dataclass(frozen=True, slots=True)
class DialTarget:
    """Driver selection plus the dial string handed to it."""

    kind: BackendKind
    driver: str
    dsn: str = field(repr=False)
    secrets: tuple[str, ...] = field(default=(), repr=False)


__all__ = [
    "BackendKind",
    "Cell",
    "CellKind",
    "ConnectionConfig",
    "DialTarget",
    "NO_COLUMNS_MARKER",
    "NO_ROWS_MARKER",
    "ReachabilityResult",
    "ResultGrid",
    "Row",
]
