"""Error taxonomy shared by the resolver, pool, executor and prober."""

from __future__ import annotations

from enum import Enum
from typing import Iterable
from urllib.parse import quote

from .models import BackendKind, ConnectionConfig


class ErrorKind(str, Enum):
    """Failure classes surfaced to the UI."""

    MISSING_FIELD = "missing_field"
    UNSUPPORTED = "unsupported"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    SYNTAX = "syntax"
    PERMISSION = "permission"
    DUPLICATE = "duplicate"
    CONNECTION_LOST = "connection_lost"
    UNKNOWN = "unknown"


class WorkspaceError(RuntimeError):
    """Base error carrying a failure class and an optional one-line hint."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, kind: ErrorKind | None = None, hint: str | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.message = message
        self.hint = hint

    def describe(self) -> str:
        """Message plus hint, ready for an alert."""

        if self.hint:
            return f"{self.message}\n\n{self.hint}"
        return self.message


class MissingFieldError(WorkspaceError):
    """Raised before any I/O when a backend-required field is blank."""

    kind = ErrorKind.MISSING_FIELD

    def __init__(self, fields: Iterable[str], backend: BackendKind) -> None:
        self.fields = tuple(fields)
        self.backend = backend
        listed = ", ".join(self.fields)
        super().__init__(
            f"Required fields missing for {backend.label}: {listed}",
            hint=f"Fill these to connect to {backend.label}.",
        )


class UnsupportedBackendError(WorkspaceError):
    """Raised when a config names a backend without a driver."""

    kind = ErrorKind.UNSUPPORTED


class ConnectionBackendError(WorkspaceError):
    """Raised when a backend cannot be reached or refuses the session."""

    kind = ErrorKind.UNREACHABLE


class ConnectionLostError(WorkspaceError):
    """Raised when the active handle stops answering pings."""

    kind = ErrorKind.CONNECTION_LOST


class QueryTimeoutError(WorkspaceError):
    """Raised when a connect, query or probe exceeds its deadline."""

    kind = ErrorKind.TIMEOUT


class QueryExecutionError(WorkspaceError):
    """Raised when a statement fails to execute."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        hint: str | None = None,
        sql: str | None = None,
    ) -> None:
        super().__init__(message, kind=kind, hint=hint)
        self.sql = truncate_sql(sql) if sql else None

    def describe(self) -> str:
        text = super().describe()
        if self.sql:
            return f"Query error:\n\n{text}\n\nSQL: {self.sql}"
        return text


class MaterializationError(QueryExecutionError):
    """Raised when a row stream fails part-way through."""

    def __init__(self, message: str, *, rows_read: int, sql: str | None = None) -> None:
        super().__init__(f"{message} (after {rows_read} row(s))", sql=sql)
        self.rows_read = rows_read


_SQL_PREVIEW = 80

# First match wins.
_QUERY_PATTERNS: tuple[tuple[tuple[str, ...], ErrorKind, str], ...] = (
    (
        ("does not exist", "no such table", "unknown table", "doesn't exist"),
        ErrorKind.UNKNOWN,
        "Hint: Check the table name spelling; the table list shows what exists.",
    ),
    (
        ("syntax error", 'near "', "you have an error in your sql syntax"),
        ErrorKind.SYNTAX,
        "Hint: Check your SQL syntax.",
    ),
    (
        ("permission denied", "access denied", "not authorized"),
        ErrorKind.PERMISSION,
        "Hint: Your user may not have sufficient privileges for this operation.",
    ),
    (
        ("duplicate", "unique constraint"),
        ErrorKind.DUPLICATE,
        "Hint: A record with this key already exists.",
    ),
    (
        ("connection", "refused", "broken pipe", "server has gone away"),
        ErrorKind.CONNECTION_LOST,
        "Hint: Connection issue. Reconnect from the connection list.",
    ),
)


def classify_error(message: str) -> tuple[ErrorKind, str | None]:
    """Best-effort mapping from a driver message to a kind and hint."""

    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        return ErrorKind.TIMEOUT, "Hint: The statement exceeded its deadline."
    for needles, kind, hint in _QUERY_PATTERNS:
        if any(needle in lowered for needle in needles):
            return kind, hint
    return ErrorKind.UNKNOWN, None


def connection_hint(message: str, cfg: ConnectionConfig) -> str:
    """Suggest a fix for a failed connection attempt."""

    lowered = message.lower()
    port = cfg.port if cfg.port is not None else "default port"
    if "connection refused" in lowered or "can't connect" in lowered:
        return f"Hint: Is {cfg.kind.label} running on {cfg.host}:{port}?"
    if "name or service not known" in lowered or "nodename" in lowered or "getaddrinfo" in lowered:
        return f'Hint: Could not resolve hostname "{cfg.host}". Check spelling.'
    if "password" in lowered or "authentication" in lowered or "access denied" in lowered:
        return "Hint: Check your username and password."
    if "does not exist" in lowered or "unknown database" in lowered:
        return f'Hint: Database "{cfg.database}" not found. Check the name.'
    if "timeout" in lowered or "timed out" in lowered:
        return "Hint: Connection timed out. Check if the server is reachable."
    if "no such file" in lowered or "unable to open" in lowered:
        return f"Hint: SQLite file not found: {cfg.file_path}"
    if "permission" in lowered:
        return "Hint: Permission denied. Check file/user permissions."
    return "Hint: Double-check your connection details."


def redact(message: str, secrets: Iterable[str]) -> str:
    """Replace every secret occurrence with asterisks."""

    for secret in secrets:
        if not secret:
            continue
        for form in {secret, quote(secret, safe="")}:
            message = message.replace(form, "****")
    return message


def truncate_sql(sql: str, limit: int = _SQL_PREVIEW) -> str:
    text = " ".join(sql.split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


__all__ = [
    "ConnectionBackendError",
    "ConnectionLostError",
    "ErrorKind",
    "MaterializationError",
    "MissingFieldError",
    "QueryExecutionError",
    "QueryTimeoutError",
    "UnsupportedBackendError",
    "WorkspaceError",
    "classify_error",
    "connection_hint",
    "redact",
    "truncate_sql",
]
