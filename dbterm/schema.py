"""Backend-specific table listing."""

from __future__ import annotations

from .drivers import DriverHandle
from .models import BackendKind

_TABLE_QUERIES = {
    BackendKind.POSTGRES: """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = 'public'
        ORDER BY table_name
    """,
    BackendKind.MYSQL: "SHOW TABLES",
    BackendKind.SQLITE: """
        SELECT name FROM sqlite_master
        WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
        ORDER BY name
    """,
    BackendKind.D1: """
        SELECT name FROM sqlite_master
        WHERE type = 'table' AND name NOT LIKE 'sqlite_%' AND name NOT LIKE '_cf_%'
        ORDER BY name
    """,
}


def tables_query(kind: BackendKind) -> str:
    return _TABLE_QUERIES[kind]


async def list_tables(handle: DriverHandle, kind: BackendKind) -> tuple[str, ...]:
    """Return unquoted user table names; an empty tuple means no tables."""

    stream = await handle.fetch(tables_query(kind))
    names: list[str] = []
    try:
        async for row in stream.rows:
            if row and row[0] is not None:
                value = row[0]
                names.append(value.decode() if isinstance(value, (bytes, bytearray)) else str(value))
    finally:
        await stream.aclose()
    if kind is BackendKind.MYSQL:
        # SHOW TABLES has no ORDER BY; keep the list deterministic.
        names.sort()
    return tuple(names)


__all__ = ["list_tables", "tables_query"]
