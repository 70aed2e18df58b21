"""Turn raw driver rows into a typed, display-safe grid."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from .errors import MaterializationError
from .models import Cell, CellKind, ResultGrid, Row

if TYPE_CHECKING:
    from .drivers import RowStream

MAX_CELL_RUNES = 100
MAX_BINARY_PREVIEW = 100
ELLIPSIS = "..."


@dataclass(frozen=True, slots=True)
class NullValue:
    pass


@dataclass(frozen=True, slots=True)
class TextValue:
    value: str


@dataclass(frozen=True, slots=True)
class BoolValue:
    value: bool


@dataclass(frozen=True, slots=True)
class IntValue:
    value: int


@dataclass(frozen=True, slots=True)
class FloatValue:
    value: float


@dataclass(frozen=True, slots=True)
class BinaryValue:
    value: bytes


CellValue = Union[NullValue, TextValue, BoolValue, IntValue, FloatValue, BinaryValue]


def to_cell_value(raw: object) -> CellValue:
    """Default adapter from Python driver values to the closed variant set."""

    if raw is None:
        return NullValue()
    # bool is a subclass of int, so it has to be checked first.
    if isinstance(raw, bool):
        return BoolValue(raw)
    if isinstance(raw, int):
        return IntValue(raw)
    if isinstance(raw, float):
        return FloatValue(raw)
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return BinaryValue(bytes(raw))
    if isinstance(raw, str):
        return TextValue(raw)
    return TextValue(str(raw))


def truncate_for_display(value: str, max_runes: int = MAX_CELL_RUNES) -> str:
    """Cut text to `max_runes` characters, ending in an ellipsis when cut."""

    if max_runes <= 0 or not value:
        return ""
    if len(value) <= max_runes:
        return value
    if max_runes <= len(ELLIPSIS):
        return value[:max_runes]
    return value[: max_runes - len(ELLIPSIS)] + ELLIPSIS


def _text_cell(text: str) -> Cell:
    display = truncate_for_display(text)
    return Cell(display, CellKind.TEXT, None if display == text else text)


def _binary_cell(data: bytes) -> Cell:
    try:
        decoded = data.decode("utf-8")
    except UnicodeDecodeError:
        decoded = None
    if decoded is not None and all(ch.isprintable() or ch in "\t\r\n" for ch in decoded):
        return _text_cell(decoded)
    full = "0x" + data.hex()
    return Cell(truncate_for_display(full, MAX_BINARY_PREVIEW), CellKind.BINARY, full)


def format_cell(value: CellValue) -> Cell:
    """Render one variant as a cell."""

    match value:
        case NullValue():
            return Cell("NULL", CellKind.NULL)
        case BoolValue(value=flag):
            return Cell("true" if flag else "false", CellKind.BOOLEAN)
        case IntValue(value=number):
            return Cell(str(number), CellKind.INTEGER)
        case FloatValue(value=number):
            return Cell(f"{number:.4g}", CellKind.FLOAT, repr(number))
        case BinaryValue(value=data):
            return _binary_cell(data)
        case TextValue(value=text):
            return _text_cell(text)
    raise TypeError(f"Unhandled cell value: {value!r}")


async def build_grid(stream: RowStream, limit: int | None = None, *, sql: str | None = None) -> ResultGrid:
    """Consume a row stream into a grid, stopping after `limit` rows.

    Rows past the limit are never pulled from the driver; `truncated` only
    records that the limit was reached.
    """

    columns = stream.columns
    rows: list[Row] = []
    truncated = False
    try:
        iterator = stream.rows.__aiter__()
        while True:
            if limit is not None and len(rows) >= limit:
                truncated = True
                break
            try:
                raw = await iterator.__anext__()
            except StopAsyncIteration:
                break
            except Exception as exc:
                raise MaterializationError(
                    f"Result iteration error: {exc}", rows_read=len(rows), sql=sql
                ) from exc
            rows.append(_build_row(stream, raw, len(columns), len(rows)))
    finally:
        await stream.aclose()
    return ResultGrid(columns=columns, rows=tuple(rows), truncated=truncated)


def _build_row(stream: RowStream, raw: object, width: int, index: int) -> Row:
    values = tuple(raw)  # type: ignore[arg-type]
    if len(values) != width:
        raise MaterializationError(
            f"Row {index + 1} has {len(values)} values for {width} columns", rows_read=index
        )
    return tuple(format_cell(stream.adapter_for(pos)(value)) for pos, value in enumerate(values))


def export_csv(columns: tuple[str, ...], rows: tuple[Row, ...]) -> str:
    """CSV text with untruncated cell values."""

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if cell.kind is CellKind.NULL else cell.full_text for cell in row])
    return buffer.getvalue()


def format_duration(seconds: float) -> str:
    if seconds < 0.001:
        return f"{seconds * 1_000_000:.0f}µs"
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    return f"{seconds:.2f}s"


__all__ = [
    "BinaryValue",
    "BoolValue",
    "CellValue",
    "ELLIPSIS",
    "FloatValue",
    "IntValue",
    "MAX_BINARY_PREVIEW",
    "MAX_CELL_RUNES",
    "NullValue",
    "TextValue",
    "build_grid",
    "export_csv",
    "format_cell",
    "format_duration",
    "to_cell_value",
    "truncate_for_display",
]
