"""Sort, selection and scroll state that survives result reloads."""

from __future__ import annotations

from dataclasses import dataclass
from functools import cmp_to_key

from .models import ResultGrid, Row
from .results import export_csv

DEFAULT_PREVIEW_LIMIT = 100
PREVIEW_STEPS = (25, 50, 100, 250, 500, 1000)


@dataclass(frozen=True, slots=True)
class SortState:
    column: int = -1
    ascending: bool = True

    @property
    def active(self) -> bool:
        return self.column >= 0


@dataclass(frozen=True, slots=True)
class SelectionState:
    row: int = 0
    column: int = 0
    offset_row: int = 0
    offset_column: int = 0
    signature: tuple[str, ...] | None = None


def row_signature(row: Row) -> tuple[str, ...]:
    return tuple(cell.text for cell in row)


def _as_number(text: str) -> float | None:
    try:
        return float(text.strip())
    except ValueError:
        return None


def compare_cells(left: str, right: str) -> int:
    """Numeric when both sides parse as numbers, case-insensitive text otherwise."""

    left_num = _as_number(left)
    right_num = _as_number(right)
    if left_num is not None and right_num is not None:
        return (left_num > right_num) - (left_num < right_num)
    left_key = left.lower()
    right_key = right.lower()
    return (left_key > right_key) - (left_key < right_key)


def sort_rows(rows: tuple[Row, ...], column: int, ascending: bool) -> tuple[Row, ...]:
    """Stable sort on one column; equal rows keep their relative order."""

    def _compare(left: Row, right: Row) -> int:
        result = compare_cells(left[column].text, right[column].text)
        return result if ascending else -result

    return tuple(sorted(rows, key=cmp_to_key(_compare)))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


class ResultViewState:
    """Holds the grid being shown and keeps the user's place across reloads."""

    def __init__(self, grid: ResultGrid | None = None) -> None:
        self._source = grid or ResultGrid()
        self._rows: tuple[Row, ...] = self._source.rows
        self._sort = SortState()
        self._selection = SelectionState()

    @property
    def grid(self) -> ResultGrid:
        """Current grid in display order."""

        return self._source.with_rows(self._rows)

    @property
    def source(self) -> ResultGrid:
        """Grid in backend order, as last loaded."""

        return self._source

    @property
    def rows(self) -> tuple[Row, ...]:
        return self._rows

    @property
    def sort(self) -> SortState:
        return self._sort

    @property
    def selection(self) -> SelectionState:
        return self._selection

    @property
    def row_count(self) -> int:
        return len(self._rows)

    @property
    def column_count(self) -> int:
        return len(self._source.columns)

    def selected_row(self) -> Row | None:
        if not self._rows:
            return None
        return self._rows[self._selection.row]

    def toggle_sort(self, column: int) -> SortState:
        """Flip direction on the same column, start ascending on a new one."""

        if not 0 <= column < self.column_count:
            return self._sort
        if self._sort.column == column:
            self._sort = SortState(column, not self._sort.ascending)
        else:
            self._sort = SortState(column, True)
        signature = self._current_signature()
        self._apply_sort()
        self._relocate(signature, self._selection)
        return self._sort

    def clear_sort(self) -> SortState:
        signature = self._current_signature()
        self._sort = SortState()
        self._apply_sort()
        self._relocate(signature, self._selection)
        return self._sort

    def selected_detail(self) -> tuple[tuple[str, str], ...]:
        """Column name and untruncated value for each cell of the selected row."""

        row = self.selected_row()
        if row is None:
            return ()
        return tuple(zip(self._source.columns, (cell.full_text for cell in row)))

    def selected_csv(self) -> str:
        row = self.selected_row()
        return export_csv(self._source.columns, () if row is None else (row,))

    def select(self, row: int, column: int | None = None) -> SelectionState:
        col = self._selection.column if column is None else column
        self._selection = SelectionState(
            row=_clamp(row, 0, max(self.row_count - 1, 0)),
            column=_clamp(col, 0, max(self.column_count - 1, 0)),
            offset_row=self._selection.offset_row,
            offset_column=self._selection.offset_column,
        )
        return self._selection

    def scroll_to(self, offset_row: int, offset_column: int | None = None) -> SelectionState:
        col = self._selection.offset_column if offset_column is None else offset_column
        self._selection = SelectionState(
            row=self._selection.row,
            column=self._selection.column,
            offset_row=_clamp(offset_row, 0, max(self.row_count - 1, 0)),
            offset_column=_clamp(col, 0, max(self.column_count - 1, 0)),
        )
        return self._selection

    def capture(self) -> SelectionState:
        """Snapshot the position plus the selected row's signature."""

        return SelectionState(
            row=self._selection.row,
            column=self._selection.column,
            offset_row=self._selection.offset_row,
            offset_column=self._selection.offset_column,
            signature=self._current_signature(),
        )

    def load(self, grid: ResultGrid) -> SelectionState:
        """Swap in a new grid, re-sort it and re-land the selection."""

        captured = self.capture()
        self._source = grid
        if self._sort.column >= len(grid.columns):
            self._sort = SortState()
        self._apply_sort()
        self._relocate(captured.signature, captured)
        return self._selection

    def reset(self, grid: ResultGrid) -> None:
        """Show an unrelated grid (a different table or query) from the top."""

        self._source = grid
        self._sort = SortState()
        self._rows = grid.rows
        self._selection = SelectionState()

    def export_csv(self) -> str:
        return export_csv(self._source.columns, self._rows)

    def sort_label(self) -> str:
        if not self._sort.active:
            return "sort: none"
        name = self._source.columns[self._sort.column].lower()
        direction = "asc" if self._sort.ascending else "desc"
        return f"sort {name} {direction}"

    def _current_signature(self) -> tuple[str, ...] | None:
        row = self.selected_row()
        return row_signature(row) if row is not None else None

    def _apply_sort(self) -> None:
        rows = self._source.rows
        if self._sort.active and len(rows) > 1:
            rows = sort_rows(rows, self._sort.column, self._sort.ascending)
        self._rows = rows

    def _relocate(self, signature: tuple[str, ...] | None, previous: SelectionState) -> None:
        last_row = max(self.row_count - 1, 0)
        last_col = max(self.column_count - 1, 0)
        column = _clamp(previous.column, 0, last_col)
        offset_column = _clamp(previous.offset_column, 0, last_col)
        match = self._find(signature)
        if match is None:
            self._selection = SelectionState(
                row=_clamp(previous.row, 0, last_row),
                column=column,
                offset_row=_clamp(previous.offset_row, 0, last_row),
                offset_column=offset_column,
            )
            return
        # Keep the row at the same distance from the top of the viewport.
        distance = max(previous.row - previous.offset_row, 0)
        self._selection = SelectionState(
            row=match,
            column=column,
            offset_row=_clamp(match - distance, 0, last_row),
            offset_column=offset_column,
        )

    def _find(self, signature: tuple[str, ...] | None) -> int | None:
        if signature is None:
            return None
        for index, row in enumerate(self._rows):
            if row_signature(row) == signature:
                return index
        return None


class PreviewLimit:
    """Row cap for table previews, stepping through fixed sizes or unbounded."""

    def __init__(self, value: int | None = DEFAULT_PREVIEW_LIMIT) -> None:
        self._value = self._normalize(value)

    @property
    def value(self) -> int | None:
        """Current limit; None means all rows."""

        return self._value

    @property
    def unlimited(self) -> bool:
        return self._value is None

    @property
    def label(self) -> str:
        return "all rows" if self._value is None else f"{self._value} rows"

    def set(self, value: int | None) -> bool:
        normalized = self._normalize(value)
        changed = normalized != self._value
        self._value = normalized
        return changed

    def increase(self) -> bool:
        if self._value is None:
            return False
        following = [step for step in PREVIEW_STEPS if step > self._value]
        return self.set(following[0] if following else None)

    def decrease(self) -> bool:
        if self._value is None:
            return self.set(PREVIEW_STEPS[-1])
        lower = [step for step in PREVIEW_STEPS if step < self._value]
        return self.set(lower[-1] if lower else PREVIEW_STEPS[0])

    def toggle_unlimited(self) -> bool:
        return self.set(DEFAULT_PREVIEW_LIMIT if self._value is None else None)

    @staticmethod
    def _normalize(value: int | None) -> int | None:
        if value is None or value < 0:
            return None
        if value == 0:
            return DEFAULT_PREVIEW_LIMIT
        return max(value, PREVIEW_STEPS[0])


__all__ = [
    "DEFAULT_PREVIEW_LIMIT",
    "PREVIEW_STEPS",
    "PreviewLimit",
    "ResultViewState",
    "SelectionState",
    "SortState",
    "compare_cells",
    "row_signature",
    "sort_rows",
]
