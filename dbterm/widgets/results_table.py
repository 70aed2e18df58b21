"""DataTable rendering the workspace's result view."""

from __future__ import annotations

from typing import Callable

from rich.text import Text
from textual.binding import Binding
from textual.coordinate import Coordinate
from textual.message import Message
from textual.widgets import DataTable

from dbterm.models import CellKind, ResultGrid, Row
from dbterm.session import Workspace, WorkspaceSnapshot


class ResultsTable(DataTable):
    """Grid view that follows the workspace's sort, selection and scroll state."""

    DEFAULT_CSS = """
    ResultsTable {
        height: 1fr;
        border-top: solid $surface-darken-2;
    }
    """

    BINDINGS = [
        Binding("enter", "show_row_detail", "Row detail"),
    ]

    class DetailRequested(Message):
        """Posted when the user asks to see the selected row in full."""

    def __init__(self, workspace: Workspace) -> None:
        super().__init__(id="results", zebra_stripes=True, cursor_type="cell")
        self._workspace = workspace
        self._rows_ref: tuple[Row, ...] | None = None
        self._columns: tuple[str, ...] = ()
        self._syncing = False
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._workspace.subscribe(self._handle_workspace_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_workspace_update(self, snapshot: WorkspaceSnapshot) -> None:
        grid = snapshot.grid
        if grid.rows is not self._rows_ref or grid.columns != self._columns:
            self._render_grid(grid)
        self._sync_cursor(snapshot)

    def _render_grid(self, grid: ResultGrid) -> None:
        self._rows_ref = grid.rows
        self._columns = grid.columns
        self._syncing = True
        try:
            self.clear(columns=True)
            if not grid.columns:
                return
            self.add_columns(*grid.columns)
            for row in grid.renderable_rows():
                self.add_row(*(_styled(cell.text, cell.kind) for cell in row))
        finally:
            self._syncing = False

    def _sync_cursor(self, snapshot: WorkspaceSnapshot) -> None:
        if not self.row_count or not self._columns:
            return
        selection = snapshot.selection
        target = Coordinate(selection.row, selection.column)
        if self.cursor_coordinate == target:
            return
        self._syncing = True
        try:
            self.move_cursor(row=selection.row, column=selection.column, animate=False)
            self.scroll_to(y=selection.offset_row, animate=False)
        finally:
            self._syncing = False

    def action_show_row_detail(self) -> None:
        if self._workspace.view.row_count == 0:
            return
        self.post_message(self.DetailRequested())

    def on_data_table_cell_highlighted(self, event: DataTable.CellHighlighted) -> None:
        if self._syncing or event.data_table is not self:
            return
        if self._workspace.view.row_count == 0:
            return
        self._workspace.select(event.coordinate.row, event.coordinate.column)
        offset = int(self.scroll_offset.y)
        if offset != self._workspace.view.selection.offset_row:
            self._workspace.scroll_to(offset)


def _styled(text: str, kind: CellKind) -> Text:
    if kind is CellKind.NULL:
        return Text(text, style="dim italic", no_wrap=True)
    if kind in (CellKind.INTEGER, CellKind.FLOAT):
        return Text(text, justify="right", no_wrap=True)
    return Text(text, no_wrap=True)


__all__ = ["ResultsTable"]
