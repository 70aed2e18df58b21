"""Modal showing every column of the selected row at full length."""

from __future__ import annotations

from typing import Sequence

from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Label

class RowDetailScreen(ModalScreen[None]):
    """Column | Value listing of one row; long values are not truncated."""

    DEFAULT_CSS = """
    RowDetailScreen {
        align: center middle;
    }
    #row-detail {
        width: 90%;
        height: 80%;
        border: thick $primary;
        background: $surface;
        padding: 0 1;
    }
    #row-detail-table {
        height: 1fr;
    }
    #row-detail-buttons {
        height: auto;
        align-horizontal: right;
    }
    """

    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("c", "copy_row", "Copy as CSV"),
    ]

    def __init__(self, pairs: Sequence[tuple[str, str]], *, csv_text: str, title: str = "Row detail") -> None:
        super().__init__()
        self._pairs = tuple(pairs)
        self._csv_text = csv_text
        self._title = title

    @property
    def pairs(self) -> tuple[tuple[str, str], ...]:
        return self._pairs

    def compose(self) -> ComposeResult:
        with Container(id="row-detail"):
            yield Label(Text(self._title), id="row-detail-title")
            yield DataTable(id="row-detail-table", cursor_type="row", zebra_stripes=True)
            with Horizontal(id="row-detail-buttons"):
                yield Button("Copy as CSV", id="copy-btn")
                yield Button("Close", variant="primary", id="close-btn")

    def on_mount(self) -> None:
        table = self.query_one("#row-detail-table", DataTable)
        table.add_columns("Column", "Value")
        for name, value in self._pairs:
            table.add_row(Text(name, style="bold"), Text(value), height=None)
        table.focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "copy-btn":
            self.action_copy_row()
        else:
            self.dismiss()

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        self.dismiss()

    def action_close(self) -> None:
        self.dismiss()

    def action_copy_row(self) -> None:
        self.app.copy_to_clipboard(self._csv_text)
        self.notify("Row copied as CSV")


__all__ = ["RowDetailScreen"]
