"""Multi-line SQL editor that asks the app to run its contents."""

from __future__ import annotations

from textual.binding import Binding
from textual.message import Message
from textual.widgets import TextArea


class QueryEditor(TextArea):
    """TextArea with a run chord; Ctrl+J covers terminals that drop Ctrl+Enter."""

    DEFAULT_CSS = """
    QueryEditor {
        height: 8;
        border: round $primary 40%;
    }

    QueryEditor:focus {
        border: round $primary;
    }
    """

    BINDINGS = [
        Binding("ctrl+enter,ctrl+j", "run_query", "Run SQL", priority=True),
    ]

    class RunRequested(Message):
        """Posted when the user asks to execute the editor contents."""

        def __init__(self, sql: str) -> None:
            super().__init__()
            self.sql = sql

    def __init__(self, text: str = "") -> None:
        super().__init__(text, id="sql-editor", language=None, soft_wrap=True, show_line_numbers=False)

    def action_run_query(self) -> None:
        self.post_message(self.RunRequested(self.text))


__all__ = ["QueryEditor"]
