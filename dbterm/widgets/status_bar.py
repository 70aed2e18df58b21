"""Status bar widget that mirrors the workspace snapshot."""

from __future__ import annotations

from typing import Callable

from rich.text import Text
from textual.widgets import Static

from dbterm.results import format_duration
from dbterm.session import Workspace, WorkspaceSnapshot


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }

    StatusBar.-error {
        background: $error 30%;
    }
    """

    def __init__(self, workspace: Workspace) -> None:
        super().__init__("", id="status-bar")
        self._workspace = workspace
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._workspace.subscribe(self._handle_workspace_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_workspace_update(self, snapshot: WorkspaceSnapshot) -> None:
        self.update(Text(render_status(snapshot)))
        self.set_class(snapshot.error is not None, "-error")


def render_status(snapshot: WorkspaceSnapshot) -> str:
    connection = snapshot.connection.display_label() if snapshot.connection else "not connected"
    parts = [connection]
    if snapshot.current_table:
        parts.append(f"Table: {snapshot.current_table}")
    grid = snapshot.grid
    parts.append(f"Rows: {grid.row_count}{'+' if grid.truncated else ''}")
    if snapshot.elapsed is not None:
        parts.append(format_duration(snapshot.elapsed))
    parts.append(snapshot.sort_label)
    parts.append(f"Preview: {snapshot.preview_label}")
    parts.append(snapshot.status.splitlines()[0][:120] if snapshot.status else "")
    return " | ".join(part for part in parts if part)


__all__ = ["StatusBar", "render_status"]
