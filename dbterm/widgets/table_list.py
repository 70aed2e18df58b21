"""Sidebar listing the tables of the active connection."""

from __future__ import annotations

from typing import Callable

from rich.text import Text
from textual import on
from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import Label, ListItem, ListView, Static

from dbterm.session import Workspace, WorkspaceSnapshot


class TableList(Container):
    """Table names for the active connection; selecting one browses it."""

    DEFAULT_CSS = """
    TableList {
        width: 30;
        min-width: 22;
        border-right: solid $surface-darken-1;
        padding: 1;
        height: 1fr;
        background: $surface-darken-2;
    }

    TableList .sidebar-heading {
        text-style: bold;
        margin-bottom: 1;
    }

    #table-list {
        height: 1fr;
    }

    #table-list .current {
        text-style: bold;
    }

    #connection-summary {
        padding-top: 1;
        border-top: solid $surface-darken-1;
        color: $text-muted;
        height: auto;
    }
    """

    def __init__(self, workspace: Workspace) -> None:
        super().__init__(id="table-sidebar")
        self._workspace = workspace
        self._list: ListView | None = None
        self._summary: Static | None = None
        self._tables: tuple[str, ...] = ()
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Tables", classes="sidebar-heading")
        self._list = ListView(id="table-list")
        yield self._list
        self._summary = Static("Not connected.", id="connection-summary")
        yield self._summary

    async def on_mount(self) -> None:
        self._unsubscribe = self._workspace.subscribe(self._handle_workspace_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_workspace_update(self, snapshot: WorkspaceSnapshot) -> None:
        if snapshot.tables != self._tables:
            self._tables = snapshot.tables
            self._render_tables()
        self._mark_current(snapshot.current_table)
        self._render_summary(snapshot)

    def _render_tables(self) -> None:
        if self._list is None:
            return
        self._list.clear()
        if not self._tables:
            return
        self._list.extend(_TableListItem(name) for name in self._tables)

    def _mark_current(self, current: str | None) -> None:
        if self._list is None:
            return
        for item in self._list.query(_TableListItem):
            item.set_class(item.table_name == current, "current")

    def _render_summary(self, snapshot: WorkspaceSnapshot) -> None:
        if self._summary is None:
            return
        if snapshot.connection is None:
            self._summary.update("Not connected.")
            return
        cfg = snapshot.connection
        lines = [
            f"Connection: {cfg.name}",
            f"Backend: {cfg.kind.label}",
            f"Tables: {len(snapshot.tables) or 'none'}",
        ]
        self._summary.update(Text("\n".join(lines)))

    @on(ListView.Selected)
    def _handle_table_selected(self, event: ListView.Selected) -> None:
        item = event.item
        if isinstance(item, _TableListItem):
            browse = getattr(self.app, "browse_table", None)
            if browse is not None:
                browse(item.table_name)
            event.stop()


class _TableListItem(ListItem):
    """List item remembering the table it stands for."""

    def __init__(self, name: str) -> None:
        super().__init__(Label(Text(name)))
        self.table_name = name


__all__ = ["TableList"]
