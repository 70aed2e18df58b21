"""Textual application entry point for dbterm."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header

from .config import AppConfig, export_path, load_config, save_config
from .errors import WorkspaceError
from .models import ConnectionConfig
from .providers import ConnectionManageProvider, ConnectionSwitchProvider, ProbeProvider, ReloadProvider
from .session import Workspace, WorkspaceSnapshot
from .widgets import (
    ConnectionFormResult,
    ConnectionFormScreen,
    QueryEditor,
    ResultsTable,
    RowDetailScreen,
    StatusBar,
    TableList,
)

LOG = logging.getLogger(__name__)


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for test overrides."""

    return load_config()


class DbtermApp(App[None]):
    """Terminal SQL client: table list, SQL editor and a stable result grid."""

    TITLE = "dbterm"
    COMMANDS = App.COMMANDS | {ConnectionSwitchProvider, ConnectionManageProvider, ReloadProvider, ProbeProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    #main-column {
        layout: vertical;
        padding: 0 1;
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit"),
        Binding("f5", "reload", "Reload"),
        Binding("ctrl+r", "reload", "Reload", show=False),
        Binding("s", "sort", "Sort"),
        Binding("S,shift+s", "clear_sort", "Clear sort", show=False),
        Binding("plus", "preview_more", "More rows"),
        Binding("minus", "preview_less", "Fewer rows"),
        Binding("0", "preview_all", "All rows", show=False),
        Binding("ctrl+e", "export", "Export CSV"),
        Binding("ctrl+n", "new_connection", "New connection"),
        Binding("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(self) -> None:
        super().__init__()
        self._config = _load_app_config()
        self._workspace = Workspace(preview_limit=self._config.preview_limit)
        self._pending_notifications: list[tuple[str, str]] = []
        self._workspace_unsubscribe: Callable[[], None] | None = None
        self._last_error: WorkspaceError | None = None
        self._install_workspace_listener()

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        main_column = Vertical(QueryEditor(), ResultsTable(self._workspace), id="main-column")
        yield Horizontal(TableList(self._workspace), main_column, id="content")
        yield StatusBar(self._workspace)
        yield Footer()

    async def on_mount(self) -> None:
        self._flush_pending_notifications()
        self.run_worker(self._consume_workspace_events(), group="workspace-events", exclusive=True)
        initial = self._initial_connection()
        if initial is not None:
            self.run_worker(self.switch_connection(initial), group="connect")

    @property
    def workspace(self) -> Workspace:
        """Expose the workspace for tests and command providers."""

        return self._workspace

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def connections(self) -> tuple[ConnectionConfig, ...]:
        return self._config.connection_configs()

    async def switch_connection(self, name: str) -> bool:
        """Connect to a saved connection and persist it as the active one."""

        index = self._index_of(name)
        if index is None:
            self._safe_notify(f"Connection '{name}' not found.", severity="error")
            return False
        cfg = self._config.connections[index].to_connection()
        try:
            await self._workspace.connect(cfg)
        except WorkspaceError as exc:
            LOG.info("Connection failed", extra={"connection": name, "kind": exc.kind.value})
            self._safe_notify(exc.describe(), severity="error")
            return False
        self._persist(self._config.with_connection_used(index))
        self._safe_notify(f"Connected to {cfg.display_label()}", severity="information")
        return True

    def open_connection_form(self, name: str | None = None) -> None:
        """Show the add form, or the edit form for the saved connection `name`."""

        index: int | None = None
        initial: ConnectionConfig | None = None
        if name is not None:
            index = self._index_of(name)
            if index is None:
                self._safe_notify(f"Connection '{name}' not found.", severity="error")
                return
            initial = self._config.connections[index].to_connection()

        def _on_close(result: ConnectionFormResult | None) -> None:
            if result is not None:
                saving = self.save_connection(result.config, index=index, connect=result.connect)
                self.run_worker(saving, group="connect")

        self.push_screen(ConnectionFormScreen(initial, tester=self._workspace.test_connection), callback=_on_close)

    async def save_connection(self, cfg: ConnectionConfig, *, index: int | None = None, connect: bool = True) -> bool:
        """Add `cfg` (or replace the entry at `index`), persist, then optionally connect."""

        clash = self._index_of(cfg.name)
        if clash is not None and clash != index:
            self._safe_notify(f"A connection named '{cfg.name}' already exists.", severity="error")
            return False
        if index is None:
            config = self._config.with_connection_added(cfg)
        else:
            config = self._config.with_connection_updated(index, cfg)
        self._persist(config)
        self._safe_notify(f"Saved connection '{cfg.name}'", severity="information")
        if connect:
            return await self.switch_connection(cfg.name)
        return True

    def delete_connection(self, name: str) -> bool:
        index = self._index_of(name)
        if index is None:
            self._safe_notify(f"Connection '{name}' not found.", severity="error")
            return False
        self._persist(self._config.with_connection_removed(index))
        self._workspace.flash(f"Deleted connection '{name}'")
        return True

    def show_row_detail(self) -> bool:
        view = self._workspace.view
        if view.row_count == 0:
            return False
        self.push_screen(RowDetailScreen(view.selected_detail(), csv_text=view.selected_csv()))
        return True

    def browse_table(self, table: str) -> None:
        self.run_worker(self._guard(self._workspace.browse(table)), group="query")

    def run_sql(self, sql: str) -> None:
        self.run_worker(self._guard(self._workspace.run_sql(sql)), group="query")

    def probe_connections(self) -> None:
        connections = self.connections
        if not connections:
            self._safe_notify("No saved connections to check.", severity="warning")
            return
        self._workspace.spawn_probe(connections)
        self._workspace.flash(f"Checking {len(connections)} connection(s)...")

    def action_reload(self) -> None:
        if self._workspace.active is None:
            self._safe_notify("Connect to a database first.", severity="warning")
            return
        self._workspace.spawn_reload()

    def action_sort(self) -> None:
        view = self._workspace.view
        if view.row_count == 0:
            return
        self._workspace.toggle_sort(view.selection.column)
        self._workspace.flash(view.sort_label())

    def action_clear_sort(self) -> None:
        self._workspace.clear_sort()
        self._workspace.flash(self._workspace.view.sort_label())

    def action_new_connection(self) -> None:
        self.open_connection_form()

    async def action_preview_more(self) -> None:
        await self._change_preview(self._workspace.increase_preview_limit)

    async def action_preview_less(self) -> None:
        await self._change_preview(self._workspace.decrease_preview_limit)

    async def action_preview_all(self) -> None:
        await self._change_preview(self._workspace.toggle_unlimited_preview)

    def action_export(self) -> None:
        view = self._workspace.view
        if view.row_count == 0:
            self._safe_notify("Nothing to export.", severity="warning")
            return
        path = export_path(self._workspace.current_table or "query")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self._workspace.export_csv(), encoding="utf-8")
        except OSError as exc:
            LOG.warning("CSV export failed", extra={"path": str(path), "error": str(exc)})
            self._safe_notify(f"Export failed: {exc}", severity="error")
            return
        self._workspace.flash(f"Exported {view.row_count} rows to {path}")

    def on_query_editor_run_requested(self, event: QueryEditor.RunRequested) -> None:
        self.run_sql(event.sql)
        event.stop()

    def on_results_table_detail_requested(self, event: ResultsTable.DetailRequested) -> None:
        self.show_row_detail()
        event.stop()

    async def _change_preview(self, step: Callable[[], Awaitable[bool]]) -> None:
        try:
            changed = await step()
        except WorkspaceError as exc:
            self._report(exc)
            return
        if changed:
            limit = self._workspace.preview_limit
            self._persist(self._config.with_preview_limit(limit.value))
            self._workspace.flash(f"Preview limit: {limit.label}")

    async def _guard(self, operation: Awaitable[object]) -> None:
        try:
            await operation
        except WorkspaceError as exc:
            self._report(exc)

    async def _consume_workspace_events(self) -> None:
        while True:
            await self._workspace.next_event()

    def _initial_connection(self) -> str | None:
        if self._config.active_connection and self._config.find(self._config.active_connection):
            return self._config.active_connection
        if self._config.connections:
            return self._config.connections[0].name
        return None

    def _index_of(self, name: str) -> int | None:
        return next((pos for pos, entry in enumerate(self._config.connections) if entry.name == name), None)

    def _persist(self, config: AppConfig) -> None:
        self._config = config
        try:
            save_config(config)
        except OSError as exc:
            LOG.warning("Could not save config", extra={"error": str(exc)})
            self._safe_notify(f"Could not save config: {exc}", severity="warning")

    def _install_workspace_listener(self) -> None:
        if self._workspace_unsubscribe:
            self._workspace_unsubscribe()
        self._workspace_unsubscribe = self._workspace.subscribe(self._handle_workspace_snapshot)

    def _handle_workspace_snapshot(self, snapshot: WorkspaceSnapshot) -> None:
        error = snapshot.error
        if error is not None and error is not self._last_error:
            self._safe_notify(error.describe(), severity="error")
        self._last_error = error
        if snapshot.connection is not None and self.is_running:
            self.sub_title = snapshot.connection.display_label()

    def _report(self, exc: WorkspaceError) -> None:
        # Reload failures already surfaced through the snapshot listener.
        if exc is not self._last_error:
            self._safe_notify(exc.describe(), severity="error")

    async def _shutdown(self) -> None:
        if self._workspace_unsubscribe:
            self._workspace_unsubscribe()
            self._workspace_unsubscribe = None
        await self._workspace.close()
        await super()._shutdown()

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            try:
                self.notify(escape(message), severity=severity)
            except Exception:
                LOG.exception("Failed to display notification")
        else:
            self._pending_notifications.append((message, severity))

    def _flush_pending_notifications(self) -> None:
        if not self._pending_notifications:
            return
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            try:
                self.notify(escape(message), severity=severity)
            except Exception:
                LOG.exception("Failed to display queued notification")


def main() -> None:
    """Invoke the Textual application."""

    DbtermApp().run()


if __name__ == "__main__":
    main()
