"""Add or edit a saved connection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping

from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Select

from dbterm.errors import MissingFieldError, WorkspaceError
from dbterm.models import BackendKind, ConnectionConfig
from dbterm.resolver import missing_fields, parse_connection_string

_NETWORK_FIELDS = ("dsn", "host", "port", "user", "password", "database", "ssl_mode")

# Inputs shown for each backend, in form order. "name" is always shown.
FORM_FIELDS: dict[BackendKind, tuple[str, ...]] = {
    BackendKind.POSTGRES: _NETWORK_FIELDS,
    BackendKind.MYSQL: _NETWORK_FIELDS,
    BackendKind.SQLITE: ("file_path",),
    BackendKind.D1: ("account_id", "database_id", "auth_token"),
}

_LABELS = {
    "name": "Name",
    "dsn": "Connection string",
    "host": "Host",
    "port": "Port",
    "user": "User",
    "password": "Password",
    "database": "Database",
    "ssl_mode": "SSL mode",
    "file_path": "Database file",
    "account_id": "Account ID",
    "database_id": "Database ID",
    "auth_token": "API token",
}

_PASSWORD_FIELDS = frozenset({"password", "auth_token"})

ConnectionTester = Callable[[ConnectionConfig], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class ConnectionFormResult:
    config: ConnectionConfig
    connect: bool


def build_config(kind: BackendKind, values: Mapping[str, str]) -> ConnectionConfig:
    """Turn raw form values into a config, rejecting blanks before any I/O.

    Fields that do not apply to `kind` are dropped so a form that switched
    backends does not save leftovers.
    """

    name = values.get("name", "").strip()
    if not name:
        raise ValueError("Connection name is required.")
    shown = FORM_FIELDS[kind]

    def _value(key: str) -> str:
        if key not in shown:
            return ""
        text = values.get(key, "")
        return text if key in _PASSWORD_FIELDS else text.strip()

    port: int | None = None
    port_text = _value("port")
    if port_text:
        try:
            port = int(port_text)
        except ValueError:
            raise ValueError(f"Port must be a number, not {port_text!r}.") from None
        if not 0 < port < 65536:
            raise ValueError("Port must be between 1 and 65535.")
    cfg = ConnectionConfig(
        name=name,
        kind=kind,
        host=_value("host"),
        port=port,
        user=_value("user"),
        password=_value("password"),
        database=_value("database"),
        file_path=_value("file_path"),
        ssl_mode=_value("ssl_mode"),
        account_id=_value("account_id"),
        database_id=_value("database_id"),
        auth_token=_value("auth_token"),
    )
    absent = missing_fields(cfg)
    if absent:
        raise MissingFieldError(absent, kind)
    return cfg


def merge_parsed(kind: BackendKind, values: Mapping[str, str]) -> dict[str, str]:
    """Fill form values from the pasted connection string; typed values lose."""

    dsn = values.get("dsn", "").strip()
    if not dsn:
        raise ValueError("Paste a connection string first.")
    parsed = parse_connection_string(kind, dsn)
    merged = dict(values)
    for key in ("host", "user", "password", "database", "ssl_mode"):
        value = getattr(parsed, key)
        if value:
            merged[key] = value
    if parsed.port is not None:
        merged["port"] = str(parsed.port)
    merged["dsn"] = ""
    return merged


def form_values(cfg: ConnectionConfig | None) -> dict[str, str]:
    if cfg is None:
        return {key: "" for key in _LABELS}
    values = {key: str(getattr(cfg, key, "") or "") for key in _LABELS if key != "dsn"}
    values["port"] = "" if cfg.port is None else str(cfg.port)
    values["dsn"] = ""
    return values


class ConnectionFormScreen(ModalScreen[ConnectionFormResult | None]):
    """Fields follow the selected backend; nothing is saved until a save button."""

    DEFAULT_CSS = """
    ConnectionFormScreen {
        align: center middle;
    }
    #connection-form {
        width: 80;
        max-height: 90%;
        border: thick $primary;
        background: $surface;
        padding: 0 1;
    }
    #connection-form .form-row {
        height: auto;
    }
    #form-error {
        color: $error;
        height: auto;
    }
    #form-buttons {
        height: auto;
        align-horizontal: right;
    }
    """

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    def __init__(self, initial: ConnectionConfig | None = None, *, tester: ConnectionTester) -> None:
        super().__init__()
        self._initial = initial
        self._tester = tester
        self._kind = initial.kind if initial else BackendKind.POSTGRES

    @property
    def kind(self) -> BackendKind:
        return self._kind

    def compose(self) -> ComposeResult:
        title = f"Edit connection: {self._initial.name}" if self._initial else "New connection"
        values = form_values(self._initial)
        with Vertical(id="connection-form"):
            yield Label(Text(title), id="form-title")
            with VerticalScroll():
                yield Label("Type")
                yield Select(
                    [(kind.label, kind.value) for kind in BackendKind],
                    value=self._kind.value,
                    allow_blank=False,
                    id="field-kind",
                )
                for key, label in _LABELS.items():
                    with Vertical(classes="form-row", id=f"row-{key}"):
                        yield Label(label)
                        yield Input(
                            value=values[key],
                            password=key in _PASSWORD_FIELDS,
                            id=f"field-{key}",
                        )
            yield Label("", id="form-error")
            with Horizontal(id="form-buttons"):
                yield Button("Parse", id="parse-btn")
                yield Button("Test", id="test-btn")
                yield Button("Save", id="save-btn")
                yield Button("Save & Connect", variant="primary", id="connect-btn")
                yield Button("Cancel", id="cancel-btn")

    def on_mount(self) -> None:
        self._show_fields()
        self.query_one("#field-name", Input).focus()

    def on_select_changed(self, event: Select.Changed) -> None:
        if event.select.id != "field-kind" or event.value is Select.BLANK:
            return
        self._kind = BackendKind(str(event.value))
        self._show_fields()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        button = event.button.id
        if button == "cancel-btn":
            self.dismiss(None)
        elif button == "parse-btn":
            self._parse_dsn()
        elif button == "test-btn":
            cfg = self._validated()
            if cfg is not None:
                self._set_error("Testing...")
                self.run_worker(self._test(cfg), group="connection-test", exclusive=True)
        elif button in ("save-btn", "connect-btn"):
            cfg = self._validated()
            if cfg is not None:
                self.dismiss(ConnectionFormResult(cfg, connect=button == "connect-btn"))

    def action_cancel(self) -> None:
        self.dismiss(None)

    def _values(self) -> dict[str, str]:
        return {key: self.query_one(f"#field-{key}", Input).value for key in _LABELS}

    def _validated(self) -> ConnectionConfig | None:
        try:
            return build_config(self._kind, self._values())
        except (ValueError, WorkspaceError) as exc:
            self._set_error(str(exc))
            return None

    def _parse_dsn(self) -> None:
        try:
            merged = merge_parsed(self._kind, self._values())
        except (ValueError, WorkspaceError) as exc:
            self._set_error(str(exc))
            return
        for key, value in merged.items():
            self.query_one(f"#field-{key}", Input).value = value
        self._set_error("")

    async def _test(self, cfg: ConnectionConfig) -> None:
        try:
            await self._tester(cfg)
        except WorkspaceError as exc:
            self._set_error(exc.describe())
            return
        self._set_error("")
        self.notify("Connection successful")

    def _show_fields(self) -> None:
        shown = FORM_FIELDS[self._kind]
        for key in _LABELS:
            if key == "name":
                continue
            self.query_one(f"#row-{key}").display = key in shown

    def _set_error(self, message: str) -> None:
        self.query_one("#form-error", Label).update(Text(message))


__all__ = [
    "ConnectionFormResult",
    "ConnectionFormScreen",
    "FORM_FIELDS",
    "build_config",
    "form_values",
    "merge_parsed",
]
