"""App configuration and saved-connection store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, field_validator

from .models import BackendKind, ConnectionConfig
from .viewstate import DEFAULT_PREVIEW_LIMIT

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "dbterm" / "config.toml"

_STRING_FIELDS = (
    "name",
    "host",
    "user",
    "password",
    "database",
    "file_path",
    "ssl_mode",
    "account_id",
    "database_id",
    "auth_token",
    "last_used",
)


class ConnectionProfileConfig(BaseModel):
    """Connection entry stored in config.toml."""

    name: str
    kind: BackendKind = BackendKind.POSTGRES
    host: str = ""
    port: int | None = None
    user: str = ""
    password: str = Field(default="", repr=False)
    database: str = ""
    file_path: str = ""
    ssl_mode: str = ""
    account_id: str = ""
    database_id: str = ""
    auth_token: str = Field(default="", repr=False)
    last_used: str | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: object) -> object:
        if isinstance(value, str):
            return BackendKind.parse(value)
        return value

    def to_connection(self) -> ConnectionConfig:
        """Runtime value handed to the workspace."""

        return ConnectionConfig(
            name=self.name,
            kind=self.kind,
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            database=self.database,
            file_path=self.file_path,
            ssl_mode=self.ssl_mode,
            account_id=self.account_id,
            database_id=self.database_id,
            auth_token=self.auth_token,
        )

    @classmethod
    def from_connection(cls, cfg: ConnectionConfig, *, last_used: str | None = None) -> ConnectionProfileConfig:
        return cls(
            name=cfg.name,
            kind=cfg.kind,
            host=cfg.host,
            port=cfg.port,
            user=cfg.user,
            password=cfg.password,
            database=cfg.database,
            file_path=cfg.file_path,
            ssl_mode=cfg.ssl_mode,
            account_id=cfg.account_id,
            database_id=cfg.database_id,
            auth_token=cfg.auth_token,
            last_used=last_used,
        )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    preview_limit: int | None = DEFAULT_PREVIEW_LIMIT
    connections: list[ConnectionProfileConfig] = Field(default_factory=list)
    active_connection: str | None = None

    def connection_configs(self) -> tuple[ConnectionConfig, ...]:
        return tuple(entry.to_connection() for entry in self.connections)

    def find(self, name: str) -> ConnectionProfileConfig | None:
        for entry in self.connections:
            if entry.name == name:
                return entry
        return None

    def with_connection_added(self, cfg: ConnectionConfig) -> AppConfig:
        """Return a copy with a new connection appended."""

        entry = ConnectionProfileConfig.from_connection(cfg, last_used=_now())
        return self.model_copy(update={"connections": [*self.connections, entry]})

    def with_connection_updated(self, index: int, cfg: ConnectionConfig) -> AppConfig:
        """Return a copy with the connection at `index` replaced."""

        self._check_index(index)
        connections = list(self.connections)
        connections[index] = ConnectionProfileConfig.from_connection(cfg, last_used=connections[index].last_used)
        update: dict[str, object] = {"connections": connections}
        if self.active_connection == self.connections[index].name:
            update["active_connection"] = cfg.name
        return self.model_copy(update=update)

    def with_connection_removed(self, index: int) -> AppConfig:
        """Return a copy without the connection at `index`."""

        self._check_index(index)
        removed = self.connections[index]
        connections = [entry for pos, entry in enumerate(self.connections) if pos != index]
        update: dict[str, object] = {"connections": connections}
        if self.active_connection == removed.name:
            update["active_connection"] = None
        return self.model_copy(update=update)

    def with_connection_used(self, index: int) -> AppConfig:
        """Mark a connection active and stamp its last-used time."""

        self._check_index(index)
        connections = list(self.connections)
        entry = connections[index].model_copy(update={"last_used": _now()})
        connections[index] = entry
        return self.model_copy(update={"connections": connections, "active_connection": entry.name})

    def with_preview_limit(self, limit: int | None) -> AppConfig:
        return self.model_copy(update={"preview_limit": limit})

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.connections):
            raise IndexError("index out of range")


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Could not read config; using defaults", extra={"path": str(CONFIG_FILE)})
        return AppConfig()

    connections = [ConnectionProfileConfig(**entry) for entry in data.get("connections", [])]  # type: ignore[union-attr]
    preview_limit = data.get("preview_limit", DEFAULT_PREVIEW_LIMIT)
    return AppConfig(
        theme=data.get("theme", AppConfig.model_fields["theme"].default),
        preview_limit=None if preview_limit == -1 else preview_limit,
        connections=connections,
        active_connection=data.get("active_connection"),
    )


def save_config(config: AppConfig) -> None:
    """Rewrite the whole file through a temp file and an atomic rename."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    content = render_config(config)
    fd, tmp_name = tempfile.mkstemp(prefix=".config-", suffix=".toml", dir=CONFIG_FILE.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, CONFIG_FILE)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def export_path(stem: str) -> Path:
    """CSV destination beside the config file, stamped with the local time."""

    safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in stem) or "results"
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return CONFIG_FILE.parent / f"{safe}-{stamp}.csv"


def render_config(config: AppConfig) -> str:
    lines: list[str] = [
        f"theme = {_toml_string(config.theme)}",
        f"preview_limit = {-1 if config.preview_limit is None else config.preview_limit}",
    ]
    if config.active_connection:
        lines.append(f"active_connection = {_toml_string(config.active_connection)}")
    for entry in config.connections:
        lines.append("")
        lines.append("[[connections]]")
        lines.append(f"name = {_toml_string(entry.name)}")
        lines.append(f"kind = {_toml_string(entry.kind.value)}")
        if entry.port is not None:
            lines.append(f"port = {entry.port}")
        for key in _STRING_FIELDS[1:]:
            value = getattr(entry, key)
            if value:
                lines.append(f"{key} = {_toml_string(value)}")
    return "\n".join(lines) + "\n"


def _toml_string(value: str) -> str:
    # JSON string escapes are a subset of TOML basic-string escapes. TOML also
    # rejects a raw DEL, which JSON leaves alone.
    return json.dumps(value, ensure_ascii=False).replace("\x7f", "\\u007f")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    theme = raw.get("theme")
    if isinstance(theme, str):
        data["theme"] = theme
    preview_limit = raw.get("preview_limit")
    if isinstance(preview_limit, int) and not isinstance(preview_limit, bool):
        data["preview_limit"] = preview_limit
    active = raw.get("active_connection")
    if isinstance(active, str):
        data["active_connection"] = active
    entries = raw.get("connections")
    if isinstance(entries, list):
        parsed_entries: list[dict[str, object]] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            parsed: dict[str, object] = {}
            for key in _STRING_FIELDS:
                value = entry.get(key)
                if isinstance(value, str):
                    parsed[key] = value
            kind = entry.get("kind")
            if isinstance(kind, str):
                try:
                    parsed["kind"] = BackendKind.parse(kind)
                except ValueError:
                    LOG.warning("Skipping connection with unknown kind", extra={"kind": kind})
                    continue
            port = entry.get("port")
            if isinstance(port, int) and not isinstance(port, bool):
                parsed["port"] = port
            elif isinstance(port, str) and port.isdigit():
                parsed["port"] = int(port)
            if parsed.get("name"):
                parsed_entries.append(parsed)
        data["connections"] = parsed_entries
    return data


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="seconds")


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConnectionProfileConfig",
    "export_path",
    "load_config",
    "render_config",
    "save_config",
]
