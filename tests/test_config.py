"""Tests for AppConfig helpers."""

from __future__ import annotations

import stat
import tomllib
from pathlib import Path

import pytest

from dbterm import config as config_module
from dbterm.config import AppConfig, ConnectionProfileConfig, export_path, load_config, render_config, save_config
from dbterm.models import BackendKind, ConnectionConfig


def _sqlite(name: str, path: str = "/tmp/app.db") -> ConnectionConfig:
    return ConnectionConfig(name=name, kind=BackendKind.SQLITE, file_path=path)


def test_load_config_returns_defaults_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config.toml")

    result = load_config()

    assert result == AppConfig()
    assert result.preview_limit == 100


def test_load_config_reads_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
theme = "light"
preview_limit = 250
active_connection = "Local"

[[connections]]
name = "Local"
kind = "postgres"
host = "localhost"
port = 5433
user = "app"
password = "secret"
database = "shop"

[[connections]]
name = "Edge"
kind = "cloudflare-d1"
account_id = "acc"
database_id = "db"
auth_token = "tok"
""".strip(),
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    result = load_config()

    assert result.theme == "light"
    assert result.preview_limit == 250
    assert result.active_connection == "Local"
    local, edge = result.connection_configs()
    assert local.kind is BackendKind.POSTGRES
    assert local.port == 5433
    assert local.password == "secret"
    assert edge.kind is BackendKind.D1
    assert edge.auth_token == "tok"


def test_load_config_treats_minus_one_as_unbounded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("preview_limit = -1\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    assert load_config().preview_limit is None


def test_load_config_skips_unknown_kinds(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
[[connections]]
name = "Legacy"
kind = "oracle"

[[connections]]
name = "File"
kind = "sqlite"
file_path = "/tmp/x.db"

[[connections]]
kind = "mysql"
""".strip(),
        encoding="utf-8",
    )
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    result = load_config()

    assert [entry.name for entry in result.connections] == ["File"]


def test_load_config_falls_back_on_invalid_toml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("theme = [unterminated", encoding="utf-8")
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    assert load_config() == AppConfig()


def test_save_config_round_trips(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "nested" / "config.toml"
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)
    tricky = ConnectionConfig(
        name='Quote "me"',
        kind=BackendKind.MYSQL,
        host="db",
        user="root",
        password='p"w\\d',
        database="inv",
    )
    config = AppConfig(theme="light", preview_limit=None).with_connection_added(tricky).with_connection_used(0)

    save_config(config)
    loaded = load_config()

    assert loaded.theme == "light"
    assert loaded.preview_limit is None
    assert loaded.active_connection == 'Quote "me"'
    assert loaded.connection_configs() == (tricky,)
    assert loaded.connections[0].last_used == config.connections[0].last_used


def test_control_characters_survive_a_save(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)
    odd = ConnectionConfig(
        name="Ctl\x7fdb",
        kind=BackendKind.POSTGRES,
        host="db",
        user="app",
        password="a\x7fb\x01c\td",
        database="main",
    )

    save_config(AppConfig().with_connection_added(odd))

    assert "\x7f" not in config_path.read_text()
    assert tomllib.loads(config_path.read_text())["connections"][0]["password"] == "a\x7fb\x01c\td"
    assert load_config().connection_configs() == (odd,)


def test_save_config_is_private_and_leaves_no_temp_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    save_config(AppConfig().with_connection_added(_sqlite("Local")))

    assert stat.S_IMODE(config_path.stat().st_mode) == 0o600
    assert [path.name for path in tmp_path.iterdir()] == ["config.toml"]


def test_render_config_omits_empty_fields() -> None:
    config = AppConfig().with_connection_added(_sqlite("Local"))

    rendered = render_config(config)
    parsed = tomllib.loads(rendered)

    assert "host" not in rendered
    assert "active_connection" not in rendered
    assert parsed["preview_limit"] == 100
    assert parsed["connections"][0]["kind"] == "sqlite"


def test_profile_repr_hides_secrets() -> None:
    entry = ConnectionProfileConfig(name="x", password="hunter2", auth_token="tok123")

    assert "hunter2" not in repr(entry)
    assert "tok123" not in repr(entry)


def test_profile_parses_kind_aliases() -> None:
    assert ConnectionProfileConfig(name="x", kind="pg").kind is BackendKind.POSTGRES
    assert ConnectionProfileConfig(name="y", kind="mariadb").kind is BackendKind.MYSQL


def test_with_connection_updated_renames_active() -> None:
    config = AppConfig().with_connection_added(_sqlite("Old")).with_connection_used(0)

    updated = config.with_connection_updated(0, _sqlite("New", "/tmp/new.db"))

    assert updated.active_connection == "New"
    assert updated.connections[0].file_path == "/tmp/new.db"
    assert updated.connections[0].last_used == config.connections[0].last_used
    assert config.connections[0].name == "Old"


def test_with_connection_removed_clears_active() -> None:
    config = AppConfig().with_connection_added(_sqlite("A")).with_connection_added(_sqlite("B")).with_connection_used(1)

    removed = config.with_connection_removed(1)

    assert [entry.name for entry in removed.connections] == ["A"]
    assert removed.active_connection is None


def test_index_helpers_reject_out_of_range() -> None:
    config = AppConfig().with_connection_added(_sqlite("A"))

    with pytest.raises(IndexError):
        config.with_connection_used(3)
    with pytest.raises(IndexError):
        config.with_connection_removed(-1)


def test_find_returns_matching_entry() -> None:
    config = AppConfig().with_connection_added(_sqlite("A"))

    assert config.find("A") is config.connections[0]
    assert config.find("missing") is None


def test_export_path_sits_beside_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config.toml")

    path = export_path("sales.orders")

    assert path.parent == tmp_path
    assert path.name.startswith("sales_orders-")
    assert path.suffix == ".csv"
