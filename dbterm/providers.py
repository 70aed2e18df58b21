"""Command palette providers for core app features."""

from __future__ import annotations

from typing import Sequence

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .models import ConnectionConfig
from .session import Workspace


class _WorkspaceProvider(Provider):
    @property
    def _workspace(self) -> Workspace | None:
        workspace = getattr(self.app, "workspace", None)
        if isinstance(workspace, Workspace):
            return workspace
        return None

    def _app_action(self, name: str, *args: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            action = getattr(self.app, name, None)
            if action is None:
                return
            action(*args)

        return _run


class ConnectionSwitchProvider(_WorkspaceProvider):
    """Expose saved connections to the command palette."""

    async def search(self, query: str) -> Hits:
        workspace = self._workspace
        if workspace is None:
            return
        matcher = self.matcher(query)
        for name, help_text in self._entries(workspace):
            match = matcher.match(name)
            if match > 0:
                yield Hit(
                    score=match,
                    match_display=f"Connect to: {matcher.highlight(name)}",
                    command=self._build_callback(name),
                    help=help_text,
                )

    async def discover(self) -> Hits:
        workspace = self._workspace
        if workspace is None:
            return
        for name, help_text in self._entries(workspace):
            yield DiscoveryHit(
                display=f"Connect to: {name}",
                command=self._build_callback(name),
                help=help_text,
            )

    def _entries(self, workspace: Workspace) -> list[tuple[str, str]]:
        connections: Sequence[ConnectionConfig] = getattr(self.app, "connections", ())
        reachability = {result.name: result for result in workspace.snapshot().reachability}
        entries: list[tuple[str, str]] = []
        for cfg in connections:
            help_text = cfg.display_label()
            probe = reachability.get(cfg.name)
            if probe is not None:
                help_text += " (online)" if probe.reachable else f" (offline: {probe.detail})"
            entries.append((cfg.name, help_text))
        return entries

    def _build_callback(self, name: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            switcher = getattr(self.app, "switch_connection", None)
            if switcher is None:
                return
            await switcher(name)

        return _run


class ConnectionManageProvider(_WorkspaceProvider):
    """Add, edit and delete saved connections."""

    async def search(self, query: str) -> Hits:
        if self._workspace is None:
            return
        matcher = self.matcher(query)
        for label, command, help_text in self._entries():
            score = matcher.match(label)
            if score > 0:
                yield Hit(score=score, match_display=matcher.highlight(label), command=command, help=help_text)

    async def discover(self) -> Hits:
        if self._workspace is None:
            return
        for label, command, help_text in self._entries():
            yield DiscoveryHit(display=label, command=command, help=help_text)

    def _entries(self) -> list[tuple[str, IgnoreReturnCallbackType, str]]:
        entries: list[tuple[str, IgnoreReturnCallbackType, str]] = [
            ("New connection", self._app_action("open_connection_form"), "Add a saved connection (ctrl+n)."),
        ]
        connections: Sequence[ConnectionConfig] = getattr(self.app, "connections", ())
        for cfg in connections:
            entries.append(
                (f"Edit connection: {cfg.name}", self._app_action("open_connection_form", cfg.name), cfg.display_label())
            )
        for cfg in connections:
            entries.append(
                (f"Delete connection: {cfg.name}", self._app_action("delete_connection", cfg.name), cfg.display_label())
            )
        return entries


class ReloadProvider(_WorkspaceProvider):
    """Expose a reload of the current results."""

    _LABEL = "Reload current results"
    _HELP = "Same as F5: re-run the last read, keeping sort and selection."

    async def search(self, query: str) -> Hits:
        if self._workspace is None:
            return
        matcher = self.matcher(query)
        score = matcher.match(self._LABEL)
        if score > 0:
            yield Hit(
                score=score,
                match_display=matcher.highlight(self._LABEL),
                command=self._app_action("action_reload"),
                help=self._HELP,
            )

    async def discover(self) -> Hits:
        if self._workspace is None:
            return
        yield DiscoveryHit(display=self._LABEL, command=self._app_action("action_reload"), help=self._HELP)


class ProbeProvider(_WorkspaceProvider):
    """Check which saved connections are reachable."""

    _LABEL = "Check saved connections"
    _HELP = "Ping every saved connection without touching the active one."

    async def search(self, query: str) -> Hits:
        if self._workspace is None:
            return
        matcher = self.matcher(query)
        score = matcher.match(self._LABEL)
        if score > 0:
            yield Hit(
                score=score,
                match_display=matcher.highlight(self._LABEL),
                command=self._app_action("probe_connections"),
                help=self._HELP,
            )

    async def discover(self) -> Hits:
        if self._workspace is None:
            return
        yield DiscoveryHit(display=self._LABEL, command=self._app_action("probe_connections"), help=self._HELP)


__all__ = ["ConnectionManageProvider", "ConnectionSwitchProvider", "ProbeProvider", "ReloadProvider"]
