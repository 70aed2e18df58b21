"""Ownership of the single live connection."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from .drivers import DriverHandle, PoolLimits, open_driver
from .errors import (
    ConnectionBackendError,
    QueryTimeoutError,
    WorkspaceError,
    connection_hint,
    redact,
)
from .models import BackendKind, ConnectionConfig, DialTarget
from .resolver import CONNECT_TIMEOUT, resolve

LOG = logging.getLogger(__name__)

DriverOpener = Callable[..., Awaitable[DriverHandle]]


@dataclass(slots=True)
class ActiveConnection:
    """The verified handle plus the config it was opened from."""

    handle: DriverHandle
    config: ConnectionConfig
    opened_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def kind(self) -> BackendKind:
        return self.config.kind


class ConnectionPool:
    """Opens, verifies and owns at most one active connection."""

    def __init__(
        self,
        *,
        limits: PoolLimits | None = None,
        connect_timeout: float = CONNECT_TIMEOUT,
        opener: DriverOpener = open_driver,
    ) -> None:
        self._limits = limits or PoolLimits()
        self._connect_timeout = connect_timeout
        self._opener = opener
        self._active: ActiveConnection | None = None
        self._lock = asyncio.Lock()

    @property
    def active(self) -> ActiveConnection | None:
        return self._active

    @property
    def lock(self) -> asyncio.Lock:
        """Serialises statements on the active handle."""

        return self._lock

    async def open(self, cfg: ConnectionConfig) -> DriverHandle:
        """Resolve, open and ping a new handle without touching the active one."""

        target = resolve(cfg)
        return await open_verified(
            target,
            cfg,
            opener=self._opener,
            limits=self._limits,
            timeout=self._connect_timeout,
        )

    async def swap(self, handle: DriverHandle, cfg: ConnectionConfig) -> ActiveConnection:
        """Install a verified handle, then close the previous one."""

        previous = self._active
        self._active = ActiveConnection(handle=handle, config=cfg)
        LOG.info("Active connection changed", extra={"connection": cfg.name, "backend": cfg.kind.value})
        if previous is not None and previous.handle is not handle:
            await close_quietly(previous.handle)
        return self._active

    async def connect(self, cfg: ConnectionConfig) -> ActiveConnection:
        handle = await self.open(cfg)
        return await self.swap(handle, cfg)

    async def close(self) -> None:
        active, self._active = self._active, None
        if active is not None:
            await close_quietly(active.handle)


async def open_verified(
    target: DialTarget,
    cfg: ConnectionConfig,
    *,
    opener: DriverOpener = open_driver,
    limits: PoolLimits | None = None,
    timeout: float = CONNECT_TIMEOUT,
) -> DriverHandle:
    """Open a handle and ping it; close it again if verification fails."""

    async def _open_and_ping() -> DriverHandle:
        handle = await opener(target, limits=limits, timeout=timeout)
        try:
            await handle.ping()
        except BaseException:
            await close_quietly(handle)
            raise
        return handle

    try:
        return await asyncio.wait_for(_open_and_ping(), timeout)
    except asyncio.TimeoutError:
        raise QueryTimeoutError(
            f"Could not reach {cfg.kind.label} '{cfg.name}' within {timeout:g}s.",
            hint=connection_hint("timed out", cfg),
        ) from None
    except WorkspaceError:
        raise
    except Exception as exc:
        message = redact(str(exc) or type(exc).__name__, target.secrets)
        LOG.debug("Connection attempt failed", extra={"connection": cfg.name, "error": message})
        raise ConnectionBackendError(
            f"Could not reach {cfg.kind.label} '{cfg.name}': {message}",
            hint=connection_hint(message, cfg),
        ) from exc


async def close_quietly(handle: DriverHandle) -> None:
    try:
        await handle.close()
    except Exception:  # pragma: no cover - best effort cleanup
        LOG.debug("Ignoring error while closing a handle", exc_info=True)


__all__ = ["ActiveConnection", "ConnectionPool", "PoolLimits", "close_quietly", "open_verified"]
