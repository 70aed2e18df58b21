"""Concurrent reachability checks for saved connections."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Sequence

from .drivers import PoolLimits, open_driver
from .errors import WorkspaceError
from .models import ConnectionConfig, ReachabilityResult
from .pool import DriverOpener, close_quietly, open_verified
from .resolver import resolve

LOG = logging.getLogger(__name__)

PROBE_TIMEOUT = 3.0

# Probes never need more than one connection each.
_PROBE_LIMITS = PoolLimits(max_open=1, max_idle=0, max_lifetime=0)


async def probe_one(
    index: int,
    cfg: ConnectionConfig,
    *,
    timeout: float = PROBE_TIMEOUT,
    opener: DriverOpener = open_driver,
) -> ReachabilityResult:
    """Check one connection with a throwaway handle; never raises."""

    if cfg.kind.is_file_based:
        path = Path(cfg.file_path).expanduser() if cfg.file_path else None
        reachable = bool(path and path.is_file())
        detail = "file found" if reachable else "file missing"
        return ReachabilityResult(index=index, name=cfg.name, reachable=reachable, detail=detail)
    try:
        target = resolve(cfg)
        handle = await open_verified(target, cfg, opener=opener, limits=_PROBE_LIMITS, timeout=timeout)
    except WorkspaceError as exc:
        return ReachabilityResult(index=index, name=cfg.name, reachable=False, detail=exc.message)
    await close_quietly(handle)
    return ReachabilityResult(index=index, name=cfg.name, reachable=True, detail="online")


async def probe_all(
    configs: Sequence[ConnectionConfig],
    *,
    timeout: float = PROBE_TIMEOUT,
    opener: DriverOpener = open_driver,
) -> AsyncIterator[ReachabilityResult]:
    """Probe every config concurrently, yielding results as they complete."""

    tasks = [
        asyncio.ensure_future(probe_one(index, cfg, timeout=timeout, opener=opener))
        for index, cfg in enumerate(configs)
    ]
    try:
        for next_done in asyncio.as_completed(tasks):
            result = await next_done
            LOG.debug(
                "Probe finished",
                extra={"connection": result.name, "reachable": result.reachable},
            )
            yield result
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()


__all__ = ["PROBE_TIMEOUT", "probe_all", "probe_one"]
