"""Transient status-line messages that revert after a delay."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from typing import Any

FLASH_SECONDS = 3.0


class StatusFlash:
    """Holds the flashed message and decides which revert is still current.

    Each flash gets a token. Only the newest token may clear the message, so a
    timer left over from an older flash never wipes a newer one.
    """

    def __init__(self, delay: float = FLASH_SECONDS) -> None:
        self._delay = delay
        self._tokens = itertools.count(1)
        self._token = 0
        self._message: str | None = None
        self._timer: asyncio.Task[Any] | None = None

    @property
    def message(self) -> str | None:
        return self._message

    @property
    def token(self) -> int:
        return self._token

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def next_token(self) -> int:
        return next(self._tokens)

    def show(self, token: int, message: str) -> bool:
        """Display `message` unless a newer flash is already showing."""

        if token < self._token:
            return False
        self._token = token
        self._message = message
        return True

    def revert(self, token: int) -> bool:
        """Clear the message if `token` is still the current flash."""

        if token != self._token or self._message is None:
            return False
        self._message = None
        return True

    def schedule(self, token: int, expire: Callable[[int], Awaitable[Any]]) -> asyncio.Task[Any]:
        """Call `expire(token)` after the delay, replacing any pending timer."""

        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._expire_later(token, expire))
        return self._timer

    def cancel(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None

    async def _expire_later(self, token: int, expire: Callable[[int], Awaitable[Any]]) -> None:
        try:
            await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            return
        await expire(token)


__all__ = ["FLASH_SECONDS", "StatusFlash"]
