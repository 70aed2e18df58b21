"""Tests for the single-active-connection pool."""

from __future__ import annotations

import asyncio

import pytest

from dbterm.drivers import PoolLimits
from dbterm.errors import ConnectionBackendError, MissingFieldError, QueryTimeoutError
from dbterm.models import BackendKind, ConnectionConfig, DialTarget
from dbterm.pool import ConnectionPool, open_verified


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _Handle:
    kind = BackendKind.POSTGRES

    def __init__(self, name: str, *, ping_error: Exception | None = None, ping_delay: float = 0.0) -> None:
        self.name = name
        self.ping_error = ping_error
        self.ping_delay = ping_delay
        self.closed = False

    async def ping(self) -> None:
        if self.ping_delay:
            await asyncio.sleep(self.ping_delay)
        if self.ping_error:
            raise self.ping_error

    async def fetch(self, sql: str):  # type: ignore[no-untyped-def]  # pragma: no cover
        raise AssertionError("not used")

    async def execute(self, sql: str) -> int:  # pragma: no cover
        raise AssertionError("not used")

    async def close(self) -> None:
        self.closed = True


class _Opener:
    """Hands out prepared handles in order and records the targets it saw."""

    def __init__(self, *handles: _Handle) -> None:
        self._handles = list(handles)
        self.targets: list[DialTarget] = []
        self.limits: list[PoolLimits | None] = []

    async def __call__(self, target: DialTarget, *, limits: PoolLimits | None, timeout: float) -> _Handle:
        self.targets.append(target)
        self.limits.append(limits)
        return self._handles.pop(0)


def _cfg(name: str = "Local", password: str = "hunter2") -> ConnectionConfig:
    return ConnectionConfig(
        name=name,
        kind=BackendKind.POSTGRES,
        host="db",
        user="app",
        password=password,
        database="shop",
    )


@pytest.mark.anyio
async def test_connect_installs_verified_handle() -> None:
    handle = _Handle("first")
    opener = _Opener(handle)
    pool = ConnectionPool(opener=opener)

    active = await pool.connect(_cfg())

    assert active.handle is handle
    assert active.kind is BackendKind.POSTGRES
    assert pool.active is active
    assert opener.targets[0].driver == "asyncpg"
    assert opener.limits[0] == PoolLimits(max_open=5, max_idle=2, max_lifetime=300.0)


@pytest.mark.anyio
async def test_failed_switch_keeps_previous_connection() -> None:
    good = _Handle("good")
    bad = _Handle("bad", ping_error=OSError("connection refused"))
    pool = ConnectionPool(opener=_Opener(good, bad))
    await pool.connect(_cfg("Primary"))

    with pytest.raises(ConnectionBackendError) as excinfo:
        await pool.connect(_cfg("Replica"))

    assert pool.active is not None and pool.active.handle is good
    assert good.closed is False
    assert bad.closed is True
    assert excinfo.value.hint is not None and "running on db" in excinfo.value.hint


@pytest.mark.anyio
async def test_successful_switch_closes_old_handle_after_new_is_ready() -> None:
    first = _Handle("first")
    second = _Handle("second")
    pool = ConnectionPool(opener=_Opener(first, second))
    await pool.connect(_cfg("One"))

    await pool.connect(_cfg("Two"))

    assert pool.active is not None and pool.active.handle is second
    assert pool.active.config.name == "Two"
    assert first.closed is True
    assert second.closed is False


@pytest.mark.anyio
async def test_missing_fields_fail_before_any_io() -> None:
    opener = _Opener()
    pool = ConnectionPool(opener=opener)

    with pytest.raises(MissingFieldError):
        await pool.connect(ConnectionConfig(name="Empty"))

    assert opener.targets == []


@pytest.mark.anyio
async def test_connect_errors_never_leak_the_password() -> None:
    bad = _Handle("bad", ping_error=RuntimeError("auth failed for postgresql://app:hunter2@db/shop"))
    pool = ConnectionPool(opener=_Opener(bad))

    with pytest.raises(ConnectionBackendError) as excinfo:
        await pool.connect(_cfg())

    assert "hunter2" not in excinfo.value.describe()


@pytest.mark.anyio
async def test_open_verified_times_out() -> None:
    slow = _Handle("slow", ping_delay=5.0)
    cfg = _cfg()
    target = DialTarget(kind=cfg.kind, driver="asyncpg", dsn="postgresql://db")

    with pytest.raises(QueryTimeoutError):
        await open_verified(target, cfg, opener=_Opener(slow), timeout=0.05)

    assert slow.closed is True


@pytest.mark.anyio
async def test_close_is_idempotent() -> None:
    handle = _Handle("only")
    pool = ConnectionPool(opener=_Opener(handle))
    await pool.connect(_cfg())

    await pool.close()
    await pool.close()

    assert handle.closed is True
    assert pool.active is None
