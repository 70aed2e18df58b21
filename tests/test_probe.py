"""Tests for concurrent reachability probing."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from dbterm.drivers import PoolLimits
from dbterm.models import BackendKind, ConnectionConfig, DialTarget
from dbterm.probe import probe_all, probe_one


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _ProbeHandle:
    kind = BackendKind.POSTGRES

    def __init__(self, delay: float, error: Exception | None) -> None:
        self.delay = delay
        self.error = error
        self.closed = False

    async def ping(self) -> None:
        await asyncio.sleep(self.delay)
        if self.error:
            raise self.error

    async def fetch(self, sql: str):  # type: ignore[no-untyped-def]  # pragma: no cover
        raise AssertionError("probes never query")

    async def execute(self, sql: str) -> int:  # pragma: no cover
        raise AssertionError("probes never query")

    async def close(self) -> None:
        self.closed = True


class _HostOpener:
    """Behaviour keyed by host name: (ping delay, ping error)."""

    def __init__(self, plan: dict[str, tuple[float, Exception | None]]) -> None:
        self.plan = plan
        self.handles: list[_ProbeHandle] = []
        self.limits: list[PoolLimits | None] = []

    async def __call__(self, target: DialTarget, *, limits: PoolLimits | None, timeout: float) -> _ProbeHandle:
        host = target.dsn.split("@", 1)[1].split(":", 1)[0]
        delay, error = self.plan[host]
        handle = _ProbeHandle(delay, error)
        self.handles.append(handle)
        self.limits.append(limits)
        return handle


def _pg(name: str, host: str) -> ConnectionConfig:
    return ConnectionConfig(name=name, kind=BackendKind.POSTGRES, host=host, user="u", database="d")


@pytest.mark.anyio
async def test_results_arrive_as_they_complete() -> None:
    opener = _HostOpener({"slow": (0.2, None), "fast": (0.0, None), "down": (0.05, OSError("connection refused"))})
    configs = [_pg("Slow", "slow"), _pg("Fast", "fast"), _pg("Down", "down")]

    results = [result async for result in probe_all(configs, timeout=1.0, opener=opener)]

    assert [result.name for result in results] == ["Fast", "Down", "Slow"]
    assert [result.index for result in results] == [1, 2, 0]
    assert results[0].reachable is True
    assert results[1].reachable is False
    assert "refused" in results[1].detail
    assert all(handle.closed for handle in opener.handles)
    assert all(limits is not None and limits.max_open == 1 for limits in opener.limits)


@pytest.mark.anyio
async def test_each_probe_respects_its_own_timeout() -> None:
    opener = _HostOpener({"hung": (5.0, None), "ok": (0.0, None)})

    loop = asyncio.get_running_loop()
    started = loop.time()
    results = [
        result async for result in probe_all([_pg("Hung", "hung"), _pg("Ok", "ok")], timeout=0.1, opener=opener)
    ]

    assert loop.time() - started < 1.0
    by_name = {result.name: result for result in results}
    assert by_name["Ok"].reachable is True
    assert by_name["Hung"].reachable is False


@pytest.mark.anyio
async def test_sqlite_probe_only_checks_the_file(tmp_path: Path) -> None:
    present = tmp_path / "app.db"
    present.write_bytes(b"")

    async def _never_open(*args: object, **kwargs: object) -> None:
        raise AssertionError("file backends must not be opened")

    found = await probe_one(0, ConnectionConfig(name="Here", kind=BackendKind.SQLITE, file_path=str(present)), opener=_never_open)
    missing = await probe_one(
        1,
        ConnectionConfig(name="Gone", kind=BackendKind.SQLITE, file_path=str(tmp_path / "gone.db")),
        opener=_never_open,
    )

    assert found.reachable is True
    assert missing.reachable is False
    assert missing.detail == "file missing"


@pytest.mark.anyio
async def test_invalid_configs_become_unreachable_results() -> None:
    result = await probe_one(3, ConnectionConfig(name="Blank", kind=BackendKind.MYSQL))

    assert result.index == 3
    assert result.reachable is False
    assert "Required fields missing" in result.detail


@pytest.mark.anyio
async def test_probe_all_with_no_configs_yields_nothing() -> None:
    assert [result async for result in probe_all([])] == []
