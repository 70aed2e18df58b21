"""Workspace orchestrating the active connection, queries and the result view."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence, TypeVar, Union

from .drivers import open_driver
from .errors import QueryExecutionError, QueryTimeoutError, WorkspaceError, classify_error, redact
from .flash import FLASH_SECONDS, StatusFlash
from .models import BackendKind, ConnectionConfig, ReachabilityResult, ResultGrid
from .pool import ActiveConnection, ConnectionPool, DriverOpener, close_quietly, open_verified
from .probe import PROBE_TIMEOUT, probe_all
from .query import QUERY_TIMEOUT, QueryExecutor, QueryResult, ReadResult, WriteResult, preview_query
from .resolver import resolve
from .schema import list_tables
from .viewstate import DEFAULT_PREVIEW_LIMIT, PreviewLimit, ResultViewState, SelectionState, SortState

LOG = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Connected:
    seq: int
    config: ConnectionConfig
    tables: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class TablesLoaded:
    tables: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ResultLoaded:
    """A grid for the results pane; `preserve` keeps sort and selection."""

    seq: int
    result: ReadResult
    table: str | None
    preserve: bool = False


@dataclass(frozen=True, slots=True)
class WriteApplied:
    result: WriteResult


@dataclass(frozen=True, slots=True)
class ReloadFailed:
    seq: int
    error: WorkspaceError


@dataclass(frozen=True, slots=True)
class ProbeReported:
    result: ReachabilityResult


@dataclass(frozen=True, slots=True)
class ProbeFinished:
    total: int


@dataclass(frozen=True, slots=True)
class StatusFlashed:
    token: int
    message: str


@dataclass(frozen=True, slots=True)
class StatusReverted:
    token: int


WorkspaceEvent = Union[
    Connected,
    TablesLoaded,
    ResultLoaded,
    WriteApplied,
    ReloadFailed,
    ProbeReported,
    ProbeFinished,
    StatusFlashed,
    StatusReverted,
]


@dataclass(frozen=True, slots=True)
class WorkspaceSnapshot:
    """Everything the UI needs to render the workspace."""

    connection: ConnectionConfig | None
    tables: tuple[str, ...]
    current_table: str | None
    grid: ResultGrid
    sort: SortState
    selection: SelectionState
    preview_limit: int | None
    preview_label: str
    sort_label: str
    status: str
    elapsed: float | None = None
    error: WorkspaceError | None = None
    last_sql: str | None = None
    reachability: tuple[ReachabilityResult, ...] = field(default=())

    @property
    def connected(self) -> bool:
        return self.connection is not None


WorkspaceListener = Callable[[WorkspaceSnapshot], None]


class Workspace:
    """Single owner of the active connection and the result view.

    Foreground coroutines (`connect`, `browse`, `run_sql`, `reload`) await their
    I/O and then hand the outcome to `apply`. Background tasks (`spawn_reload`,
    `spawn_probe`, status flash reversion) only put events on the queue; whoever
    consumes the queue calls `apply`, which is the only writer of view state.
    """

    def __init__(
        self,
        *,
        pool: ConnectionPool | None = None,
        executor: QueryExecutor | None = None,
        preview_limit: int | None = DEFAULT_PREVIEW_LIMIT,
        opener: DriverOpener = open_driver,
        probe_timeout: float = PROBE_TIMEOUT,
        flash_seconds: float = FLASH_SECONDS,
    ) -> None:
        self._opener = opener
        self._pool = pool or ConnectionPool(opener=opener)
        self._executor = executor or QueryExecutor()
        self._probe_timeout = probe_timeout
        self._view = ResultViewState()
        self._limit = PreviewLimit(preview_limit)
        self._events: asyncio.Queue[WorkspaceEvent] = asyncio.Queue()
        self._listeners: set[WorkspaceListener] = set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._flash = StatusFlash(flash_seconds)
        self._seq = itertools.count(1)
        self._applied_seq = 0
        self._tables: tuple[str, ...] = ()
        self._current_table: str | None = None
        self._last_sql: str | None = None
        self._last_read_sql: str | None = None
        self._status = "Not connected"
        self._elapsed: float | None = None
        self._error: WorkspaceError | None = None
        self._reachability: dict[int, ReachabilityResult] = {}

    @property
    def active(self) -> ActiveConnection | None:
        return self._pool.active

    @property
    def view(self) -> ResultViewState:
        return self._view

    @property
    def preview_limit(self) -> PreviewLimit:
        return self._limit

    @property
    def tables(self) -> tuple[str, ...]:
        return self._tables

    @property
    def current_table(self) -> str | None:
        return self._current_table

    @property
    def events(self) -> asyncio.Queue[WorkspaceEvent]:
        return self._events

    def snapshot(self) -> WorkspaceSnapshot:
        active = self._pool.active
        return WorkspaceSnapshot(
            connection=active.config if active else None,
            tables=self._tables,
            current_table=self._current_table,
            grid=self._view.grid,
            sort=self._view.sort,
            selection=self._view.selection,
            preview_limit=self._limit.value,
            preview_label=self._limit.label,
            sort_label=self._view.sort_label(),
            status=self._flash.message or self._status,
            elapsed=self._elapsed,
            error=self._error,
            last_sql=self._last_sql,
            reachability=tuple(self._reachability[index] for index in sorted(self._reachability)),
        )

    def subscribe(self, listener: WorkspaceListener) -> Callable[[], None]:
        """Subscribe to workspace updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        listener(self.snapshot())

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    # Foreground operations -------------------------------------------------

    async def connect(self, cfg: ConnectionConfig) -> WorkspaceSnapshot:
        """Open and verify `cfg`, list its tables, then replace the active connection.

        Any failure leaves the previous connection and view untouched.
        """

        handle = await self._pool.open(cfg)
        executor = self._executor.with_secrets(cfg.secrets)
        try:
            tables = await self._guarded(list_tables(handle, cfg.kind), executor)
        except BaseException:
            await close_quietly(handle)
            raise
        async with self._pool.lock:
            seq = next(self._seq)
            await self._pool.swap(handle, cfg)
        self._executor = executor
        self.apply(Connected(seq=seq, config=cfg, tables=tables))
        return self.snapshot()

    async def test_connection(self, cfg: ConnectionConfig) -> None:
        """Verify `cfg` with a throwaway handle; the active connection is not touched."""

        handle = await open_verified(resolve(cfg), cfg, opener=self._opener)
        await close_quietly(handle)

    async def refresh_tables(self) -> tuple[str, ...]:
        active = self._require_active()
        async with self._pool.lock:
            tables = await self._guarded(list_tables(active.handle, active.kind), self._executor)
        self.apply(TablesLoaded(tables))
        return tables

    async def browse(self, table: str) -> ReadResult:
        """Preview `table` up to the current preview limit, from the top."""

        seq, result = await self._run_locked(lambda kind: preview_query(kind, table, self._limit.value))
        if not isinstance(result, ReadResult):  # pragma: no cover - previews always read
            raise QueryExecutionError("Expected rows from a read statement.", sql=result.sql)
        self.apply(ResultLoaded(seq=seq, result=result, table=table))
        return result

    async def run_sql(self, text: str) -> QueryResult:
        """Run user SQL; writes refresh the table list and the current browse.

        A write that committed is always returned. If the follow-up refresh
        fails, that failure is reported on the snapshot instead of raised.
        """

        seq, result = await self._run_locked(lambda kind: text)
        if isinstance(result, ReadResult):
            self.apply(ResultLoaded(seq=seq, result=result, table=None))
            return result
        self.apply(WriteApplied(result))
        try:
            await self.refresh_tables()
            if self._current_table is not None and self._current_table in self._tables:
                await self.reload()
        except WorkspaceError as exc:
            LOG.warning("Refresh after write failed", extra={"error": exc.message})
            if exc is not self._error:
                self.apply(ReloadFailed(seq=self._applied_seq, error=exc))
        return result

    async def reload(self) -> ReadResult | None:
        """Re-run the last read and keep sort, selection and scroll position."""

        event = await self._reload_locked()
        if event is None:
            return None
        self.apply(event)
        if isinstance(event, ReloadFailed):
            raise event.error
        return event.result

    async def increase_preview_limit(self) -> bool:
        return await self._change_limit(self._limit.increase)

    async def decrease_preview_limit(self) -> bool:
        return await self._change_limit(self._limit.decrease)

    async def toggle_unlimited_preview(self) -> bool:
        return await self._change_limit(self._limit.toggle_unlimited)

    def toggle_sort(self, column: int) -> SortState:
        state = self._view.toggle_sort(column)
        self._notify()
        return state

    def clear_sort(self) -> SortState:
        """Back to the order the backend returned."""

        state = self._view.clear_sort()
        self._notify()
        return state

    def select(self, row: int, column: int | None = None) -> SelectionState:
        state = self._view.select(row, column)
        self._notify()
        return state

    def scroll_to(self, offset_row: int, offset_column: int | None = None) -> SelectionState:
        state = self._view.scroll_to(offset_row, offset_column)
        self._notify()
        return state

    def export_csv(self) -> str:
        return self._view.export_csv()

    # Background operations -------------------------------------------------

    def spawn_reload(self) -> asyncio.Task[None]:
        """Reload in the background; the outcome arrives on the event queue."""

        return self._spawn(self._background_reload())

    def spawn_probe(self, configs: Sequence[ConnectionConfig]) -> asyncio.Task[None]:
        """Probe saved connections concurrently; each result is queued as it lands."""

        self._reachability.clear()
        return self._spawn(self._background_probe(tuple(configs)))

    def flash(self, message: str) -> None:
        """Show `message` in the status line, reverting after a short delay."""

        token = self._flash.next_token()
        self.apply(StatusFlashed(token=token, message=message))
        self._flash.schedule(token, self._queue_revert)

    def apply(self, event: WorkspaceEvent) -> bool:
        """Fold one event into workspace state; returns False when it was stale."""

        if isinstance(event, Connected):
            if not self._accept(event.seq):
                return False
            self._tables = event.tables
            self._current_table = None
            self._last_sql = None
            self._last_read_sql = None
            self._elapsed = None
            self._error = None
            self._view.reset(ResultGrid())
            self._status = f"Connected to {event.config.display_label()}"
        elif isinstance(event, TablesLoaded):
            self._tables = event.tables
        elif isinstance(event, ResultLoaded):
            if event.preserve and not self._still_showing(event):
                LOG.debug("Dropping reload for a view that moved on", extra={"table": event.table})
                return False
            if not self._accept(event.seq):
                LOG.debug("Dropping stale result", extra={"seq": event.seq, "applied": self._applied_seq})
                return False
            if event.preserve:
                self._view.load(event.result.grid)
            else:
                self._view.reset(event.result.grid)
                self._current_table = event.table
            self._last_sql = event.result.sql
            self._last_read_sql = event.result.sql
            self._elapsed = event.result.elapsed
            self._error = None
            self._status = event.result.status
        elif isinstance(event, WriteApplied):
            self._last_sql = event.result.sql
            self._elapsed = event.result.elapsed
            self._error = None
            self._status = event.result.status
        elif isinstance(event, ReloadFailed):
            if event.seq < self._applied_seq:
                return False
            self._error = event.error
            self._status = event.error.describe()
        elif isinstance(event, ProbeReported):
            self._reachability[event.result.index] = event.result
        elif isinstance(event, ProbeFinished):
            online = sum(1 for result in self._reachability.values() if result.reachable)
            self._status = f"{online}/{event.total} connections reachable"
        elif isinstance(event, StatusFlashed):
            if not self._flash.show(event.token, event.message):
                return False
        elif isinstance(event, StatusReverted):
            if not self._flash.revert(event.token):
                return False
        else:  # pragma: no cover - exhaustive over WorkspaceEvent
            raise TypeError(f"Unknown workspace event: {event!r}")
        self._notify()
        return True

    def drain(self) -> int:
        """Apply every queued event without waiting; returns how many were applied."""

        applied = 0
        while True:
            try:
                event = self._events.get_nowait()
            except asyncio.QueueEmpty:
                return applied
            if self.apply(event):
                applied += 1

    async def next_event(self) -> WorkspaceEvent:
        """Wait for one queued event and apply it."""

        event = await self._events.get()
        self.apply(event)
        return event

    async def close(self) -> None:
        self._flash.cancel()
        for task in tuple(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._pool.close()

    # Internals -------------------------------------------------------------

    def _require_active(self) -> ActiveConnection:
        active = self._pool.active
        if active is None:
            raise QueryExecutionError("Connect to a database first.")
        return active

    def _accept(self, seq: int) -> bool:
        if seq < self._applied_seq:
            return False
        self._applied_seq = seq
        return True

    def _still_showing(self, event: ResultLoaded) -> bool:
        if event.table != self._current_table:
            return False
        return event.table is not None or event.result.sql == self._last_read_sql

    async def _run_locked(self, sql_for: Callable[[BackendKind], str]) -> tuple[int, QueryResult]:
        # The sequence number is taken while holding the lock, so it orders
        # results by when they actually ran.
        async with self._pool.lock:
            active = self._require_active()
            seq = next(self._seq)
            result = await self._executor.run(active.handle, sql_for(active.kind))
        return seq, result

    async def _reload_locked(self) -> ResultLoaded | ReloadFailed | None:
        """Re-read whatever is on screen at the moment the lock is taken."""

        async with self._pool.lock:
            active = self._pool.active
            if active is None:
                return None
            table = self._current_table
            if table is not None:
                sql = preview_query(active.kind, table, self._limit.value)
            elif self._last_read_sql is not None:
                sql = self._last_read_sql
            else:
                return None
            seq = next(self._seq)
            try:
                result = await self._executor.run(active.handle, sql)
            except WorkspaceError as exc:
                return ReloadFailed(seq=seq, error=exc)
        if not isinstance(result, ReadResult):  # pragma: no cover - previews always read
            return ReloadFailed(seq=seq, error=QueryExecutionError("Expected rows from a read statement.", sql=sql))
        return ResultLoaded(seq=seq, result=result, table=table, preserve=True)

    async def _change_limit(self, step: Callable[[], bool]) -> bool:
        previous = self._limit.value
        if not step():
            return False
        if self._current_table is not None and self._pool.active is not None:
            try:
                await self.reload()
            except WorkspaceError:
                self._limit.set(previous)
                self._notify()
                raise
        else:
            self._notify()
        return True

    async def _guarded(self, operation: Awaitable[T], executor: QueryExecutor) -> T:
        """Deadline and error wrapping for catalog queries that bypass the executor."""

        try:
            return await asyncio.wait_for(operation, QUERY_TIMEOUT)
        except asyncio.TimeoutError:
            raise QueryTimeoutError(f"Listing tables exceeded the {QUERY_TIMEOUT:g}s deadline.") from None
        except WorkspaceError:
            raise
        except Exception as exc:
            message = redact(str(exc) or type(exc).__name__, executor.secrets)
            kind, hint = classify_error(message)
            raise QueryExecutionError(message, kind=kind, hint=hint) from exc

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task[None]:
        task: asyncio.Task[None] = asyncio.get_running_loop().create_task(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _background_reload(self) -> None:
        event = await self._reload_locked()
        if event is not None:
            await self._events.put(event)

    async def _background_probe(self, configs: tuple[ConnectionConfig, ...]) -> None:
        async for result in probe_all(configs, timeout=self._probe_timeout, opener=self._opener):
            await self._events.put(ProbeReported(result))
        await self._events.put(ProbeFinished(total=len(configs)))

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in tuple(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                LOG.exception("Workspace listener failed")


__all__ = [
    "Connected",
    "FLASH_SECONDS",
    "ProbeFinished",
    "ProbeReported",
    "ReloadFailed",
    "ResultLoaded",
    "StatusFlashed",
    "StatusReverted",
    "TablesLoaded",
    "Workspace",
    "WorkspaceEvent",
    "WorkspaceListener",
    "WorkspaceSnapshot",
    "WriteApplied",
]
