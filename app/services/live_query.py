from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any, Generic, TypeVar

from starlette.concurrency import run_in_threadpool

from app.services.change_feed import ChangeEvent, ChangeFeed

logger = logging.getLogger(__name__)

RowT = TypeVar('RowT')


def field_value(row: Any, field: str) -> Any:
    if isinstance(row, dict):
        return row.get(field)
    return getattr(row, field, None)


def matches_query(row: Any, fields: Sequence[str], query: str) -> bool:
    needle = query.strip().lower()
    if not needle:
        return True
    for field in fields:
        value = field_value(row, field)
        if value is not None and needle in str(value).lower():
            return True
    return False


class LiveQueryCache(Generic[RowT]):
    """In-memory copy of one screen's collection, refetched on any change.

    ``loader`` is a blocking callable run in the threadpool. Results of a fetch
    that was overtaken by a newer fetch, or that lands after teardown(), are
    dropped.
    """

    def __init__(
        self,
        *,
        tables: Sequence[str],
        loader: Callable[[], Sequence[RowT]],
        feed: ChangeFeed,
        search_fields: Sequence[str] = (),
    ) -> None:
        self.tables = tuple(tables)
        self.search_fields = tuple(search_fields)
        self.rows: list[RowT] = []
        self.is_loading = False
        self._loader = loader
        self._feed = feed
        self._generation = 0
        self._closed = False
        self._unsubscribers: list[Callable[[], None]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._fetch_task: asyncio.Task | None = None
        self._listeners: list[asyncio.Queue] = []

    @property
    def closed(self) -> bool:
        return self._closed

    async def fetch(self) -> bool:
        if self._closed:
            return False
        self._generation += 1
        generation = self._generation
        self.is_loading = True
        try:
            rows = await run_in_threadpool(self._loader)
        finally:
            if generation == self._generation:
                self.is_loading = False
        if self._closed or generation != self._generation:
            logger.debug('Dropping stale fetch for %s', ', '.join(self.tables))
            return False
        self.rows = list(rows)
        for listener in self._listeners:
            listener.put_nowait(self.rows)
        return True

    def subscribe(self) -> None:
        if self._closed or self._unsubscribers:
            return
        self._loop = asyncio.get_running_loop()
        for table in self.tables:
            self._unsubscribers.append(self._feed.subscribe(table, self._on_change))

    def _on_change(self, event: ChangeEvent) -> None:
        # Called from whichever thread committed the write.
        loop = self._loop
        if self._closed or loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._schedule_fetch)
        except RuntimeError:
            logger.debug('Event loop closed; ignoring %s on %s', event.kind.value, event.table)

    def _schedule_fetch(self) -> None:
        if self._closed:
            return
        self._fetch_task = asyncio.ensure_future(self._refresh())

    async def _refresh(self) -> None:
        try:
            await self.fetch()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception('Refetch failed for %s', ', '.join(self.tables))

    def teardown(self) -> None:
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        for listener in self._listeners:
            listener.put_nowait(None)

    def local_filter(self, query: str | None) -> list[RowT]:
        if not query or not query.strip():
            return list(self.rows)
        return [row for row in self.rows if matches_query(row, self.search_fields, query)]

    async def listen(self) -> AsyncIterator[list[RowT]]:
        """Yield the rows after every successful refresh until teardown()."""
        if self._closed:
            return
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners.append(queue)
        try:
            while True:
                rows = await queue.get()
                if rows is None:
                    return
                yield rows
        finally:
            self._listeners.remove(queue)
