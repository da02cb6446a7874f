"""
Table invalidation and live queries.

Writers call InvalidationTracker.notify(table) after a successful commit.
Every LiveQuery registered for that table is marked dirty and re-runs its
query the next time its consumer asks for a snapshot, so several writes
that land while a consumer is busy collapse into a single re-query.
"""
import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Set, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar('T')


class InvalidationTracker:
    """Registry of live query wake-ups, keyed by table name."""

    def __init__(self):
        self._observers: Dict[str, Set[asyncio.Event]] = defaultdict(set)

    def register(self, table: str) -> asyncio.Event:
        """Register an observer; the returned event starts out set so the first read runs."""
        event = asyncio.Event()
        event.set()
        self._observers[table].add(event)
        return event

    def unregister(self, table: str, event: asyncio.Event) -> None:
        observers = self._observers.get(table)
        if not observers:
            return
        observers.discard(event)
        if not observers:
            del self._observers[table]

    def notify(self, *tables: str) -> None:
        for table in tables:
            for event in list(self._observers.get(table, ())):
                event.set()

    def observer_count(self, table: str) -> int:
        return len(self._observers.get(table, ()))


class LiveQuery(Generic[T]):
    """
    A subscription to the result of a query over one table.

    Consume it with ``async for snapshot in live_query`` or hand it a
    listener with ``observe()``. The first snapshot is produced right
    away; each later one is produced after at least one change to the
    table. A LiveQuery serves a single consumer. ``close()`` (or leaving
    ``async with``) unsubscribes and ends the iteration.
    """

    def __init__(
        self,
        tracker: InvalidationTracker,
        table: str,
        query: Callable[[], Awaitable[T]],
        debounce_seconds: float = 0.0,
        name: str = "live_query",
    ):
        self.tracker = tracker
        self.table = table
        self.name = name
        self.latest: Optional[T] = None
        self._query = query
        self._debounce = debounce_seconds
        self._event: Optional[asyncio.Event] = None
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "LiveQuery[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed:
            raise StopAsyncIteration
        if self._event is None:
            self._event = self.tracker.register(self.table)
            logger.debug(f"{self.name}: subscribed to {self.table}")

        await self._event.wait()
        if self._closed:
            raise StopAsyncIteration
        if self._debounce > 0:
            await asyncio.sleep(self._debounce)
            if self._closed:
                raise StopAsyncIteration

        self._event.clear()
        try:
            snapshot = await self._query()
        except BaseException:
            # Undelivered state: the next read has to query again
            self._event.set()
            raise

        if self._closed:
            raise StopAsyncIteration
        self.latest = snapshot
        return snapshot

    def observe(self, listener: Callable[[T], Any]) -> "LiveQuery[T]":
        """
        Deliver every snapshot to ``listener`` from a background task.

        The listener may be a plain function or a coroutine function.
        """
        if self._task is not None:
            raise RuntimeError(f"{self.name} is already observed")

        async def pump():
            try:
                async for snapshot in self:
                    result = listener(snapshot)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.name}: delivery stopped: {e}")
                raise

        self._task = asyncio.create_task(pump())
        return self

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._event is not None:
            self.tracker.unregister(self.table, self._event)
            # Wake a consumer blocked in __anext__ so it can stop
            self._event.set()
        logger.debug(f"{self.name}: unsubscribed from {self.table}")

    async def aclose(self) -> None:
        self.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "LiveQuery[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<LiveQuery(name={self.name}, table={self.table}, {state})>"
