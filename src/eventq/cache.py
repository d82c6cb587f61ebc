"""In-memory query cache with garbage collection of idle entries.

An entry is in use while it has subscribers, dependency observers or a
fetch in flight. Idle entries are removed gc_time after they became
idle, local entries immediately. With max_entries set, the least
recently read idle entries are evicted first; while every other entry is
in use the cache grows past the bound rather than drop the entry being read.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from eventq.duration import to_seconds
from eventq.keys import QueryKey
from eventq.topic import Topic
from eventq.types import Event, QueryState, QueryStatus

if TYPE_CHECKING:
    from eventq.graph import DependencyObserver

logger = logging.getLogger(__name__)

MISSING: Any = object()

QueryListener = Callable[[QueryState[Any]], None]


@dataclass(eq=False)
class QueryEntry:
    """Cached state for one event key."""

    key: QueryKey
    event: Event[Any]
    local: bool = False
    data: Any = MISSING
    error: BaseException | None = None
    updated_at: int = 0  # stamp of the last accepted value
    accepted_stamp: int = 0  # fetch stamp that produced data
    fetch_stamp: int = 0  # stamp of the latest fetch started
    invalidated_at: int = 0
    future: asyncio.Future[Any] | None = None
    listeners: list[QueryListener] = field(default_factory=list)
    observers: dict[Topic, DependencyObserver] = field(default_factory=dict)
    gc_handle: asyncio.TimerHandle | None = None

    @property
    def path(self) -> tuple[str, ...]:
        return self.event.path

    @property
    def has_data(self) -> bool:
        return self.data is not MISSING

    @property
    def is_fetching(self) -> bool:
        return self.future is not None and not self.future.done()

    @property
    def in_use(self) -> bool:
        return bool(self.listeners or self.observers) or self.is_fetching

    @property
    def status(self) -> QueryStatus:
        if self.has_data:
            return QueryStatus.SUCCESS
        if self.is_fetching:
            return QueryStatus.PENDING
        if self.error is not None:
            return QueryStatus.ERROR
        if self.invalidated_at:
            return QueryStatus.INVALIDATED
        return QueryStatus.IDLE

    def state(self) -> QueryState[Any]:
        return QueryState(
            status=self.status,
            data=self.data if self.has_data else None,
            error=self.error,
            updated_at=self.updated_at,
        )

    def clear(self, stamp: int) -> bool:
        """Drop data, error and in-flight fetch. Returns whether anything was held."""
        had_state = self.has_data or self.future is not None or self.error is not None
        self.data = MISSING
        self.error = None
        self.future = None
        self.invalidated_at = stamp
        return had_state


@dataclass(frozen=True, slots=True)
class CacheEvent:
    """Notification emitted by QueryCache to its subscribers."""

    type: Literal["added", "updated", "removed"]
    entry: QueryEntry


CacheListener = Callable[[CacheEvent], None]


class QueryCache:
    """Entries keyed by event key, in least-recently-read order."""

    def __init__(self, *, gc_time: int, max_entries: int | None = None) -> None:
        self._entries: OrderedDict[QueryKey, QueryEntry] = OrderedDict()
        self._listeners: list[CacheListener] = []
        self._gc_time = gc_time
        self._max_entries = max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def build(self, event: Event[Any], *, local: bool = False) -> QueryEntry:
        """Get the entry for event, creating it on first use."""
        key = event.key
        entry = self._entries.get(key)
        if entry is None:
            entry = QueryEntry(key=key, event=event, local=local)
            self._entries[key] = entry
            self._emit(CacheEvent("added", entry))
            self._enforce_limit(keep=entry)
        else:
            self._entries.move_to_end(key)  # LRU touch
        self._cancel_gc(entry)
        return entry

    def get(self, key: QueryKey) -> QueryEntry | None:
        return self._entries.get(key)

    def entries(self) -> list[QueryEntry]:
        return list(self._entries.values())

    def find_all(self, topic: Topic) -> list[QueryEntry]:
        """Every entry whose type lies under topic."""
        return [entry for entry in self._entries.values() if topic.covers(entry.path)]

    def notify(self, entry: QueryEntry) -> None:
        """Tell the entry's listeners and the cache's subscribers it changed."""
        state = entry.state()
        for listener in list(entry.listeners):
            listener(state)
        self._emit(CacheEvent("updated", entry))

    def remove(self, entry: QueryEntry) -> None:
        if self._entries.get(entry.key) is not entry:
            return
        del self._entries[entry.key]
        self._cancel_gc(entry)
        logger.debug("Removed %s from cache", entry.event.type)
        self._emit(CacheEvent("removed", entry))

    def clear(self) -> None:
        for entry in list(self._entries.values()):
            self.remove(entry)

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Listen to added/updated/removed notifications."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def schedule_gc(self, entry: QueryEntry) -> None:
        """Arrange for an idle entry to be removed."""
        self._cancel_gc(entry)
        if entry.in_use or self._entries.get(entry.key) is not entry:
            return
        delay = 0 if entry.local else self._gc_time
        if delay == 0:
            self.remove(entry)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # collected on the next schedule inside a loop
        entry.gc_handle = loop.call_later(to_seconds(delay), self._collect, entry)

    def _collect(self, entry: QueryEntry) -> None:
        entry.gc_handle = None
        if not entry.in_use:
            self.remove(entry)

    def _cancel_gc(self, entry: QueryEntry) -> None:
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None

    def _enforce_limit(self, keep: QueryEntry) -> None:
        if self._max_entries is None:
            return
        # the entry being built is never its own victim
        while len(self._entries) > self._max_entries:
            victim = next(
                (e for e in self._entries.values() if not e.in_use and e is not keep),
                None,
            )
            if victim is None:
                break
            self.remove(victim)

    def _emit(self, event: CacheEvent) -> None:
        for listener in list(self._listeners):
            listener(event)
