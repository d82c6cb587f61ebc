"""Dispatcher - the coordinator tying registry, cache and invalidation together.

Provides:
- query(): cached read with dedup of concurrent readers
- mutate() / dispatch(): fan-out write with lifecycle hooks
- invalidate() / invalidate_topic(): topic invalidation along the graph
- request() / request_all(): uncached calls
- peek() / subscribe(): the subscriber side of the cache
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from eventq.cache import QueryCache, QueryEntry, QueryListener
from eventq.container import EventContainer
from eventq.context import CommitScope
from eventq.duration import parse_duration, to_seconds
from eventq.errors import NestedSuspendableError, UnresolvedHandlerError
from eventq.graph import DependencyGraph
from eventq.handlers import HandlerGroup, Handlers
from eventq.proxy import ProxyClient
from eventq.query_awaitable import QueryAwaitable
from eventq.registry import ListenerRegistry
from eventq.suspendable import Suspendable
from eventq.topic import Topic
from eventq.types import CommitContext, Duration, Event, QueryState, QueryStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class Dispatcher:
    """Routes events to handlers and caches what reads produce.

    Usage:
        dispatcher = Dispatcher()
        dispatcher.register(Cart(state))
        client = dispatcher.client(Cart)

        items = await dispatcher.query(client.cart.get_items())
        await dispatcher.mutate(client.cart.item_added({"id": "a"}))
    """

    def __init__(
        self,
        *,
        gc_time: Duration = "5m",
        retry_delay: Duration = "1s",
        max_retry_delay: Duration = "30s",
        max_entries: int | None = None,
        online: bool = True,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._retry_delay = parse_duration(retry_delay)
        self._max_retry_delay = parse_duration(max_retry_delay)
        self._scope = CommitScope()
        self._registry = ListenerRegistry()
        self._cache = QueryCache(gc_time=parse_duration(gc_time), max_entries=max_entries)
        self._graph = DependencyGraph(self._cache, self.invalidate_topic)
        self._clock = itertools.count(1)
        self._online = online
        self._online_event: asyncio.Event | None = None

    @property
    def scope(self) -> CommitScope:
        return self._scope

    @property
    def registry(self) -> ListenerRegistry:
        return self._registry

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    # -------------------------------------------------------------------------
    # Handlers and clients
    # -------------------------------------------------------------------------

    def register(self, *groups: HandlerGroup | Handlers) -> Callable[[], None]:
        """Register handler groups; returns their unregister function."""
        return self._registry.register(*groups)

    def client(self, *descriptions: HandlerGroup | Handlers | type[Handlers]) -> ProxyClient:
        """Virtual client whose calls are resolved through the registry."""
        return ProxyClient.virtual(self._scope, *descriptions)

    def proxy(self, group: HandlerGroup | Handlers, prefix: str | None = None) -> ProxyClient:
        """Client bound to a concrete handler group, optionally re-topiced."""
        return ProxyClient.bound(self._scope, group, prefix)

    def commit_context(self) -> CommitContext | None:
        """The event whose handler is running right now, if any."""
        return self._scope.current()

    def track(self, context: CommitContext | None, fn: Callable[..., R], *args: Any) -> R:
        return self._scope.track(context, fn, *args)

    def resolve(self, container: EventContainer[T]) -> list[Suspendable[T]]:
        """Every Suspendable the container fans out to."""
        if isinstance(container, Suspendable):
            return [container]
        return self._registry.suspendables(container, self._scope)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def query(
        self,
        container: EventContainer[T],
        *,
        timeout: Duration | None = None,
    ) -> QueryAwaitable[T]:
        """Cached read.

        Returns at once with the cached value, the in-flight read shared by
        every concurrent caller, or a fresh commit. If nothing handles the
        event yet, waits for a registration (up to timeout, then raises
        UnresolvedHandlerError).
        """
        suspendables = self.resolve(container)
        if suspendables:
            return self._read(suspendables[0])
        return self._read_when_registered(container, timeout)

    async def request(self, container: EventContainer[T]) -> T | None:
        """Uncached call: first handler result that is not None.

        A handler may return a bound Suspendable (from a proxy() client);
        it is committed in turn until a plain value comes back.
        """
        for suspendable in self.resolve(container):
            result = await self._call_through(suspendable)
            if result is not None:
                return result
        return None

    async def request_all(self, container: EventContainer[T]) -> list[T]:
        """Uncached call of every handler, results in registration order."""
        suspendables = self.resolve(container)
        return list(await asyncio.gather(*(self._call_through(s) for s in suspendables)))

    def refetch(self, container: EventContainer[T]) -> QueryAwaitable[T]:
        """Read again even if a value is cached; the old value stays until replaced."""
        suspendables = self.resolve(container)
        if not suspendables:
            return self.query(container)
        entry = self._cache.build(container.event, local=suspendables[0].local)
        if entry.is_fetching:
            return QueryAwaitable(entry.future)  # type: ignore[arg-type]
        return self._fetch(entry, suspendables[0])

    def peek(self, container: EventContainer[Any]) -> QueryState[Any]:
        """Current state of a read without triggering it."""
        entry = self._cache.get(container.event.key)
        if entry is None:
            return QueryState(QueryStatus.IDLE)
        return entry.state()

    def subscribe(
        self, container: EventContainer[Any], listener: QueryListener
    ) -> Callable[[], None]:
        """Get notified of every state change of a read.

        The entry stays cached while subscribed. After an INVALIDATED
        notification the subscriber is expected to query() again.
        """
        suspendables = self.resolve(container)
        local = suspendables[0].local if suspendables else False
        entry = self._cache.build(container.event, local=local)
        entry.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in entry.listeners:
                entry.listeners.remove(listener)
                self._cache.schedule_gc(entry)

        return unsubscribe

    def get_query_data(self, container: EventContainer[T]) -> T | None:
        entry = self._cache.get(container.event.key)
        if entry is None or not entry.has_data:
            return None
        return entry.data  # type: ignore[no-any-return]

    def set_query_data(self, container: EventContainer[T], value: T) -> None:
        """Write a value into the cache as if a read had produced it."""
        suspendables = self.resolve(container)
        local = suspendables[0].local if suspendables else False
        entry = self._cache.build(container.event, local=local)
        stamp = next(self._clock)
        entry.fetch_stamp = stamp
        self._accept(entry, stamp, value)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def mutate(self, container: EventContainer[Any]) -> list[Any]:
        """Run every handler of the event, concurrently.

        Per handler: mutate hooks, the call (with the container's retries),
        then error hooks and re-raise, or success hooks and invalidation of
        the event's topic. Returns the handler results.
        """
        suspendables = self.resolve(container)
        if not suspendables:
            logger.debug("No handlers for %s, nothing to mutate", container.event.type)
            return []
        results = await asyncio.gather(*(self._run_mutation(s) for s in suspendables))
        return list(results)

    dispatch = mutate

    def invalidate(self, event: Event[Any] | EventContainer[Any] | None = None) -> None:
        """Invalidate the topic of the running commit, else of event."""
        context = self._scope.current()
        if context is not None:
            target: Event[Any] | None = context.event
        elif isinstance(event, EventContainer):
            target = event.event
        else:
            target = event
        if target is None:
            return
        logger.debug("Invalidate from context %s", target.topic)
        self.invalidate_topic(target.topic)

    def invalidate_topic(
        self,
        topic: Topic | str | tuple[str, ...],
        _seen: set[Topic] | None = None,
    ) -> None:
        """Clear every read under topic, then everything that depended on them."""
        topic = Topic.of(topic)
        seen = set() if _seen is None else _seen
        if topic in seen:
            return
        seen.add(topic)

        entries = self._cache.find_all(topic)
        if not entries:
            return
        stamp = next(self._clock)
        cleared = [entry for entry in entries if entry.clear(stamp)]
        for entry in cleared:
            self._cache.notify(entry)
        for entry in cleared:
            for observer in self._graph.observers_of(entry):
                observer.rearm()
                self.invalidate_topic(observer.topic, seen)
        for entry in entries:
            self._cache.schedule_gc(entry)

    def clear(self) -> None:
        """Drop every cached read."""
        self._cache.clear()

    # -------------------------------------------------------------------------
    # Network state
    # -------------------------------------------------------------------------

    @property
    def online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Pause (False) or resume (True) work of non-local handlers."""
        self._online = online
        if self._online_event is not None:
            if online:
                self._online_event.set()
            else:
                self._online_event.clear()

    async def _network_ready(self, suspendable: Suspendable[Any]) -> None:
        if self._online or suspendable.local:
            return
        if self._online_event is None:
            self._online_event = asyncio.Event()
        logger.debug("Offline, %s waits for the network", suspendable.event.type)
        await self._online_event.wait()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _read(self, suspendable: Suspendable[T]) -> QueryAwaitable[T]:
        entry = self._cache.build(suspendable.event, local=suspendable.local)
        context = self._scope.current() or suspendable.context
        if context is not None and context.event.key in self._cache:
            self._graph.capture(entry, context.event)

        if entry.has_data:
            return QueryAwaitable.resolved(entry.data)
        if entry.future is not None:
            return QueryAwaitable(entry.future)
        return self._fetch(entry, suspendable)

    def _read_when_registered(
        self, container: EventContainer[T], timeout: Duration | None
    ) -> QueryAwaitable[T]:
        event_type = container.event.type
        waiting = self._registry.wait_for(event_type)
        limit = to_seconds(parse_duration(timeout)) if timeout is not None else None

        async def read_later() -> T:
            try:
                await asyncio.wait_for(asyncio.shield(waiting), limit)
            except asyncio.TimeoutError as e:
                raise UnresolvedHandlerError(event_type, f"gave up after {timeout}") from e
            suspendables = self.resolve(container)
            if not suspendables:
                raise UnresolvedHandlerError(event_type, "unregistered before the read")
            return await self._read(suspendables[0])

        return QueryAwaitable(asyncio.ensure_future(read_later()))

    def _fetch(self, entry: QueryEntry, suspendable: Suspendable[T]) -> QueryAwaitable[T]:
        stamp = next(self._clock)
        entry.fetch_stamp = stamp
        first_error: Exception | None = None

        if self._online or suspendable.local:
            try:
                result = suspendable.commit()
                if isinstance(result, QueryAwaitable) and result.done():
                    result = result.result()
            except Exception as e:
                if isinstance(e, NestedSuspendableError) or not self._retries_for(
                    suspendable
                ):
                    self._reject(entry, stamp, e)
                    raise
                first_error = e
            else:
                if not inspect.isawaitable(result):
                    try:
                        self._check_terminal(suspendable, result)
                    except NestedSuspendableError as e:
                        self._reject(entry, stamp, e)
                        raise
                    self._accept(entry, stamp, result)
                    return QueryAwaitable.resolved(result)
                suspendable.save(result)

        task = asyncio.ensure_future(
            self._run_query(entry, suspendable, stamp, first_error)
        )
        task.add_done_callback(self._log_outcome)
        entry.future = task
        entry.error = None
        self._cache.notify(entry)
        return QueryAwaitable(task)

    async def _run_query(
        self,
        entry: QueryEntry,
        suspendable: Suspendable[T],
        stamp: int,
        first_error: Exception | None,
    ) -> T:
        try:
            result = await self._execute(suspendable, first_error=first_error)
        except asyncio.CancelledError:
            self._settle(entry, stamp)
            raise
        except Exception as e:
            self._reject(entry, stamp, e)
            raise
        self._accept(entry, stamp, result)
        return result

    async def _run_mutation(self, suspendable: Suspendable[T]) -> T:
        context = suspendable.context
        self._scope.track(context, suspendable.handle_mutate)
        try:
            result = await self._execute(suspendable)
        except Exception as e:
            self._scope.track(context, suspendable.handle_error, e)
            raise
        self._scope.track(context, suspendable.handle_success, result)
        logger.debug("Invalidate from success of %s", suspendable.event.type)
        self.invalidate_topic(suspendable.event.topic)
        return result

    async def _execute(
        self,
        suspendable: Suspendable[T],
        *,
        first_error: Exception | None = None,
    ) -> T:
        """Commit with retries and backoff."""
        retries = self._retries_for(suspendable)
        attempt = 0
        error = first_error
        while True:
            if error is None:
                try:
                    if not suspendable.has_saved:
                        await self._network_ready(suspendable)
                    return await self._call(suspendable)
                except NestedSuspendableError:
                    raise
                except Exception as e:
                    error = e
            if attempt >= retries:
                raise error
            attempt += 1
            delay = self._backoff(attempt)
            logger.debug(
                "Retrying %s (%d/%d) in %sms: %r",
                suspendable.event.type,
                attempt,
                retries,
                delay,
                error,
            )
            await asyncio.sleep(to_seconds(delay))
            error = None

    async def _call(self, suspendable: Suspendable[T]) -> T:
        result = await self._commit(suspendable)
        self._check_terminal(suspendable, result)
        return result  # type: ignore[no-any-return]

    async def _call_through(self, suspendable: Suspendable[T]) -> T:
        """Like _call, but a returned Suspendable is committed in turn."""
        result = await self._commit(suspendable)
        while isinstance(result, Suspendable):
            suspendable = result
            result = await self._commit(suspendable)
        self._check_terminal(suspendable, result)
        return result  # type: ignore[no-any-return]

    @staticmethod
    async def _commit(suspendable: Suspendable[Any]) -> Any:
        result = suspendable.commit()
        if inspect.isawaitable(result):
            result = await result
        return result

    def _accept(self, entry: QueryEntry, stamp: int, value: Any) -> None:
        if entry.fetch_stamp == stamp:
            entry.future = None
        if stamp <= entry.invalidated_at or stamp < entry.accepted_stamp:
            logger.debug("Dropped stale result for %s", entry.event.type)
            self._cache.schedule_gc(entry)
            return
        entry.data = value
        entry.error = None
        entry.accepted_stamp = stamp
        entry.updated_at = next(self._clock)
        self._cache.notify(entry)
        self._graph.notify(entry)
        self._cache.schedule_gc(entry)

    def _reject(self, entry: QueryEntry, stamp: int, error: Exception) -> None:
        if entry.fetch_stamp == stamp:
            entry.future = None
        if stamp > entry.invalidated_at and stamp >= entry.accepted_stamp:
            entry.error = error
            self._cache.notify(entry)
        self._cache.schedule_gc(entry)

    def _settle(self, entry: QueryEntry, stamp: int) -> None:
        if entry.fetch_stamp == stamp:
            entry.future = None
        self._cache.schedule_gc(entry)

    def _retries_for(self, suspendable: Suspendable[Any]) -> int:
        if suspendable.retries:
            return suspendable.retries
        context = suspendable.context
        return context.retries if context is not None else 0

    def _backoff(self, attempt: int) -> int:
        return min(self._retry_delay * 2 ** (attempt - 1), self._max_retry_delay)

    @staticmethod
    def _check_terminal(suspendable: Suspendable[Any], result: Any) -> None:
        if isinstance(result, EventContainer):
            raise NestedSuspendableError(suspendable.event.type, result.event.type)

    @staticmethod
    def _log_outcome(task: asyncio.Future[Any]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("Query failed: %r", error)


def create_dispatcher(
    *groups: HandlerGroup | Handlers,
    gc_time: Duration = "5m",
    retry_delay: Duration = "1s",
    max_retry_delay: Duration = "30s",
    max_entries: int | None = None,
    online: bool = True,
) -> Dispatcher:
    """Create a dispatcher and register the given handler groups.

    Args:
        groups: Handler groups to register right away
        gc_time: How long idle cached reads are kept
        retry_delay: Delay before the first retry, doubled per attempt
        max_retry_delay: Upper bound of the retry delay
        max_entries: Bound on cached reads (least recently read idle ones go first)
        online: Initial network state

    Returns:
        Dispatcher with query, mutate, invalidate, request, subscribe
    """
    dispatcher = Dispatcher(
        gc_time=gc_time,
        retry_delay=retry_delay,
        max_retry_delay=max_retry_delay,
        max_entries=max_entries,
        online=online,
    )
    if groups:
        dispatcher.register(*groups)
    return dispatcher


__all__ = ["Dispatcher", "create_dispatcher"]
