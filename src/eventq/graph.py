"""Invalidation graph between cached reads.

When the handler producing entry D reads entry O, O gets an observer for
D's topic. The observer invalidates that topic whenever O accepts a
newer value, and is re-armed when O itself is invalidated (the cascade
already happened then). Observers are dropped once every dependent
entry that registered them has been removed from the cache.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from eventq.cache import CacheEvent, QueryCache, QueryEntry
from eventq.keys import QueryKey, is_path_prefix
from eventq.topic import Topic
from eventq.types import Event

logger = logging.getLogger(__name__)


class DependencyObserver:
    """Subscription of a dependent topic to one observed entry."""

    __slots__ = ("dependents", "observed", "seen", "topic")

    def __init__(self, observed: QueryEntry, topic: Topic) -> None:
        self.observed = observed
        self.topic = topic
        self.dependents: set[QueryKey] = set()
        # updated_at of the value the dependents read; None until one is seen
        self.seen: int | None = observed.updated_at if observed.has_data else None

    def advance(self, updated_at: int) -> bool:
        """Record a newly accepted value. True if dependents are now stale."""
        if self.seen is None:
            self.seen = updated_at
            return False
        if updated_at > self.seen:
            self.seen = updated_at
            return True
        return False

    def rearm(self) -> None:
        self.seen = None

    def __repr__(self) -> str:
        return f"DependencyObserver({self.observed.event.type} -> {self.topic})"


class DependencyGraph:
    """Bookkeeping of which cached reads were produced from which."""

    def __init__(
        self,
        cache: QueryCache,
        invalidate: Callable[[Topic], Any],
    ) -> None:
        self._cache = cache
        self._invalidate = invalidate
        self._unsubscribe = cache.subscribe(self._on_cache_event)

    def capture(
        self, entry: QueryEntry, dependent: Event[Any]
    ) -> DependencyObserver | None:
        """Record that dependent's handler read entry."""
        topic = dependent.topic
        dependent_key = dependent.key
        if dependent_key == entry.key or topic.covers(entry.path):
            # invalidating topic would clear entry itself
            return None

        observer = entry.observers.get(topic)
        if observer is None:
            observer = DependencyObserver(entry, topic)
            entry.observers[topic] = observer
            logger.debug("%s now observes %s", topic, entry.event.type)
        observer.dependents.add(dependent_key)
        return observer

    def observers_of(self, entry: QueryEntry) -> list[DependencyObserver]:
        return list(entry.observers.values())

    def notify(self, entry: QueryEntry) -> None:
        """Fire the observers of entry after it accepted a new value."""
        for observer in list(entry.observers.values()):
            if observer.advance(entry.updated_at):
                logger.debug(
                    "Invalidate %s from observer of %s", observer.topic, entry.event.type
                )
                self._invalidate(observer.topic)

    def release(self, removed: QueryKey) -> None:
        """Forget dependents under a removed key; tear down emptied observers."""
        for entry in self._cache.entries():
            released = False
            for topic, observer in list(entry.observers.items()):
                observer.dependents = {
                    key for key in observer.dependents if not is_path_prefix(removed, key)
                }
                if not observer.dependents:
                    del entry.observers[topic]
                    released = True
                    logger.debug("Tore down %r", observer)
            if released:
                self._cache.schedule_gc(entry)

    def close(self) -> None:
        self._unsubscribe()

    def _on_cache_event(self, event: CacheEvent) -> None:
        if event.type == "removed":
            event.entry.observers.clear()
            self.release(event.entry.key)
