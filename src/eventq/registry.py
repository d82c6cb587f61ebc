"""Listener registry: event type -> handlers currently registered for it."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from eventq.container import EventContainer
from eventq.context import CommitScope
from eventq.errors import UnresolvedHandlerError
from eventq.handlers import HandlerGroup, Handlers, as_group
from eventq.suspendable import Suspendable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, eq=False)
class Registration:
    """One handler registered for one fully-qualified event type."""

    event_type: str
    fn: Callable[..., Any]
    local: bool = False


class ListenerRegistry:
    """Handlers keyed by event type, with placeholders for early callers.

    A caller that asks for a type nobody handles yet can wait_for() it;
    the first registration for that type resolves the wait.
    """

    def __init__(self) -> None:
        # dict as an insertion-ordered set
        self._listeners: dict[str, dict[Registration, None]] = {}
        self._waiting: dict[str, asyncio.Future[Registration]] = {}

    def register(self, *groups: HandlerGroup | Handlers) -> Callable[[], None]:
        """Register handler groups. Returns a function that undoes exactly this call."""
        added: list[Registration] = []
        for group in map(as_group, groups):
            for event_type, fn in group.event_types().items():
                registration = Registration(event_type, fn, group.local)
                self._listeners.setdefault(event_type, {})[registration] = None
                added.append(registration)
                self._resolve_waiting(registration)

        def unregister() -> None:
            for registration in added:
                listeners = self._listeners.get(registration.event_type)
                if listeners is None:
                    continue
                listeners.pop(registration, None)
                if not listeners:
                    del self._listeners[registration.event_type]
            added.clear()

        return unregister

    def handlers(self, event_type: str) -> list[Registration]:
        """All registrations for a type, in registration order."""
        return list(self._listeners.get(event_type, ()))

    def is_registered(self, event_type: str) -> bool:
        return bool(self._listeners.get(event_type))

    def suspendables(
        self, container: EventContainer[T], scope: CommitScope
    ) -> list[Suspendable[T]]:
        """Bind the container to every registered handler (fan-out)."""
        return [
            Suspendable(container, registration, scope)
            for registration in self.handlers(container.event.type)
        ]

    def wait_for(self, event_type: str) -> asyncio.Future[Registration]:
        """Future resolved by the next registration for event_type.

        Concurrent callers share one placeholder per type. Needs a running
        event loop.
        """
        registrations = self.handlers(event_type)
        if registrations:
            future: asyncio.Future[Registration] = (
                asyncio.get_running_loop().create_future()
            )
            future.set_result(registrations[0])
            return future

        waiting = self._waiting.get(event_type)
        if waiting is None or waiting.done():
            waiting = asyncio.get_running_loop().create_future()
            self._waiting[event_type] = waiting
            logger.debug("Parked resolution for %s", event_type)
        return waiting

    def abandon(self, event_type: str, reason: str | None = None) -> None:
        """Fail everyone still waiting for event_type."""
        waiting = self._waiting.pop(event_type, None)
        if waiting is not None and not waiting.done():
            waiting.set_exception(UnresolvedHandlerError(event_type, reason))

    def clear(self) -> None:
        """Drop all registrations and fail parked waiters."""
        self._listeners.clear()
        for event_type in list(self._waiting):
            self.abandon(event_type, "registry cleared")

    def _resolve_waiting(self, registration: Registration) -> None:
        waiting = self._waiting.pop(registration.event_type, None)
        if waiting is not None and not waiting.done():
            logger.debug("Resolved parked %s", registration.event_type)
            waiting.set_result(registration)
