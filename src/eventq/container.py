"""Event containers: an event plus the lifecycle hooks callers attach to it."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Generic, TypeVar

from eventq.types import CommitContext, Event, EventHooks

T = TypeVar("T")

Self = TypeVar("Self", bound="EventContainer[Any]")


class EventContainer(Generic[T]):
    """An event with on-mutate, on-success and on-error hooks and a retry count.

    The hook registration methods return the container itself for chaining:

        container = client.cart.item_added(item).on_error(rollback).retry(2)
    """

    __slots__ = ("_context", "_event", "_hooks")

    def __init__(
        self,
        event: Event[T],
        context: CommitContext | None = None,
        *,
        hooks: EventHooks | None = None,
    ) -> None:
        self._event = event
        self._context = context
        self._hooks = hooks if hooks is not None else EventHooks()

    @property
    def event(self) -> Event[T]:
        return self._event

    @property
    def context(self) -> CommitContext | None:
        """The commit context that was active when the event was created."""
        return self._context

    @property
    def hooks(self) -> EventHooks:
        return self._hooks

    @property
    def retries(self) -> int:
        return self._hooks.retries

    def on_mutate(self: Self, callback: Callable[[], Any]) -> Self:
        self._hooks.mutate.append(callback)
        return self

    def on_success(self: Self, callback: Callable[[T], Any]) -> Self:
        self._hooks.success.append(callback)
        return self

    def on_error(self: Self, callback: Callable[[BaseException], Any]) -> Self:
        self._hooks.error.append(callback)
        return self

    def retry(self: Self, count: int) -> Self:
        """Allow count additional attempts when the handler fails."""
        if count < 0:
            raise ValueError("retry count must not be negative")
        self._hooks.retries = count
        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._event.type}, payload={self._event.payload!r})"
