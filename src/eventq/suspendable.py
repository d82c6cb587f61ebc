"""Suspendable: an event container bound to the handler that will run it."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, TypeVar

from eventq.container import EventContainer
from eventq.context import CommitScope
from eventq.types import CommitContext

if TYPE_CHECKING:
    from eventq.registry import Registration

T = TypeVar("T")


class Suspendable(EventContainer[T]):
    """A container whose handler is known and can be committed.

    Shares its hook lists with the container it was built from, so hooks
    attached to either fire for every handler the event fans out to.
    """

    __slots__ = ("_registration", "_saved", "_scope")

    def __init__(
        self,
        container: EventContainer[T],
        registration: Registration,
        scope: CommitScope,
    ) -> None:
        super().__init__(container.event, container.context, hooks=container.hooks)
        self._registration = registration
        self._scope = scope
        self._saved: Awaitable[Any] | None = None

    @property
    def registration(self) -> Registration:
        return self._registration

    @property
    def local(self) -> bool:
        return self._registration.local

    @property
    def has_saved(self) -> bool:
        return self._saved is not None

    def commit(self) -> T | Awaitable[T]:
        """Run the handler, or hand back the saved in-flight result once.

        The handler runs under CommitContext(event, retries). Coroutines are
        scheduled as tasks while that context is installed, so the whole
        async body sees it. Returns the value or an awaitable.
        """
        if self._saved is not None:
            saved, self._saved = self._saved, None
            return saved  # type: ignore[return-value]

        context = CommitContext(event=self._event, retries=self.retries)
        return self._scope.track(context, self._invoke)

    def save(self, pending: Awaitable[T]) -> None:
        """Keep an in-flight result for the next commit() to pick up."""
        self._saved = pending

    def handle_mutate(self) -> None:
        for callback in list(self._hooks.mutate):
            callback()

    def handle_success(self, result: T) -> None:
        for callback in list(self._hooks.success):
            callback(result)

    def handle_error(self, error: BaseException) -> None:
        for callback in list(self._hooks.error):
            callback(error)

    def _invoke(self) -> T | Awaitable[T]:
        result = self._registration.fn(*self._event.payload)
        if inspect.iscoroutine(result):
            return asyncio.ensure_future(result)
        return result


def is_suspendable(obj: object) -> bool:
    return isinstance(obj, Suspendable)
