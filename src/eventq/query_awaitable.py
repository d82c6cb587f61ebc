"""QueryAwaitable - the result of a read: a value now, or a value later."""

from __future__ import annotations

import asyncio
from typing import Any, Generator, Generic, TypeVar

from eventq.errors import PendingQueryError

T = TypeVar("T")

_MISSING: Any = object()


class QueryAwaitable(Generic[T]):
    """An awaitable that may already hold its value.

    Usage:
        result = await dispatcher.query(event)   # T
        pending = dispatcher.query(event)
        if pending.done():
            value = pending.result()             # no await needed

    Can be awaited any number of times.
    """

    __slots__ = ("_future", "_value")

    def __init__(self, future: asyncio.Future[T]) -> None:
        self._future: asyncio.Future[T] | None = future
        self._value: T = _MISSING

    @classmethod
    def resolved(cls, value: T) -> QueryAwaitable[T]:
        awaitable: QueryAwaitable[T] = cls.__new__(cls)
        awaitable._future = None
        awaitable._value = value
        return awaitable

    @property
    def future(self) -> asyncio.Future[T] | None:
        """The in-flight future, or None when the value was available at once."""
        return self._future

    def done(self) -> bool:
        return self._future is None or self._future.done()

    def result(self) -> T:
        """The value, without waiting.

        Raises PendingQueryError while in flight, or the handler's error.
        """
        if self._future is None:
            return self._value
        if not self._future.done():
            raise PendingQueryError("Query is still pending")
        return self._future.result()

    def __await__(self) -> Generator[Any, None, T]:
        if self._future is None:
            return self._value
        return (yield from self._future.__await__())

    def __repr__(self) -> str:
        if self._future is None:
            return f"QueryAwaitable(resolved={self._value!r})"
        return f"QueryAwaitable({self._future!r})"


__all__ = ["QueryAwaitable"]
