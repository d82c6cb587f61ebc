"""Commit context: the event whose handler is currently running."""

from __future__ import annotations

import contextvars
import itertools
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from eventq.types import CommitContext

R = TypeVar("R")

_scope_ids = itertools.count(1)


class CommitScope:
    """Ambient commit context owned by one dispatcher.

    Backed by a ContextVar, so asyncio tasks created while a context is
    active keep seeing it for their whole lifetime.
    """

    __slots__ = ("_var",)

    def __init__(self) -> None:
        self._var: contextvars.ContextVar[CommitContext | None] = (
            contextvars.ContextVar(f"eventq_commit_{next(_scope_ids)}", default=None)
        )

    def current(self) -> CommitContext | None:
        """The active commit context, if any."""
        return self._var.get()

    def track(
        self,
        context: CommitContext | None,
        fn: Callable[..., R],
        *args: Any,
    ) -> R:
        """Run fn with context installed; the previous one is always restored."""
        token = self._var.set(context)
        try:
            return fn(*args)
        finally:
            self._var.reset(token)

    @contextmanager
    def activate(self, context: CommitContext | None) -> Iterator[None]:
        """Context manager form of track()."""
        token = self._var.set(context)
        try:
            yield
        finally:
            self._var.reset(token)
