"""Core types for eventq."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from eventq.keys import QueryKey, make_query_key, split_type
from eventq.topic import Topic

T = TypeVar("T")

# Duration type alias
Duration = str | int  # "30s", "5m", "2h", "1d" or milliseconds


@dataclass(frozen=True)
class Event(Generic[T]):
    """One call: a slash-hierarchical type and its ordered arguments.

    Two events with the same type and structurally equal payload compare
    equal. The cache key (see keys.serialize_payload) is close to but not
    the same as that equality. T is the value type the handler produces.
    """

    type: str
    payload: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        split_type(self.type)
        if not isinstance(self.payload, tuple):
            object.__setattr__(self, "payload", tuple(self.payload))

    @property
    def path(self) -> tuple[str, ...]:
        return split_type(self.type)

    @property
    def name(self) -> str:
        """Last segment of the type (the handler name)."""
        return self.path[-1]

    @property
    def topic(self) -> Topic:
        return Topic.of_type(self.type)

    @property
    def key(self) -> QueryKey:
        return make_query_key(self.type, self.payload)


@dataclass(frozen=True, slots=True)
class CommitContext:
    """The event currently being committed."""

    event: Event[Any]
    retries: int = 0


class QueryStatus(Enum):
    """Lifecycle state of a cached read."""

    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    INVALIDATED = "invalidated"


@dataclass(frozen=True, slots=True)
class QueryState(Generic[T]):
    """Snapshot of a cache entry handed to subscribers."""

    status: QueryStatus
    data: T | None = None
    error: BaseException | None = None
    updated_at: int = 0

    @property
    def has_data(self) -> bool:
        return self.status is QueryStatus.SUCCESS


@dataclass(slots=True)
class EventHooks:
    """Lifecycle callbacks attached to an event container."""

    mutate: list[Any] = field(default_factory=list)
    success: list[Any] = field(default_factory=list)
    error: list[Any] = field(default_factory=list)
    retries: int = 0
