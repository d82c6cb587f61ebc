"""Topics: the namespace part of an event type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eventq.keys import SEPARATOR, is_path_prefix, split_type


@dataclass(frozen=True, slots=True)
class Topic:
    """An invalidation target: every cached read whose type starts with path."""

    path: tuple[str, ...]

    @classmethod
    def of_type(cls, event_type: str) -> Topic:
        """Topic of an event type: the type without its last segment."""
        return cls(split_type(event_type)[:-1])

    @classmethod
    def of(cls, value: Any) -> Topic:
        """Coerce a topic-like value.

        Strings and tuples name the topic itself ("cart"). Events and
        event containers contribute the topic of their type, so
        Topic.of(Event("cart/get_items", ())) is Topic(cart).
        """
        if isinstance(value, Topic):
            return value
        if isinstance(value, str):
            return cls(split_type(value))
        if isinstance(value, tuple):
            return cls(tuple(str(part) for part in value))
        event = getattr(value, "event", value)
        event_type = getattr(event, "type", None)
        if isinstance(event_type, str):
            return cls.of_type(event_type)
        raise TypeError(f"Expected a topic, event type or Event, got {type(value)}")

    def covers(self, path: tuple[str, ...]) -> bool:
        """Check if path falls under this topic."""
        return is_path_prefix(self.path, path)

    def __str__(self) -> str:
        return SEPARATOR.join(self.path)

    def __repr__(self) -> str:
        return f"Topic({self})"
