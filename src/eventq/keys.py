"""Event type paths and cache keys."""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import Any

SEPARATOR = "/"

# Hashable cache key: type segments followed by serialized payload items
QueryKey = tuple[str, ...]


def split_type(event_type: str) -> tuple[str, ...]:
    """Split a slash-joined event type into its segments.

    Example:
        split_type("cart/item_added")  # ("cart", "item_added")
    """
    if not event_type:
        raise ValueError("Event type must not be empty")
    segments = tuple(event_type.split(SEPARATOR))
    if any(not segment for segment in segments):
        raise ValueError(f"Invalid event type: {event_type!r}")
    return segments


def join_path(segments: Iterable[str]) -> str:
    """Join type segments back into an event type."""
    parts = tuple(segments)
    for part in parts:
        if not part or SEPARATOR in part:
            raise ValueError(f"Invalid path segment: {part!r}")
    return SEPARATOR.join(parts)


def serialize_payload(arg: Any) -> str:
    """Serialize one call argument into a stable key segment.

    Structurally equal arguments serialize identically; dict key order
    is ignored. Keys follow JSON, not Python equality: 1 and 1.0 give
    different keys, while a tuple and a list of the same items share one.
    """
    return json.dumps(arg, sort_keys=True, default=str, separators=(",", ":"))


def make_query_key(event_type: str, payload: Sequence[Any]) -> QueryKey:
    """Build the cache key for an event type and its payload."""
    return (*split_type(event_type), *(serialize_payload(p) for p in payload))


def is_path_prefix(prefix: Sequence[str], path: Sequence[str]) -> bool:
    """Check if prefix is a leading slice of path (for invalidation)."""
    if len(prefix) > len(path):
        return False
    return tuple(path[: len(prefix)]) == tuple(prefix)
