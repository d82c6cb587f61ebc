"""Exceptions raised by eventq."""


class EventqError(Exception):
    """Base class for all eventq errors."""


class UnresolvedHandlerError(EventqError, LookupError):
    """No handler was registered for an event before resolution was abandoned."""

    def __init__(self, event_type: str, reason: str | None = None) -> None:
        self.event_type = event_type
        message = f"No handler registered for {event_type!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NestedSuspendableError(EventqError, TypeError):
    """A handler returned an uncommitted event where a value was expected."""

    def __init__(self, event_type: str, nested_type: str) -> None:
        self.event_type = event_type
        self.nested_type = nested_type
        super().__init__(
            f"Handler for {event_type!r} returned the uncommitted event "
            f"{nested_type!r}; pass it to query() or mutate() first"
        )


class HandlerDefinitionError(EventqError, ValueError):
    """A handler group or proxy tree is malformed."""


class PendingQueryError(EventqError, RuntimeError):
    """The result of a query was read before it resolved."""
