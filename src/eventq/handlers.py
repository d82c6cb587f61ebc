"""Handler groups: named handler functions under one topic.

This module provides:
- HandlerGroup: explicit record of topic, handlers and the local flag
- define_handlers(): build a validated HandlerGroup from a mapping
- Handlers: base class whose public methods become handlers
- as_group() / describe(): normalise any of the above
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from eventq.errors import HandlerDefinitionError
from eventq.keys import SEPARATOR, join_path, split_type


@dataclass(frozen=True)
class HandlerGroup:
    """A topic plus the handlers registered under it.

    Local groups produce values that are never kept in the cache longer
    than something is using them, and always run regardless of the
    dispatcher's online state.
    """

    topic: str
    handlers: Mapping[str, Callable[..., Any]] = field(default_factory=dict)
    local: bool = False

    def __post_init__(self) -> None:
        _validate_topic(self.topic)
        for name, fn in self.handlers.items():
            _validate_name(self.topic, name)
            if not callable(fn):
                raise HandlerDefinitionError(
                    f"Handler {self.topic}/{name} is not callable: {fn!r}"
                )
        object.__setattr__(self, "handlers", MappingProxyType(dict(self.handlers)))

    def event_type(self, name: str, prefix: str | None = None) -> str:
        """Fully-qualified event type for one handler name."""
        return join_path((*split_type(prefix or self.topic), name))

    def event_types(self, prefix: str | None = None) -> dict[str, Callable[..., Any]]:
        """Map each fully-qualified event type to its handler."""
        return {self.event_type(n, prefix): fn for n, fn in self.handlers.items()}


def define_handlers(
    topic: str,
    handlers: Mapping[str, Callable[..., Any]],
    *,
    local: bool = False,
) -> HandlerGroup:
    """Define a handler group in one place.

    Example:
        cart = define_handlers("cart", {
            "get_items": lambda: list(state.items),
            "item_added": add_item,
        })
    """
    return HandlerGroup(topic=topic, handlers=handlers, local=local)


class Handlers:
    """Base class for class-based handler groups.

    Subclass with a topic; every public method becomes a handler:

        class Cart(Handlers, topic="cart"):
            def __init__(self, state: CartState) -> None:
                self.state = state

            def get_items(self) -> list[CartItem]:
                return list(self.state.items)

    Register an instance (bound methods are the handlers). The class
    itself describes the group for a virtual proxy client.
    """

    __topic__: str
    __local__: bool = False
    __handler_names__: tuple[str, ...] = ()

    def __init_subclass__(
        cls, *, topic: str | None = None, local: bool | None = None, **kwargs: Any
    ) -> None:
        super().__init_subclass__(**kwargs)
        if topic is not None:
            _validate_topic(topic)
            cls.__topic__ = topic
        if local is not None:
            cls.__local__ = local

        names: list[str] = []
        for klass in reversed(cls.__mro__):
            if klass is Handlers or not issubclass(klass, Handlers):
                continue
            for name, value in vars(klass).items():
                if name.startswith("_") or name in names:
                    continue
                if inspect.isfunction(value):
                    names.append(name)
        cls.__handler_names__ = tuple(names)

    def as_group(self) -> HandlerGroup:
        cls = type(self)
        if not hasattr(cls, "__topic__"):
            raise HandlerDefinitionError(f"{cls.__name__} does not declare a topic")
        return HandlerGroup(
            topic=cls.__topic__,
            handlers={name: getattr(self, name) for name in cls.__handler_names__},
            local=cls.__local__,
        )


def as_group(obj: HandlerGroup | Handlers) -> HandlerGroup:
    """Normalise a handler group definition."""
    if isinstance(obj, HandlerGroup):
        return obj
    if isinstance(obj, Handlers):
        return obj.as_group()
    if isinstance(obj, type) and issubclass(obj, Handlers):
        raise TypeError(
            f"{obj.__name__} is a description; register an instance instead"
        )
    raise TypeError(f"Expected HandlerGroup or Handlers, got {type(obj)}")


def describe(obj: HandlerGroup | Handlers | type[Handlers]) -> tuple[str, tuple[str, ...]]:
    """Topic and handler names of a group, its instance or its class."""
    if isinstance(obj, HandlerGroup):
        return obj.topic, tuple(obj.handlers)
    if isinstance(obj, type) and issubclass(obj, Handlers):
        if not hasattr(obj, "__topic__"):
            raise HandlerDefinitionError(f"{obj.__name__} does not declare a topic")
        return obj.__topic__, obj.__handler_names__
    if isinstance(obj, Handlers):
        return describe(type(obj))
    raise TypeError(f"Expected HandlerGroup or Handlers, got {type(obj)}")


def _validate_topic(topic: str) -> None:
    try:
        split_type(topic)
    except ValueError as e:
        raise HandlerDefinitionError(f"Invalid topic: {topic!r}") from e


def _validate_name(topic: str, name: str) -> None:
    if not name or SEPARATOR in name or not name.isidentifier():
        raise HandlerDefinitionError(f"Invalid handler name {name!r} in {topic!r}")
