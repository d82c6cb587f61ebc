"""Proxy clients: generated call trees that turn method calls into events.

A client mirrors the topics of the handler groups it is built from:

    client = ProxyClient.virtual(scope, Cart, Checkout)
    container = client.cart.item_added({"id": "a"})  # Event("cart/item_added", ...)

Virtual clients only know handler names and return bare containers that
are resolved through the registry later. Bound clients are built against
a concrete handler group and return Suspendables directly.
"""

from __future__ import annotations

import logging
from typing import Any

from eventq.container import EventContainer
from eventq.context import CommitScope
from eventq.errors import HandlerDefinitionError
from eventq.handlers import HandlerGroup, Handlers, as_group, describe
from eventq.keys import join_path, split_type
from eventq.registry import Registration
from eventq.suspendable import Suspendable
from eventq.types import CommitContext, Event

logger = logging.getLogger(__name__)

_RESERVED = frozenset({"event", "path", "names"})


class _ClientState:
    """What every node of one client tree shares."""

    __slots__ = ("bound", "context", "scope")

    def __init__(
        self,
        scope: CommitScope,
        context: CommitContext | None,
        bound: dict[str, Registration] | None,
    ) -> None:
        self.scope = scope
        self.context = context
        self.bound = bound

    def build(self, event_type: str, args: tuple[Any, ...]) -> EventContainer[Any]:
        event: Event[Any] = Event(event_type, args)
        context = self.context or self.scope.current()
        container: EventContainer[Any] = EventContainer(event, context)
        registration = self.bound.get(event_type) if self.bound is not None else None
        logger.debug(
            "EVENT: %s %r triggered from %s (bound=%s)",
            event.type,
            event.payload,
            context.event.type if context else None,
            registration is not None,
        )
        if registration is not None:
            return Suspendable(container, registration, self.scope)
        return container


class EventFactory:
    """Leaf of a client tree: calling it creates an event container."""

    __slots__ = ("_event_type", "_state")

    def __init__(self, event_type: str, state: _ClientState) -> None:
        self._event_type = event_type
        self._state = state

    @property
    def event_type(self) -> str:
        return self._event_type

    def __call__(self, *args: Any) -> EventContainer[Any]:
        return self._state.build(self._event_type, args)

    def __repr__(self) -> str:
        return f"EventFactory({self._event_type})"


class Namespace:
    """Inner node of a client tree, one per topic segment."""

    def __init__(self, path: tuple[str, ...], state: _ClientState) -> None:
        self._path = path
        self._state = state
        self._members: dict[str, Namespace | EventFactory] = {}

    @property
    def path(self) -> tuple[str, ...]:
        return self._path

    @property
    def names(self) -> tuple[str, ...]:
        """Names of the namespaces and handlers directly below this node."""
        return tuple(self._members)

    def event(self, name: str, *args: Any) -> EventContainer[Any]:
        """Build an event for any type below this namespace.

        name may itself contain slashes. Types nobody handles are accepted
        here; they only fail when resolved.
        """
        return self._state.build(join_path((*self._path, *split_type(name))), args)

    def _child(self, segment: str) -> Namespace:
        member = self._members.get(segment)
        if isinstance(member, EventFactory):
            raise HandlerDefinitionError(
                f"{member.event_type} is both a handler and a topic"
            )
        if member is None:
            _check_name(self._path, segment)
            member = Namespace((*self._path, segment), self._state)
            self._members[segment] = member
            setattr(self, segment, member)
        return member

    def _leaf(self, name: str) -> EventFactory:
        member = self._members.get(name)
        if isinstance(member, Namespace):
            raise HandlerDefinitionError(
                f"{join_path((*self._path, name))} is both a handler and a topic"
            )
        if member is None:
            _check_name(self._path, name)
            member = EventFactory(join_path((*self._path, name)), self._state)
            self._members[name] = member
            setattr(self, name, member)
        return member

    def __dir__(self) -> list[str]:
        return sorted({*super().__dir__(), *self._members})

    def __repr__(self) -> str:
        return f"{type(self).__name__}({join_path(self._path) if self._path else '/'})"


class ProxyClient(Namespace):
    """Root of a client tree."""

    @classmethod
    def virtual(
        cls,
        scope: CommitScope,
        *descriptions: HandlerGroup | Handlers | type[Handlers],
        context: CommitContext | None = None,
    ) -> ProxyClient:
        """Client for handler groups that are registered elsewhere."""
        state = _ClientState(scope, context or scope.current(), None)
        root = cls((), state)
        for description in descriptions:
            topic, names = describe(description)
            node = root._descend(split_type(topic))
            for name in names:
                node._leaf(name)
        return root

    @classmethod
    def bound(
        cls,
        scope: CommitScope,
        group: HandlerGroup | Handlers,
        prefix: str | None = None,
        *,
        context: CommitContext | None = None,
    ) -> ProxyClient:
        """Client that resolves calls against group directly.

        prefix replaces the group's own topic, so the same handlers can be
        wrapped under another namespace.
        """
        resolved = as_group(group)
        bound = {
            event_type: Registration(event_type, fn, resolved.local)
            for event_type, fn in resolved.event_types(prefix).items()
        }
        state = _ClientState(scope, context or scope.current(), bound)
        root = cls((), state)
        node = root._descend(split_type(prefix or resolved.topic))
        for name in resolved.handlers:
            node._leaf(name)
        return root

    def _descend(self, segments: tuple[str, ...]) -> Namespace:
        node: Namespace = self
        for segment in segments:
            node = node._child(segment)
        return node


def _check_name(path: tuple[str, ...], name: str) -> None:
    if name.startswith("_") or name in _RESERVED:
        where = join_path(path) if path else "client root"
        raise HandlerDefinitionError(f"{name!r} cannot be used as a name in {where}")
