"""eventq - event dispatch with a dependency-tracking query cache."""

from eventq.cache import CacheEvent, QueryCache, QueryEntry
from eventq.container import EventContainer
from eventq.context import CommitScope
from eventq.dispatcher import Dispatcher, create_dispatcher

# Duration parsing
from eventq.duration import parse_duration
from eventq.errors import (
    EventqError,
    HandlerDefinitionError,
    NestedSuspendableError,
    PendingQueryError,
    UnresolvedHandlerError,
)
from eventq.graph import DependencyGraph, DependencyObserver

# Handler groups
from eventq.handlers import HandlerGroup, Handlers, as_group, define_handlers
from eventq.keys import make_query_key, split_type
from eventq.proxy import EventFactory, Namespace, ProxyClient
from eventq.query_awaitable import QueryAwaitable
from eventq.registry import ListenerRegistry, Registration
from eventq.suspendable import Suspendable, is_suspendable
from eventq.topic import Topic

# Core types
from eventq.types import (
    CommitContext,
    Duration,
    Event,
    QueryState,
    QueryStatus,
)

__version__ = "0.1.0"

__all__ = [
    "CacheEvent",
    "CommitContext",
    "CommitScope",
    "DependencyGraph",
    "DependencyObserver",
    "Dispatcher",
    "Duration",
    "Event",
    "EventContainer",
    "EventFactory",
    "EventqError",
    "HandlerDefinitionError",
    "HandlerGroup",
    "Handlers",
    "ListenerRegistry",
    "Namespace",
    "NestedSuspendableError",
    "PendingQueryError",
    "ProxyClient",
    "QueryAwaitable",
    "QueryCache",
    "QueryEntry",
    "QueryState",
    "QueryStatus",
    "Registration",
    "Suspendable",
    "Topic",
    "UnresolvedHandlerError",
    "as_group",
    "create_dispatcher",
    "define_handlers",
    "is_suspendable",
    "make_query_key",
    "parse_duration",
    "split_type",
]
