"""Shared pytest fixtures."""

from dataclasses import dataclass, field
from typing import Any

import pytest

from eventq import Dispatcher, Handlers, define_handlers


@dataclass
class CartState:
    items: list[dict[str, Any]] = field(default_factory=list)


class Cart(Handlers, topic="cart"):
    """Cart handlers over an in-memory state."""

    def __init__(self, state: CartState) -> None:
        self.state = state

    def get_items(self) -> list[dict[str, Any]]:
        return list(self.state.items)

    def get_item(self, id: str) -> dict[str, Any] | None:
        return next((item for item in self.state.items if item["id"] == id), None)

    def item_added(self, item: dict[str, Any]) -> None:
        self.state.items.append(item)

    def item_removed(self, id: str) -> None:
        self.state.items = [item for item in self.state.items if item["id"] != id]


@pytest.fixture
def dispatcher() -> Dispatcher:
    """Create a fresh Dispatcher without retry delays for each test."""
    return Dispatcher(retry_delay=0)


@pytest.fixture
def cart_state() -> CartState:
    return CartState()


@pytest.fixture
def cart(dispatcher: Dispatcher, cart_state: CartState) -> Any:
    """Register Cart handlers and return a client for them."""
    dispatcher.register(Cart(cart_state))
    return dispatcher.client(Cart)


@pytest.fixture
def checkout(dispatcher: Dispatcher) -> Any:
    group = define_handlers("checkout", {"completion": lambda: "done"})
    dispatcher.register(group)
    return dispatcher.client(group)
