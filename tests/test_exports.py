"""Tests for package exports."""

import eventq


def test_public_api_available() -> None:
    """Test that the coordinator and its building blocks are importable."""
    from eventq import (
        Dispatcher,
        Event,
        EventContainer,
        Handlers,
        ProxyClient,
        QueryAwaitable,
        Suspendable,
        create_dispatcher,
        define_handlers,
    )

    # Just verify they're importable
    assert Dispatcher is not None
    assert Event is not None
    assert EventContainer is not None
    assert Handlers is not None
    assert ProxyClient is not None
    assert QueryAwaitable is not None
    assert Suspendable is not None
    assert create_dispatcher is not None
    assert define_handlers is not None


def test_all_names_resolve() -> None:
    """Test that every name in __all__ exists."""
    for name in eventq.__all__:
        assert hasattr(eventq, name), name


def test_version() -> None:
    """Test the package version."""
    assert eventq.__version__ == "0.1.0"
