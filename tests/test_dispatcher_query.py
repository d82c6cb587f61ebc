"""Tests for Dispatcher reads."""

import asyncio
from typing import Any

import pytest

from eventq import (
    Dispatcher,
    NestedSuspendableError,
    QueryStatus,
    UnresolvedHandlerError,
    create_dispatcher,
    define_handlers,
)


class Recorder:
    """Counts calls and returns a configurable value."""

    def __init__(self, value: Any = "value") -> None:
        self.value = value
        self.calls = 0

    def __call__(self, *args: Any) -> Any:
        self.calls += 1
        return self.value


class TestCachedRead:
    """Tests for the basic read path."""

    async def test_sync_value_is_available_at_once(self, dispatcher: Dispatcher) -> None:
        """Test that a sync handler's value needs no await and is cached."""
        get = Recorder(42)
        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        result = dispatcher.query(client.store.get())
        assert result.done()
        assert result.result() == 42
        assert await dispatcher.query(client.store.get()) == 42
        assert get.calls == 1

    async def test_payload_is_part_of_identity(self, dispatcher: Dispatcher) -> None:
        """Test that different arguments are cached apart."""
        group = define_handlers("store", {"get": lambda key: key.upper()})
        dispatcher.register(group)
        client = dispatcher.client(group)

        assert await dispatcher.query(client.store.get("a")) == "A"
        assert await dispatcher.query(client.store.get("b")) == "B"
        assert len(dispatcher.cache) == 2

    async def test_concurrent_reads_share_one_call(self, dispatcher: Dispatcher) -> None:
        """Test stampede protection for concurrent reads."""
        calls: list[int] = []

        async def get() -> int:
            calls.append(1)
            await asyncio.sleep(0)
            return 7

        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        first = dispatcher.query(client.store.get())
        second = dispatcher.query(client.store.get())
        assert not first.done()
        assert second.future is first.future
        assert await asyncio.gather(first, second) == [7, 7]
        assert calls == [1]

    async def test_full_cache_still_shares_reads(self) -> None:
        """Test that concurrent reads share one call when max_entries is reached."""
        dispatcher = Dispatcher(retry_delay=0, max_entries=1)
        calls: list[int] = []

        async def get(n: int) -> int:
            calls.append(n)
            await asyncio.sleep(0)
            return n

        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        first = dispatcher.query(client.store.get(1))
        second = dispatcher.query(client.store.get(2))
        third = dispatcher.query(client.store.get(2))
        assert third.future is second.future
        assert await asyncio.gather(first, second, third) == [1, 2, 2]
        assert calls == [1, 2]

    async def test_none_is_a_value(self, dispatcher: Dispatcher) -> None:
        """Test that None results are cached like any value."""
        get = Recorder(None)
        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        assert await dispatcher.query(client.store.get()) is None
        assert await dispatcher.query(client.store.get()) is None
        assert get.calls == 1

    async def test_bound_client_reads_without_registration(
        self, dispatcher: Dispatcher
    ) -> None:
        """Test reading through a bound client with a prefix."""
        group = define_handlers("store", {"get": Recorder(1)})
        client = dispatcher.proxy(group, "base")
        assert await dispatcher.query(client.base.get()) == 1

    async def test_refetch_keeps_old_value_until_replaced(
        self, dispatcher: Dispatcher
    ) -> None:
        """Test refetch replacing a cached value."""
        get = Recorder(1)
        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        await dispatcher.query(client.store.get())
        get.value = 2
        assert await dispatcher.refetch(client.store.get()) == 2
        assert dispatcher.get_query_data(client.store.get()) == 2
        assert get.calls == 2


class TestParkedRead:
    """Tests for reads of events nobody handles yet."""

    async def test_resolved_by_later_registration(self, dispatcher: Dispatcher) -> None:
        """Test that parked reads resolve once a handler registers."""
        get = Recorder("here")
        first = dispatcher.query(dispatcher.client().event("late/get"))
        second = dispatcher.query(dispatcher.client().event("late/get"))
        await asyncio.sleep(0)
        assert not first.done()

        dispatcher.register(define_handlers("late", {"get": get}))
        assert await asyncio.gather(first, second) == ["here", "here"]
        assert get.calls == 1

    async def test_timeout(self, dispatcher: Dispatcher) -> None:
        """Test that a parked read gives up after its timeout."""
        pending = dispatcher.query(dispatcher.client().event("late/get"), timeout=10)
        with pytest.raises(UnresolvedHandlerError, match="late/get"):
            await pending

    async def test_timeout_does_not_break_other_waiters(
        self, dispatcher: Dispatcher
    ) -> None:
        """Test that one timeout leaves other parked reads waiting."""
        patient = dispatcher.query(dispatcher.client().event("late/get"))
        impatient = dispatcher.query(dispatcher.client().event("late/get"), timeout=10)
        with pytest.raises(UnresolvedHandlerError):
            await impatient

        dispatcher.register(define_handlers("late", {"get": Recorder(1)}))
        assert await patient == 1


class TestErrors:
    """Tests for failing reads."""

    async def test_sync_error_raises_from_query(self, dispatcher: Dispatcher) -> None:
        """Test that a sync failure raises from query() itself."""
        def get() -> None:
            raise ValueError("broken")

        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        with pytest.raises(ValueError, match="broken"):
            dispatcher.query(client.store.get())
        state = dispatcher.peek(client.store.get())
        assert state.status is QueryStatus.ERROR
        assert isinstance(state.error, ValueError)

    async def test_async_error_then_refetch(self, dispatcher: Dispatcher) -> None:
        """Test recovering from an async failure with refetch."""
        fail = [True]

        async def get() -> str:
            if fail[0]:
                raise RuntimeError("down")
            return "up"

        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        with pytest.raises(RuntimeError):
            await dispatcher.query(client.store.get())
        assert dispatcher.peek(client.store.get()).status is QueryStatus.ERROR

        fail[0] = False
        assert await dispatcher.refetch(client.store.get()) == "up"
        assert dispatcher.peek(client.store.get()).status is QueryStatus.SUCCESS

    async def test_retries(self, dispatcher: Dispatcher) -> None:
        """Test that a flaky read succeeds within its retries."""
        attempts: list[int] = []

        def get() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("flaky")
            return "ok"

        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        assert await dispatcher.query(client.store.get().retry(2)) == "ok"
        assert len(attempts) == 3

    async def test_retries_exhausted(self, dispatcher: Dispatcher) -> None:
        """Test that the last error surfaces once retries run out."""
        attempts: list[int] = []

        async def get() -> None:
            attempts.append(1)
            raise ConnectionError("down")

        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        with pytest.raises(ConnectionError):
            await dispatcher.query(client.store.get().retry(1))
        assert len(attempts) == 2

    async def test_nested_container_is_rejected(self, dispatcher: Dispatcher) -> None:
        """Test that returning an uncommitted event fails without retry."""
        calls: list[int] = []
        group = define_handlers("store", {"get": lambda: calls.append(1) or other})
        dispatcher.register(group)
        client = dispatcher.client(group)
        other = client.store.event("other")

        with pytest.raises(NestedSuspendableError, match="store/other"):
            dispatcher.query(client.store.get().retry(3))
        assert calls == [1]


class TestInvalidation:
    """Tests for invalidation and stale results."""

    async def test_invalidated_read_is_fetched_again(self, dispatcher: Dispatcher) -> None:
        """Test that invalidated reads fetch again."""
        get = Recorder(1)
        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        await dispatcher.query(client.store.get())
        dispatcher.invalidate_topic("store")
        assert dispatcher.peek(client.store.get()).status is QueryStatus.INVALIDATED
        get.value = 2
        assert await dispatcher.query(client.store.get()) == 2

    async def test_stale_result_is_dropped(self, dispatcher: Dispatcher) -> None:
        """Test that a result started before invalidation is not stored."""
        gates: list[asyncio.Future[str]] = []

        async def get() -> str:
            gate: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            gates.append(gate)
            return await gate

        group = define_handlers("slow", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        old = dispatcher.query(client.slow.get())
        await asyncio.sleep(0)
        dispatcher.invalidate_topic("slow")
        new = dispatcher.query(client.slow.get())
        await asyncio.sleep(0)
        assert len(gates) == 2

        gates[1].set_result("new")
        assert await new == "new"
        gates[0].set_result("old")
        assert await old == "old"
        assert dispatcher.get_query_data(client.slow.get()) == "new"

    async def test_invalidate_empty_topic_is_noop(self, dispatcher: Dispatcher) -> None:
        """Test invalidating a topic with nothing cached."""
        dispatcher.invalidate_topic("nothing/here")
        dispatcher.invalidate_topic("nothing/here")
        assert len(dispatcher.cache) == 0


class TestLocalAndOffline:
    """Tests for local handlers and the network state."""

    async def test_local_reads_are_not_kept(self, dispatcher: Dispatcher) -> None:
        """Test that local reads run every time."""
        get = Recorder(1)
        group = define_handlers("ui", {"get": get}, local=True)
        dispatcher.register(group)
        client = dispatcher.client(group)

        await dispatcher.query(client.ui.get())
        await dispatcher.query(client.ui.get())
        assert get.calls == 2

    async def test_local_reads_are_kept_while_subscribed(
        self, dispatcher: Dispatcher
    ) -> None:
        """Test that a subscriber keeps a local read cached."""
        get = Recorder(1)
        group = define_handlers("ui", {"get": get}, local=True)
        dispatcher.register(group)
        client = dispatcher.client(group)

        unsubscribe = dispatcher.subscribe(client.ui.get(), lambda state: None)
        await dispatcher.query(client.ui.get())
        await dispatcher.query(client.ui.get())
        assert get.calls == 1

        unsubscribe()
        assert len(dispatcher.cache) == 0

    async def test_offline_reads_wait_for_network(self) -> None:
        """Test that offline reads start once back online."""
        dispatcher = create_dispatcher(retry_delay=0, online=False)
        get = Recorder("remote")
        group = define_handlers("api", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        pending = dispatcher.query(client.api.get())
        await asyncio.sleep(0.01)
        assert get.calls == 0
        assert dispatcher.peek(client.api.get()).status is QueryStatus.PENDING

        dispatcher.set_online(True)
        assert await pending == "remote"
        assert dispatcher.online

    async def test_local_reads_run_offline(self) -> None:
        """Test that local handlers ignore the network state."""
        dispatcher = create_dispatcher(online=False)
        group = define_handlers("ui", {"get": Recorder("here")}, local=True)
        dispatcher.register(group)
        client = dispatcher.client(group)

        assert dispatcher.query(client.ui.get()).result() == "here"


class TestSubscribers:
    """Tests for peek, subscribe and direct cache writes."""

    async def test_status_sequence(self, dispatcher: Dispatcher) -> None:
        """Test the states a subscriber sees."""
        async def get() -> int:
            return 1

        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)
        assert dispatcher.peek(client.store.get()).status is QueryStatus.IDLE

        states: list[QueryStatus] = []
        dispatcher.subscribe(client.store.get(), lambda state: states.append(state.status))
        await dispatcher.query(client.store.get())
        dispatcher.invalidate_topic("store")

        assert states == [QueryStatus.PENDING, QueryStatus.SUCCESS, QueryStatus.INVALIDATED]

    async def test_set_query_data(self, dispatcher: Dispatcher) -> None:
        """Test writing a value straight into the cache."""
        get = Recorder(1)
        group = define_handlers("store", {"get": get})
        dispatcher.register(group)
        client = dispatcher.client(group)

        assert dispatcher.get_query_data(client.store.get()) is None
        dispatcher.set_query_data(client.store.get(), 5)
        assert await dispatcher.query(client.store.get()) == 5
        assert get.calls == 0

    async def test_clear(self, dispatcher: Dispatcher) -> None:
        """Test dropping every cached read."""
        group = define_handlers("store", {"get": Recorder(1)})
        dispatcher.register(group)
        client = dispatcher.client(group)
        await dispatcher.query(client.store.get())
        dispatcher.clear()
        assert dispatcher.peek(client.store.get()).status is QueryStatus.IDLE


class TestConfiguration:
    """Tests for dispatcher options."""

    def test_invalid_max_entries(self) -> None:
        """Test that max_entries must be positive."""
        with pytest.raises(ValueError, match="max_entries"):
            Dispatcher(max_entries=0)

    def test_invalid_duration(self) -> None:
        """Test that bad durations are rejected."""
        with pytest.raises(ValueError, match="Invalid duration"):
            Dispatcher(gc_time="soon")

    def test_create_dispatcher_registers_groups(self) -> None:
        """Test that create_dispatcher registers the given groups."""
        group = define_handlers("store", {"get": Recorder()})
        dispatcher = create_dispatcher(group, gc_time="1m")
        assert dispatcher.registry.is_registered("store/get")
