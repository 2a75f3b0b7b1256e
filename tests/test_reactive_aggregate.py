from __future__ import annotations

import logging

import pytest

from reactive_aggregate import (
    AggregateOptions,
    ConfigurationError,
    DataSource,
    ExecutionError,
    MemoryCollection,
    ObserverError,
    ObserverHandle,
    QueryEngine,
    ReactiveAggregate,
    UnsupportedIdentityTypeError,
    reactive_aggregate,
)


class CountingHandle(ObserverHandle):
    def __init__(self, fail: bool = False) -> None:
        self.stop_count = 0
        self.fail = fail

    def stop(self) -> None:
        self.stop_count += 1
        if self.fail:
            raise RuntimeError("already closed")


class StubSource(DataSource):
    def __init__(self, name: str, fail_stop: bool = False) -> None:
        self._name = name
        self.callbacks = None
        self.handle = CountingHandle(fail=fail_stop)

    @property
    def name(self) -> str:
        return self._name

    def observe(self, callbacks, selector=None, options=None):
        self.callbacks = callbacks
        return self.handle


def test_initial_replay_is_suppressed(sink, orders) -> None:
    aggregate = reactive_aggregate(sink, orders, [], {"automatic_observer": True})

    assert len(sink.of_kind("added")) == 10
    assert sink.of_kind("changed") == []
    assert sink.of_kind("removed") == []
    assert sink.ready_count == 1
    assert sink.calls[-1] == ("ready",)
    assert orders.execute_count == 1
    assert aggregate.is_running
    assert aggregate.cycle_count == 1
    aggregate.stop()


def test_mutations_are_republished(sink, orders) -> None:
    aggregate = reactive_aggregate(
        sink,
        orders,
        [lambda records: [r for r in records if r["qty"] > 5]],
        {"automatic_observer": True, "downstream_collection_name": "big_orders"},
    )
    sink.calls.clear()

    orders.update("o1", {"qty": 50})
    orders.remove("o10")

    assert ("added", "big_orders", "o1", {"_id": "o1", "qty": 50}) in sink.calls
    assert sink.calls[-1] == ("removed", "big_orders", "o10")
    assert aggregate.snapshot.keys() == {"o1", "o6", "o7", "o8", "o9"}
    aggregate.stop()


def test_debounce_count_bounds_recomputes(sink, orders) -> None:
    aggregate = reactive_aggregate(
        sink, orders, [], {"automatic_observer": True, "debounce_count": 3}
    )

    for i in range(11, 16):
        orders.insert({"_id": f"o{i}", "qty": i})

    # initial cycle + one cycle at the third notification
    assert orders.execute_count == 2
    assert aggregate.scheduler.pending_count == 2
    assert len(sink.of_kind("added")) == 13
    aggregate.stop()


def test_additional_observers_trigger_recompute(sink, orders) -> None:
    customers = MemoryCollection("customers", [{"_id": "c1"}])
    aggregate = reactive_aggregate(
        sink, orders, [], AggregateOptions(additional_observers=[customers])
    )
    assert orders.execute_count == 1

    customers.insert({"_id": "c2"})

    assert orders.execute_count == 2
    assert customers.observer_count == 1
    aggregate.stop()
    assert customers.observer_count == 0


def test_no_observers_publishes_once(sink, orders) -> None:
    aggregate = reactive_aggregate(sink, orders)

    orders.insert({"_id": "o11", "qty": 11})

    assert orders.execute_count == 1
    assert orders.observer_count == 0
    assert sink.ready_count == 1
    aggregate.stop()


def test_stop_cancels_pending_timer_and_recomputes(sink, orders) -> None:
    aggregate = reactive_aggregate(
        sink,
        orders,
        [],
        {"automatic_observer": True, "debounce_count": 100, "debounce_delay": 10_000},
    )
    orders.insert({"_id": "o11", "qty": 11})
    assert aggregate.scheduler.has_pending_timer

    aggregate.stop()

    assert not aggregate.scheduler.has_pending_timer
    assert orders.observer_count == 0
    aggregate.flush()
    aggregate.executor.trigger()
    assert orders.execute_count == 1
    assert not aggregate.is_running


def test_stop_releases_each_observer_once(sink, orders) -> None:
    sources = [StubSource("a"), StubSource("b"), StubSource("c")]
    aggregate = reactive_aggregate(sink, orders, [], {"additional_observers": sources})

    aggregate.stop()
    aggregate.stop()

    assert [s.handle.stop_count for s in sources] == [1, 1, 1]


def test_stop_failure_still_releases_remaining_observers(sink, orders) -> None:
    sources = [StubSource("a", fail_stop=True), StubSource("b")]
    aggregate = reactive_aggregate(sink, orders, [], {"additional_observers": sources})

    with pytest.raises(ObserverError):
        aggregate.stop()

    assert [s.handle.stop_count for s in sources] == [1, 1]


def test_observer_error_terminates_subscription(sink, orders) -> None:
    aggregate = reactive_aggregate(sink, orders, [], {"automatic_observer": True})

    orders.fail_observers(RuntimeError("oplog lost"))

    assert len(sink.errors) == 1
    assert isinstance(sink.errors[0], ObserverError)
    assert "oplog lost" in sink.errors[0].message
    assert sink.errors[0].sanitized == "Error [reactive-aggregate]"
    assert not aggregate.is_running
    assert orders.observer_count == 0


def test_cycle_error_after_start_is_delivered_to_sink(sink, orders) -> None:
    state = {"fail": False}

    def _stage(records):
        if state["fail"]:
            raise RuntimeError("pipeline exploded")
        return records

    aggregate = reactive_aggregate(sink, orders, [_stage], {"automatic_observer": True})
    sink.calls.clear()

    state["fail"] = True
    orders.insert({"_id": "o11", "qty": 11})

    assert len(sink.errors) == 1
    assert isinstance(sink.errors[0], ExecutionError)
    assert sink.calls == []
    assert aggregate.cycle_count == 1
    assert not aggregate.is_running
    assert orders.observer_count == 0


def test_initial_cycle_failure_raises_and_releases(sink) -> None:
    source = StubSource("events")

    class BrokenEngine(QueryEngine):
        def execute(self, pipeline, options):
            raise RuntimeError("no such collection")

    with pytest.raises(ExecutionError):
        reactive_aggregate(
            sink,
            BrokenEngine(),
            [],
            {"additional_observers": [source], "downstream_collection_name": "events"},
        )

    assert source.handle.stop_count == 1
    assert sink.ready_count == 0
    assert sink.errors == []


def test_unsubscribe_stops_observation(sink, orders) -> None:
    aggregate = reactive_aggregate(sink, orders, [], {"automatic_observer": True})

    sink.unsubscribe()

    assert orders.observer_count == 0
    assert not aggregate.is_running


def test_context_manager_starts_and_stops(sink, orders) -> None:
    with ReactiveAggregate(sink, orders, [], {"automatic_observer": True}) as aggregate:
        assert aggregate.is_running
        assert orders.observer_count == 1

    assert orders.observer_count == 0


def test_legacy_option_names(sink, orders) -> None:
    aggregate = reactive_aggregate(
        sink,
        orders,
        [],
        {"noAutomaticObserver": False, "debounceCount": 0, "clientCollection": "legacy"},
    )

    assert aggregate.collection_name == "legacy"
    assert orders.observer_count == 1
    assert sink.calls[0][1] == "legacy"
    aggregate.stop()


def test_invalid_arguments_register_nothing(sink, orders) -> None:
    with pytest.raises(ConfigurationError):
        ReactiveAggregate(object(), orders)
    with pytest.raises(ConfigurationError):
        ReactiveAggregate(sink, object())
    with pytest.raises(ConfigurationError):
        ReactiveAggregate(sink, orders, "not a pipeline")
    with pytest.raises(ConfigurationError):
        ReactiveAggregate(sink, orders, [], {"debounce_count": -1})

    class PlainEngine(QueryEngine):
        def execute(self, pipeline, options):
            return []

    with pytest.raises(ConfigurationError):
        ReactiveAggregate(sink, PlainEngine(), [], {"downstream_collection_name": "x", "automatic_observer": True})
    with pytest.raises(ConfigurationError):
        ReactiveAggregate(sink, PlainEngine(), [])

    assert orders.observer_count == 0


def test_deprecated_options_are_reported_to_diagnostics(sink, orders, caplog) -> None:
    diagnostics = logging.getLogger("tests.diagnostics")
    with caplog.at_level(logging.WARNING, logger="tests.diagnostics"):
        aggregate = reactive_aggregate(
            sink,
            orders,
            [],
            {"automatic_observer": True, "observeSelector": {"qty": 3}},
            diagnostics=diagnostics,
        )

    assert any("observe_selector is deprecated" in r.getMessage() for r in caplog.records)
    aggregate.stop()


def test_observe_selector_filters_automatic_observer(sink, orders) -> None:
    aggregate = reactive_aggregate(
        sink, orders, [], {"automatic_observer": True, "observe_selector": {"qty": 3}}
    )

    orders.update("o4", {"note": "unwatched"})
    assert orders.execute_count == 1

    orders.update("o3", {"note": "watched"})
    assert orders.execute_count == 2
    aggregate.stop()


class ReplayFailingSource(StubSource):
    """Source whose observer reports an error while replaying its contents."""

    def observe(self, callbacks, selector=None, options=None):
        handle = super().observe(callbacks, selector, options)
        callbacks.added("r1")
        callbacks.error(RuntimeError("cursor invalidated"))
        return handle


def test_observer_error_during_start_raises_and_releases(sink, orders) -> None:
    healthy = StubSource("healthy")
    failing = ReplayFailingSource("failing")
    trailing = StubSource("trailing")

    with pytest.raises(ObserverError) as excinfo:
        reactive_aggregate(
            sink, orders, [], {"additional_observers": [healthy, failing, trailing]}
        )

    assert "cursor invalidated" in excinfo.value.message
    assert [s.handle.stop_count for s in (healthy, failing, trailing)] == [1, 1, 1]
    assert sink.ready_count == 0
    assert sink.calls == []
    assert sink.errors == []
    assert orders.execute_count == 0


def test_failing_identity_conversion_terminates_subscription(sink, orders) -> None:
    class BrokenId:
        def __canonical_id__(self) -> str:
            raise ValueError("corrupt id")

    state = {"broken": False}

    def _stage(records):
        if state["broken"]:
            return records + [{"_id": BrokenId()}]
        return records

    aggregate = reactive_aggregate(sink, orders, [_stage], {"automatic_observer": True})
    sink.calls.clear()

    state["broken"] = True
    orders.insert({"_id": "o11", "qty": 11})

    assert len(sink.errors) == 1
    assert isinstance(sink.errors[0], UnsupportedIdentityTypeError)
    assert sink.calls == []
    assert not aggregate.is_running
    assert orders.observer_count == 0


def test_cleanup_failure_after_fatal_error_is_not_raised_to_notifier(sink, orders) -> None:
    source = StubSource("events", fail_stop=True)
    state = {"fail": False}

    def _stage(records):
        if state["fail"]:
            raise RuntimeError("pipeline exploded")
        return records

    aggregate = reactive_aggregate(sink, orders, [_stage], {"additional_observers": [source]})

    state["fail"] = True
    source.callbacks.changed("x")

    assert len(sink.errors) == 1
    assert isinstance(sink.errors[0], ExecutionError)
    assert source.handle.stop_count == 1
    assert not aggregate.is_running


def test_start_only_once(sink, orders) -> None:
    aggregate = reactive_aggregate(sink, orders, [], {"automatic_observer": True})

    with pytest.raises(ConfigurationError):
        aggregate.start()
    assert orders.observer_count == 1

    aggregate.stop()
    with pytest.raises(ConfigurationError):
        aggregate.start()
    assert orders.observer_count == 0
    assert orders.execute_count == 1
