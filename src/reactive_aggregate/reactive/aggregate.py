"""Reactive aggregation: republish a pipeline's result set as it changes."""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional, Union

from reactive_aggregate.backend_protocols import DataSource, ObserverHandle, QueryEngine, Sink
from reactive_aggregate.config import AggregateOptions
from reactive_aggregate.errors import ConfigurationError, ObserverError, ReactiveAggregateError
from reactive_aggregate.reactive.core.debounce import DebounceScheduler
from reactive_aggregate.reactive.core.executor import RecomputeExecutor
from reactive_aggregate.reactive.lifecycle import ObservationLifecycle, ObservedSource

logger = logging.getLogger(__name__)

OptionsLike = Union[AggregateOptions, Mapping[str, Any], None]


class ReactiveAggregate:
    """
    One subscription republishing an aggregation to a sink.

    Wires the observation lifecycle, debounce scheduler and recompute
    executor together. Fatal errors after start() stop the subscription and
    are delivered to ``sink.error``.

    Example:
        with ReactiveAggregate(sink, orders, pipeline, {"debounce_delay": 100}) as agg:
            ...
    """

    def __init__(
        self,
        sink: Sink,
        collection: QueryEngine,
        pipeline: Any = (),
        options: OptionsLike = None,
        *,
        diagnostics: Optional[logging.Logger] = None,
    ):
        """
        Args:
            sink: Receives added/changed/removed/ready/error calls
            collection: Query engine the pipeline runs on; also observed
                when automatic_observer is set (must then be a DataSource)
            pipeline: Opaque pipeline passed to the query engine; list or tuple
            options: AggregateOptions or a mapping accepted by
                AggregateOptions.from_mapping
            diagnostics: Logger receiving configuration warnings

        Raises:
            ConfigurationError: on invalid arguments; nothing is registered
        """
        if not isinstance(sink, Sink):
            raise ConfigurationError("sink must be a Sink")
        if not isinstance(collection, QueryEngine):
            raise ConfigurationError("collection must be a QueryEngine")
        if not isinstance(pipeline, (list, tuple)):
            raise ConfigurationError("pipeline must be a list")
        if not isinstance(options, AggregateOptions):
            options = AggregateOptions.from_mapping(options)

        if options.downstream_collection_name is None and not isinstance(collection, DataSource):
            raise ConfigurationError(
                "options.downstream_collection_name is required when the collection is not a DataSource"
            )
        if options.automatic_observer and not isinstance(collection, DataSource):
            raise ConfigurationError("options.automatic_observer requires a DataSource collection")

        self.sink = sink
        self.collection = collection
        self.pipeline = list(pipeline)
        self.options = options
        self._diagnostics = diagnostics or logger
        self._failed = threading.Event()

        sources = [ObservedSource(source) for source in options.additional_observers]
        if options.automatic_observer:
            sources.append(
                ObservedSource(collection, options.observe_selector, options.observe_options)
            )
        self.collection_name = (
            options.downstream_collection_name
            if options.downstream_collection_name is not None
            else collection.name
        )

        self._lifecycle = ObservationLifecycle(sources, on_fatal=self._fail)
        self._executor = RecomputeExecutor(
            query_engine=collection,
            sink=sink,
            pipeline=self.pipeline,
            collection_name=self.collection_name,
            execution_options=options.execution_options,
            is_initializing=lambda: self._lifecycle.initializing,
            identity_field=options.identity_field,
            mark_cleared_fields=options.mark_cleared_fields,
            post_process=options.post_process,
        )
        self._scheduler = DebounceScheduler(
            recompute_fn=self._recompute,
            debounce_count=options.debounce_count,
            debounce_delay_ms=options.debounce_delay,
            is_initializing=lambda: self._lifecycle.initializing,
        )

    @property
    def is_initializing(self) -> bool:
        return self._lifecycle.initializing

    @property
    def is_running(self) -> bool:
        return not self._lifecycle.initializing and not self._lifecycle.stopped

    @property
    def cycle_count(self) -> int:
        """Number of completed recompute cycles."""
        return self._executor.iteration - 1

    @property
    def snapshot(self) -> dict[str, int]:
        return self._executor.snapshot

    @property
    def scheduler(self) -> DebounceScheduler:
        return self._scheduler

    @property
    def executor(self) -> RecomputeExecutor:
        return self._executor

    def start(self) -> list[ObserverHandle]:
        """
        Observe, publish the initial result set and signal ready.

        Raises:
            ReactiveAggregateError: if observing or the initial cycle fails;
                every registration is released first
        """
        self.options.report_hazards(self._diagnostics)
        logger.info(
            "ReactiveAggregate: starting '%s' (debounce_count=%d, debounce_delay=%dms)",
            self.collection_name,
            self.options.debounce_count,
            self.options.debounce_delay,
        )
        handles = self._lifecycle.start(self._scheduler, self._executor)
        self.sink.on_stop(self.stop)
        return handles

    def stop(self) -> None:
        """Cancel pending recomputes and release every observer."""
        self._lifecycle.stop()

    def flush(self) -> None:
        """Recompute now for any pending notifications."""
        self._scheduler.flush()

    def __enter__(self) -> "ReactiveAggregate":
        if self._lifecycle.initializing and not self._lifecycle.stopped:
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _recompute(self) -> None:
        """Scheduler flush target; cycle errors terminate the subscription."""
        try:
            self._executor.trigger()
        except ReactiveAggregateError as exc:
            self._fail(exc)

    def _fail(self, exc: ReactiveAggregateError) -> None:
        if self._failed.is_set():
            return
        self._failed.set()
        logger.error(
            "ReactiveAggregate: '%s' terminated: %s", self.collection_name, exc, exc_info=exc
        )
        try:
            self.stop()
        except ObserverError as cleanup_exc:
            logger.error(
                "ReactiveAggregate: cleanup after failure: %s", cleanup_exc, exc_info=True
            )
        finally:
            self.sink.error(exc)


def reactive_aggregate(
    sink: Sink,
    collection: QueryEngine,
    pipeline: Any = (),
    options: OptionsLike = None,
    *,
    diagnostics: Optional[logging.Logger] = None,
) -> ReactiveAggregate:
    """Create and start a ReactiveAggregate; see its constructor for arguments."""
    aggregate = ReactiveAggregate(sink, collection, pipeline, options, diagnostics=diagnostics)
    aggregate.start()
    return aggregate
