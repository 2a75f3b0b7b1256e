"""Single-flight recompute execution: query, diff, publish."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, Optional

from reactive_aggregate.backend_protocols import QueryEngine, Sink
from reactive_aggregate.config import PostProcessFn
from reactive_aggregate.errors import ExecutionError, ReactiveAggregateError
from reactive_aggregate.identity import DEFAULT_IDENTITY_FIELD
from reactive_aggregate.reactive.core.contracts import RecomputeExecutorABC
from reactive_aggregate.reactive.core.snapshot_diff import (
    FieldIndex,
    Operation,
    OperationKind,
    Snapshot,
    diff_snapshot,
)

logger = logging.getLogger(__name__)


class RecomputeExecutor(RecomputeExecutorABC):
    """
    Runs recompute cycles with at most one in flight.

    A trigger arriving while a cycle runs marks a rerun instead of starting
    a second cycle; the caller that owns the in-flight cycle then runs one
    more cycle, which reflects every trigger merged meanwhile.
    """

    def __init__(
        self,
        *,
        query_engine: QueryEngine,
        sink: Sink,
        pipeline: Any,
        collection_name: str,
        execution_options: Optional[Mapping[str, Any]] = None,
        is_initializing: Callable[[], bool] = lambda: False,
        identity_field: str = DEFAULT_IDENTITY_FIELD,
        mark_cleared_fields: bool = False,
        post_process: Optional[PostProcessFn] = None,
    ):
        self._query_engine = query_engine
        self._sink = sink
        self._pipeline = pipeline
        self._collection_name = collection_name
        self._execution_options = execution_options if execution_options is not None else {}
        self._is_initializing = is_initializing
        self._identity_field = identity_field
        self._post_process = post_process

        self._snapshot: Snapshot = {}
        self._field_index: Optional[FieldIndex] = {} if mark_cleared_fields else None
        self._iteration = 1
        self._ready_sent = False

        self._lock = threading.Lock()
        self._in_flight = False
        self._rerun = False
        self._closed = False

    @property
    def iteration(self) -> int:
        """Tag the next cycle will use; completed cycles == iteration - 1."""
        return self._iteration

    @property
    def snapshot(self) -> Snapshot:
        """Copy of the identities published by the last completed cycle."""
        return dict(self._snapshot)

    @property
    def closed(self) -> bool:
        return self._closed

    def trigger(self) -> bool:
        if self._is_initializing():
            return False
        return self._run_single_flight()

    def run_initial(self) -> bool:
        """Run a cycle regardless of the initializing gate."""
        return self._run_single_flight()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._rerun = False

    def _run_single_flight(self) -> bool:
        with self._lock:
            if self._closed:
                return False
            if self._in_flight:
                self._rerun = True
                logger.debug("RecomputeExecutor: cycle in flight, rerun scheduled")
                return False
            self._in_flight = True

        try:
            while True:
                self._run_cycle()
                with self._lock:
                    if not self._rerun or self._closed:
                        self._rerun = False
                        break
                    self._rerun = False
        finally:
            with self._lock:
                self._in_flight = False
                self._rerun = False
        return True

    def _run_cycle(self) -> None:
        """One query-diff-publish cycle; on error nothing is committed."""
        try:
            records = list(self._query_engine.execute(self._pipeline, self._execution_options))
        except ReactiveAggregateError:
            raise
        except Exception as exc:
            raise ExecutionError(f"aggregation failed: {exc}") from exc

        try:
            result = diff_snapshot(
                self._snapshot,
                records,
                self._iteration,
                identity_field=self._identity_field,
                field_index=self._field_index,
            )
        except ReactiveAggregateError:
            raise
        except Exception as exc:
            raise ExecutionError(f"diffing aggregation result failed: {exc}") from exc

        try:
            for operation in result.operations:
                self._publish(operation)
        except ReactiveAggregateError:
            raise
        except Exception as exc:
            raise ExecutionError(f"publishing to sink failed: {exc}") from exc

        self._snapshot = result.snapshot
        if result.field_index is not None:
            self._field_index = result.field_index
        logger.debug(
            "RecomputeExecutor: cycle %d published %d operations (%d records)",
            self._iteration,
            len(result.operations),
            len(result.snapshot),
        )
        self._iteration += 1

        if not self._ready_sent:
            self._ready_sent = True
            try:
                self._sink.ready()
            except Exception as exc:
                raise ExecutionError(f"signalling ready to sink failed: {exc}") from exc
            logger.info(
                "RecomputeExecutor: '%s' ready with %d records",
                self._collection_name,
                len(self._snapshot),
            )

    def _publish(self, operation: Operation) -> None:
        if operation.kind is OperationKind.REMOVED:
            self._sink.removed(self._collection_name, operation.identity)
            return
        record = operation.record
        if self._post_process is not None:
            record = self._post_process(record)
        if operation.kind is OperationKind.ADDED:
            self._sink.added(self._collection_name, operation.identity, record)
        else:
            self._sink.changed(self._collection_name, operation.identity, record)
