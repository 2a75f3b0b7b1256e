"""Scheduling, execution and diffing core for reactive aggregation."""

from reactive_aggregate.reactive.core.contracts import (
    RecomputeExecutorABC,
    RecomputeSchedulerABC,
)
from reactive_aggregate.reactive.core.debounce import DebounceScheduler
from reactive_aggregate.reactive.core.executor import RecomputeExecutor
from reactive_aggregate.reactive.core.snapshot_diff import (
    Operation,
    OperationKind,
    SnapshotDiff,
    diff_snapshot,
)

__all__ = [
    "RecomputeExecutorABC",
    "RecomputeSchedulerABC",
    "DebounceScheduler",
    "RecomputeExecutor",
    "Operation",
    "OperationKind",
    "SnapshotDiff",
    "diff_snapshot",
]
