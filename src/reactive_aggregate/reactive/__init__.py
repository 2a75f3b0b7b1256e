"""
Reactive aggregation subscriptions.

This package contains:
- ReactiveAggregate, wiring observation, debouncing and recompute together
- core subpackage with the scheduler, executor and snapshot diff
"""

from reactive_aggregate.reactive.aggregate import ReactiveAggregate, reactive_aggregate
from reactive_aggregate.reactive.lifecycle import ObservationLifecycle, ObservedSource

__all__ = [
    "ReactiveAggregate",
    "reactive_aggregate",
    "ObservationLifecycle",
    "ObservedSource",
]
