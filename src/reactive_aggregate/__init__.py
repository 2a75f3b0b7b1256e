"""
Reactive aggregation publishing.

Republishes the result of an aggregation pipeline to a downstream sink,
recomputing (debounced) whenever an observed data source changes and
sending only the added/changed/removed records.
"""

from .backend_protocols import (
    ChangeCallbacks,
    ChangeKind,
    ChangeNotification,
    DataSource,
    ObserverHandle,
    QueryEngine,
    Record,
    Sink,
)
from .config import AggregateOptions
from .errors import (
    ConfigurationError,
    ExecutionError,
    IdentityError,
    MissingIdentityError,
    ObserverError,
    ReactiveAggregateError,
    UnsupportedIdentityTypeError,
)
from .identity import IdentityCoercer, canonical_identity, normalize_identity
from .memory import MemoryCollection
from .reactive import ReactiveAggregate, reactive_aggregate
from .reactive.core import DebounceScheduler, RecomputeExecutor, diff_snapshot

__version__ = "1.1.0"

__all__ = [
    'ChangeCallbacks',
    'ChangeKind',
    'ChangeNotification',
    'DataSource',
    'ObserverHandle',
    'QueryEngine',
    'Record',
    'Sink',
    'AggregateOptions',
    'ConfigurationError',
    'ExecutionError',
    'IdentityError',
    'MissingIdentityError',
    'ObserverError',
    'ReactiveAggregateError',
    'UnsupportedIdentityTypeError',
    'IdentityCoercer',
    'canonical_identity',
    'normalize_identity',
    'MemoryCollection',
    'ReactiveAggregate',
    'reactive_aggregate',
    'DebounceScheduler',
    'RecomputeExecutor',
    'diff_snapshot',
]
