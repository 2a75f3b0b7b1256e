"""
In-memory data source and query engine.

MemoryCollection keeps records in insertion order, reports mutations to its
observers and executes pipelines made of plain Python stages. It backs the
test suite and is handy for prototyping a publication before wiring it to a
real store.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from reactive_aggregate.backend_protocols import (
    ChangeCallbacks,
    DataSource,
    ObserverHandle,
    QueryEngine,
    Record,
)
from reactive_aggregate.identity import DEFAULT_IDENTITY_FIELD, canonical_identity

logger = logging.getLogger(__name__)

Stage = Callable[[List[Dict[str, Any]]], Iterable[Record]]


def _matches(record: Mapping[str, Any], selector: Optional[Mapping[str, Any]]) -> bool:
    if not selector:
        return True
    return all(record.get(key) == value for key, value in selector.items())


class MemoryObserverHandle(ObserverHandle):
    """Registration handle returned by MemoryCollection.observe()."""

    def __init__(self, collection: "MemoryCollection", token: int):
        self._collection = collection
        self._token = token
        self.stop_count = 0

    def stop(self) -> None:
        self.stop_count += 1
        self._collection._unregister(self._token)


class MemoryCollection(DataSource, QueryEngine):
    """
    Thread-safe in-memory collection.

    Pipelines are sequences of stages; each stage receives the list of
    records produced by the previous one (deep copies of the stored
    records for the first stage) and returns an iterable of records.
    """

    def __init__(
        self,
        name: str,
        records: Iterable[Mapping[str, Any]] = (),
        *,
        identity_field: str = DEFAULT_IDENTITY_FIELD,
    ):
        self._name = name
        self._identity_field = identity_field
        self._lock = threading.RLock()
        self._records: Dict[str, Dict[str, Any]] = {}
        self._observers: Dict[int, tuple[ChangeCallbacks, Optional[Mapping[str, Any]]]] = {}
        self._next_token = 0
        self.execute_count = 0
        for record in records:
            self._store(record)

    @property
    def name(self) -> str:
        return self._name

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def find(self, selector: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """Deep copies of the stored records matching selector."""
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values() if _matches(r, selector)]

    def insert(self, record: Mapping[str, Any]) -> str:
        """Store a new record and notify observers; returns its identity."""
        with self._lock:
            identity = self._store(record)
            stored = self._records[identity]
            self._dispatch("added", identity, stored)
        return identity

    def update(self, identity: Any, fields: Mapping[str, Any]) -> None:
        """Merge fields into an existing record and notify observers."""
        key = canonical_identity(identity)
        with self._lock:
            if key not in self._records:
                raise KeyError(f"no record {key!r} in '{self._name}'")
            self._records[key].update(fields)
            self._dispatch("changed", key, self._records[key])

    def remove(self, identity: Any) -> None:
        """Delete a record and notify observers."""
        key = canonical_identity(identity)
        with self._lock:
            record = self._records.pop(key)
            self._dispatch("removed", key, record)

    def observe(
        self,
        callbacks: ChangeCallbacks,
        selector: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> MemoryObserverHandle:
        """Register callbacks, replaying ``added`` for every matching record."""
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._observers[token] = (callbacks, selector)
            for identity, record in list(self._records.items()):
                if _matches(record, selector):
                    callbacks.added(identity)
        logger.debug("MemoryCollection: observer %d registered on '%s'", token, self._name)
        return MemoryObserverHandle(self, token)

    def fail_observers(self, exc: BaseException) -> None:
        """Deliver an error to every registered observer."""
        with self._lock:
            observers = [callbacks for callbacks, _ in self._observers.values()]
        for callbacks in observers:
            callbacks.error(exc)

    def execute(self, pipeline: Any, options: Mapping[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self.execute_count += 1
            records: List[Dict[str, Any]] = [copy.deepcopy(r) for r in self._records.values()]
        for stage in pipeline:
            records = list(stage(records))
        return records

    def _store(self, record: Mapping[str, Any]) -> str:
        identity = canonical_identity(record.get(self._identity_field))
        if identity in self._records:
            raise KeyError(f"duplicate record {identity!r} in '{self._name}'")
        self._records[identity] = dict(record)
        return identity

    def _unregister(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)

    def _dispatch(self, kind: str, identity: str, record: Mapping[str, Any]) -> None:
        # Called with the lock held so observers see mutations in order
        for callbacks, selector in list(self._observers.values()):
            if _matches(record, selector):
                getattr(callbacks, kind)(identity)
