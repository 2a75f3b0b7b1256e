"""
Abstract capability interfaces for reactive aggregation collaborators.

The core depends only on these contracts: a query engine that executes an
opaque pipeline, data sources that can be observed for change hints, and a
sink that receives the published result set. Collaborators must explicitly
inherit from these ABCs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional

Record = Mapping[str, Any]


class ChangeKind(Enum):
    """Kind of upstream mutation reported by an observer."""

    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeNotification:
    """
    Hint that an observed data source mutated.

    Carries no payload; the aggregation is recomputed rather than patched.
    """

    source_name: str
    kind: ChangeKind
    source_identity: Any = None


@dataclass(frozen=True)
class ChangeCallbacks:
    """Callbacks a data source invokes for each observed mutation."""

    added: Callable[[Any], None]
    changed: Callable[[Any], None]
    removed: Callable[[Any], None]
    error: Callable[[BaseException], None]


class ObserverHandle(ABC):
    """A live registration with a data source."""

    @abstractmethod
    def stop(self) -> None:
        """Deregister the callbacks; no notifications are delivered afterwards."""
        raise NotImplementedError


class DataSource(ABC):
    """A watchable data source that reports mutations as change hints."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name used to tag notifications and as the default published collection."""
        raise NotImplementedError

    @abstractmethod
    def observe(
        self,
        callbacks: ChangeCallbacks,
        selector: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> ObserverHandle:
        """
        Register callbacks for mutations of this source.

        Implementations may replay an ``added`` notification per existing
        record on registration; the lifecycle discards those.

        Args:
            callbacks: Mutation and error callbacks
            selector: Optional filter restricting the observed records
            options: Optional source-specific observation options

        Returns:
            Handle whose stop() releases the registration
        """
        raise NotImplementedError


class QueryEngine(ABC):
    """Executes an aggregation pipeline and returns its result records."""

    @abstractmethod
    def execute(self, pipeline: Any, options: Mapping[str, Any]) -> Iterable[Record]:
        """
        Run the pipeline.

        This is the one call a recompute cycle is expected to block on.
        """
        raise NotImplementedError


class Sink(ABC):
    """Downstream consumer of the published result set."""

    @abstractmethod
    def added(self, collection: str, identity: str, record: Record) -> None:
        raise NotImplementedError

    @abstractmethod
    def changed(self, collection: str, identity: str, record: Record) -> None:
        raise NotImplementedError

    @abstractmethod
    def removed(self, collection: str, identity: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def ready(self) -> None:
        """Called exactly once, after the first successful cycle."""
        raise NotImplementedError

    @abstractmethod
    def error(self, exc: BaseException) -> None:
        """Called once when the subscription terminates with a fatal error."""
        raise NotImplementedError

    def on_stop(self, callback: Callable[[], None]) -> None:
        """
        Register a callback run when the consumer goes away.

        Sinks without an unsubscribe notion keep this default, which ignores
        the callback; the owner must then call stop() itself.
        """
        return None
