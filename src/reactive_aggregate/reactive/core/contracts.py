"""ABC contracts for recompute scheduling and execution."""

from __future__ import annotations

from abc import ABC, abstractmethod

from reactive_aggregate.backend_protocols import ChangeNotification


class RecomputeSchedulerABC(ABC):
    """Contract for turning change notifications into recompute triggers."""

    @abstractmethod
    def on_change(self, notification: ChangeNotification) -> None:
        """Record a notification and trigger a recompute when due."""
        raise NotImplementedError

    @abstractmethod
    def flush(self) -> None:
        """Immediately trigger a recompute for any pending notifications."""
        raise NotImplementedError

    @abstractmethod
    def cancel(self) -> None:
        """Drop pending notifications, cancel timers and refuse further ones."""
        raise NotImplementedError


class RecomputeExecutorABC(ABC):
    """Contract for single-flight recompute execution."""

    @abstractmethod
    def trigger(self) -> bool:
        """Run (or merge into the in-flight) recompute cycle."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Prevent any further cycle from starting."""
        raise NotImplementedError
