"""
Observation lifecycle for one reactive aggregation.

Registers with every observed data source, keeps the subscription in the
initializing state while observers replay their initial contents, runs the
initial recompute and releases all registrations on stop.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, List, Mapping, Optional

from reactive_aggregate.backend_protocols import (
    ChangeCallbacks,
    ChangeKind,
    ChangeNotification,
    DataSource,
    ObserverHandle,
)
from reactive_aggregate.errors import ConfigurationError, ObserverError, ReactiveAggregateError
from reactive_aggregate.reactive.core.contracts import RecomputeSchedulerABC
from reactive_aggregate.reactive.core.executor import RecomputeExecutor

logger = logging.getLogger(__name__)

FatalErrorFn = Callable[[ReactiveAggregateError], None]


@dataclass(frozen=True)
class ObservedSource:
    """A data source to watch, with optional (deprecated) filter settings."""

    source: DataSource
    selector: Mapping[str, Any] = field(default_factory=dict)
    options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.source.name


class ObservationLifecycle:
    """
    Owns observer registrations and the initializing flag.

    The flag is True from construction until the initial recompute has
    completed; notifications received meanwhile (including every observer's
    replay of existing records) never reach the scheduler.
    """

    def __init__(self, sources: List[ObservedSource], on_fatal: FatalErrorFn):
        """
        Args:
            sources: Data sources to observe; may be empty
            on_fatal: Called with an ObserverError when a source fails after
                start() has returned
        """
        self._sources = list(sources)
        self._on_fatal = on_fatal
        self._initializing = True
        self._handles: List[ObserverHandle] = []
        self._scheduler: Optional[RecomputeSchedulerABC] = None
        self._executor: Optional[RecomputeExecutor] = None
        self._lock = threading.Lock()
        self._starting = False
        self._startup_failure: Optional[ObserverError] = None
        self._stopped = False

    @property
    def initializing(self) -> bool:
        return self._initializing

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def handles(self) -> List[ObserverHandle]:
        return list(self._handles)

    def start(
        self,
        scheduler: RecomputeSchedulerABC,
        executor: RecomputeExecutor,
    ) -> List[ObserverHandle]:
        """
        Register every source, run the initial cycle and go live.

        On any failure every registration made so far is released and the
        error is raised.

        Returns:
            The observer handles, one per source
        """
        with self._lock:
            if self._stopped or self._scheduler is not None:
                raise ConfigurationError("observation lifecycle can only be started once")
        self._scheduler = scheduler
        self._executor = executor
        self._starting = True
        try:
            for observed in self._sources:
                self._handles.append(self._register(observed))
            if self._startup_failure is not None:
                raise self._startup_failure
            executor.run_initial()
            if self._startup_failure is not None:
                raise self._startup_failure
        except BaseException:
            try:
                self.stop()
            except ObserverError as exc:
                logger.error("ObservationLifecycle: cleanup after failed start: %s", exc)
            raise
        finally:
            self._starting = False

        self._initializing = False
        logger.info(
            "ObservationLifecycle: live with %d observer(s)", len(self._handles)
        )
        return list(self._handles)

    def stop(self) -> None:
        """
        Cancel pending work and release every registration once.

        A cycle already in flight completes; none starts afterwards.

        Raises:
            ObserverError: if any handle failed to stop (after trying all)
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True

        if self._scheduler is not None:
            self._scheduler.cancel()
        if self._executor is not None:
            self._executor.close()

        handles, self._handles = self._handles, []
        failures: List[BaseException] = []
        for handle in handles:
            try:
                handle.stop()
            except Exception as exc:
                logger.error(
                    "ObservationLifecycle: failed to stop observer: %s", exc, exc_info=True
                )
                failures.append(exc)

        logger.info("ObservationLifecycle: released %d observer(s)", len(handles))
        if failures:
            raise ObserverError(
                f"{len(failures)} observer(s) failed to stop: {failures[0]}"
            ) from failures[0]

    def _register(self, observed: ObservedSource) -> ObserverHandle:
        name = observed.name
        callbacks = ChangeCallbacks(
            added=partial(self._notify, name, ChangeKind.ADDED),
            changed=partial(self._notify, name, ChangeKind.CHANGED),
            removed=partial(self._notify, name, ChangeKind.REMOVED),
            error=partial(self._observer_failed, name),
        )
        try:
            handle = observed.source.observe(
                callbacks,
                selector=observed.selector or None,
                options=observed.options or None,
            )
        except ReactiveAggregateError:
            raise
        except Exception as exc:
            raise ObserverError(f"observing '{name}' failed: {exc}") from exc
        logger.debug("ObservationLifecycle: observing '%s'", name)
        return handle

    def _notify(self, source_name: str, kind: ChangeKind, source_identity: Any = None) -> None:
        if self._initializing or self._stopped:
            return
        self._scheduler.on_change(ChangeNotification(source_name, kind, source_identity))

    def _observer_failed(self, source_name: str, exc: BaseException) -> None:
        error = ObserverError(f"observer of '{source_name}' failed: {exc}")
        error.__cause__ = exc
        if self._starting:
            if self._startup_failure is None:
                self._startup_failure = error
            return
        if self._stopped:
            return
        self._on_fatal(error)
