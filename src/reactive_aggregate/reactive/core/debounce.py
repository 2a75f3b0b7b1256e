"""Count + delay debounce of change notifications into recompute triggers."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from reactive_aggregate.backend_protocols import ChangeNotification
from reactive_aggregate.reactive.core.contracts import RecomputeSchedulerABC

logger = logging.getLogger(__name__)


RecomputeFn = Callable[[], None]
GateFn = Callable[[], bool]


class DebounceScheduler(RecomputeSchedulerABC):
    """
    Thread-safe debounce scheduler.

    A burst of notifications collapses into one recompute: either when
    ``debounce_count`` notifications are pending, or ``debounce_delay_ms``
    after the first pending notification, whichever comes first.
    """

    def __init__(
        self,
        *,
        recompute_fn: RecomputeFn,
        debounce_count: int,
        debounce_delay_ms: int,
        is_initializing: GateFn,
    ):
        """
        Args:
            recompute_fn: Called (without the scheduler lock) on every flush
            debounce_count: Pending notifications that force an immediate
                flush; 0 flushes on every notification
            debounce_delay_ms: Maximum latency of a pending notification;
                0 disables timer flushes
            is_initializing: While it returns True notifications are dropped
        """
        self._recompute_fn = recompute_fn
        self._debounce_count = debounce_count
        self._debounce_delay = debounce_delay_ms / 1000.0
        self._is_initializing = is_initializing
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._pending_count = 0
        self._closed = False

    @property
    def pending_count(self) -> int:
        with self._lock:
            return self._pending_count

    @property
    def has_pending_timer(self) -> bool:
        with self._lock:
            return self._timer is not None

    def on_change(self, notification: ChangeNotification) -> None:
        if self._is_initializing():
            return

        should_flush_now = False
        with self._lock:
            if self._closed:
                return
            self._pending_count += 1
            logger.debug(
                "DebounceScheduler: %s %s %r (pending: %d)",
                notification.source_name,
                notification.kind.value,
                notification.source_identity,
                self._pending_count,
            )

            if self._pending_count >= self._debounce_count:
                should_flush_now = True
            elif self._timer is None and self._debounce_delay > 0:
                self._timer = threading.Timer(self._debounce_delay, self._on_timer)
                self._timer.daemon = True
                self._timer.start()

        if should_flush_now:
            self.flush()

    def flush(self) -> None:
        if not self._drain_locked():
            return
        self._recompute_fn()

    def cancel(self) -> None:
        with self._lock:
            self._closed = True
            self._reset_locked()

    def _on_timer(self) -> None:
        logger.debug("DebounceScheduler: delay elapsed, flushing")
        self.flush()

    def _drain_locked(self) -> bool:
        """Clear pending state; returns whether there was anything to flush."""
        with self._lock:
            if self._closed or self._pending_count == 0:
                self._reset_locked()
                return False
            self._reset_locked()
            return True

    def _reset_locked(self) -> None:
        if self._timer is not None:
            # No-op when called from the timer thread itself
            self._timer.cancel()
        self._timer = None
        self._pending_count = 0
