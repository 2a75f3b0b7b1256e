from __future__ import annotations

import threading
from typing import Any, Callable

import pytest

from reactive_aggregate import MemoryCollection, Sink


class RecordingSink(Sink):
    """Sink recording every call as a tuple, in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.errors: list[BaseException] = []
        self.ready_count = 0
        self.ready_event = threading.Event()
        self.error_event = threading.Event()
        self._stop_callbacks: list[Callable[[], None]] = []

    def added(self, collection, identity, record) -> None:
        self.calls.append(("added", collection, identity, dict(record)))

    def changed(self, collection, identity, record) -> None:
        self.calls.append(("changed", collection, identity, dict(record)))

    def removed(self, collection, identity) -> None:
        self.calls.append(("removed", collection, identity))

    def ready(self) -> None:
        self.ready_count += 1
        self.calls.append(("ready",))
        self.ready_event.set()

    def error(self, exc) -> None:
        self.errors.append(exc)
        self.error_event.set()

    def on_stop(self, callback) -> None:
        self._stop_callbacks.append(callback)

    def unsubscribe(self) -> None:
        for callback in self._stop_callbacks:
            callback()

    def kinds(self) -> list[str]:
        return [call[0] for call in self.calls]

    def of_kind(self, kind: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == kind]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def orders() -> MemoryCollection:
    return MemoryCollection(
        "orders",
        [{"_id": f"o{i}", "qty": i} for i in range(1, 11)],
    )
