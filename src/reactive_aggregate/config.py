"""Validated options for a reactive aggregation subscription."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Mapping, Optional

from reactive_aggregate.backend_protocols import DataSource, Record
from reactive_aggregate.errors import ConfigurationError
from reactive_aggregate.identity import DEFAULT_IDENTITY_FIELD

logger = logging.getLogger(__name__)

PostProcessFn = Callable[[Record], Record]

# Legacy option names accepted by from_mapping()
_LEGACY_KEYS = {
    "debounceCount": "debounce_count",
    "debounceDelay": "debounce_delay",
    "automaticObserver": "automatic_observer",
    "observers": "additional_observers",
    "additionalObservers": "additional_observers",
    "clientCollection": "downstream_collection_name",
    "downstreamCollectionName": "downstream_collection_name",
    "aggregationOptions": "execution_options",
    "executionOptions": "execution_options",
    "observeSelector": "observe_selector",
    "observeOptions": "observe_options",
    "identityField": "identity_field",
    "markClearedFields": "mark_cleared_fields",
    "postProcess": "post_process",
}


def _non_negative_int(name: str, value: Any) -> int:
    # bool is an int subclass but never a meaningful threshold
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigurationError(f"options.{name} must be a non-negative integer")
    return value


@dataclass
class AggregateOptions:
    """
    Options for one reactive aggregation.

    Attributes:
        debounce_count: Notifications that force an immediate recompute.
            0 recomputes on every notification.
        debounce_delay: Maximum latency (ms) before pending notifications
            are flushed. 0 disables the timer; a positive debounce_count is
            then needed for pending notifications to ever flush.
        automatic_observer: Observe the aggregated source itself.
        additional_observers: Further data sources whose mutations should
            trigger a recompute.
        downstream_collection_name: Collection name given to the sink.
            Defaults to the aggregated source's name.
        execution_options: Passed verbatim to the query engine.
        observe_selector: Deprecated filter for the automatic observer.
        observe_options: Deprecated options for the automatic observer.
        identity_field: Record field holding the identity.
        mark_cleared_fields: Set fields dropped since the last publication
            to None in ``changed`` records.
        post_process: Optional hook applied to every record forwarded to
            the sink (e.g. identity representation repair).
    """

    debounce_count: int = 0
    debounce_delay: int = 0
    automatic_observer: bool = False
    additional_observers: list[DataSource] = field(default_factory=list)
    downstream_collection_name: Optional[str] = None
    execution_options: Mapping[str, Any] = field(default_factory=dict)
    observe_selector: Mapping[str, Any] = field(default_factory=dict)
    observe_options: Mapping[str, Any] = field(default_factory=dict)
    identity_field: str = DEFAULT_IDENTITY_FIELD
    mark_cleared_fields: bool = False
    post_process: Optional[PostProcessFn] = None

    def __post_init__(self):
        """Validate every field; raises ConfigurationError on the first bad one."""
        self.debounce_count = _non_negative_int("debounce_count", self.debounce_count)
        self.debounce_delay = _non_negative_int("debounce_delay", self.debounce_delay)

        if not isinstance(self.automatic_observer, bool):
            raise ConfigurationError("options.automatic_observer must be true or false")
        if not isinstance(self.mark_cleared_fields, bool):
            raise ConfigurationError("options.mark_cleared_fields must be true or false")

        if not isinstance(self.additional_observers, (list, tuple)):
            raise ConfigurationError("options.additional_observers must be a list")
        self.additional_observers = list(self.additional_observers)
        for i, source in enumerate(self.additional_observers):
            if not isinstance(source, DataSource):
                raise ConfigurationError(f"options.additional_observers[{i}] must be a DataSource")

        if self.downstream_collection_name is not None and not isinstance(
            self.downstream_collection_name, str
        ):
            raise ConfigurationError("options.downstream_collection_name must be a string")

        for name in ("execution_options", "observe_selector", "observe_options"):
            if not isinstance(getattr(self, name), Mapping):
                raise ConfigurationError(f"options.{name} must be a mapping")

        if not isinstance(self.identity_field, str) or not self.identity_field:
            raise ConfigurationError("options.identity_field must be a non-empty string")
        if self.post_process is not None and not callable(self.post_process):
            raise ConfigurationError("options.post_process must be callable")

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]] = None) -> "AggregateOptions":
        """
        Build options from a plain mapping.

        Accepts the field names above as well as the legacy camelCase names
        (``debounceCount``, ``clientCollection``, ``noAutomaticObserver``...).
        Unknown keys are rejected.
        """
        if options is None:
            return cls()
        if not isinstance(options, Mapping):
            raise ConfigurationError("options must be a mapping")

        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in options.items():
            if key == "noAutomaticObserver":
                if not isinstance(value, bool):
                    raise ConfigurationError("options.noAutomaticObserver must be true or false")
                if "automatic_observer" in kwargs:
                    raise ConfigurationError(
                        "option 'noAutomaticObserver' duplicates another name for 'automatic_observer'"
                    )
                kwargs["automatic_observer"] = not value
                continue
            name = _LEGACY_KEYS.get(key, key)
            if name not in known:
                raise ConfigurationError(f"unknown option {key!r}")
            if name in kwargs:
                raise ConfigurationError(f"option {key!r} duplicates another name for {name!r}")
            kwargs[name] = value
        return cls(**kwargs)

    def collection_name(self, source: DataSource) -> str:
        """Published collection name for the given aggregated source."""
        if self.downstream_collection_name is not None:
            return self.downstream_collection_name
        return source.name

    def report_hazards(self, diagnostics: Optional[logging.Logger] = None) -> None:
        """Log deprecated options and configurations that can stall flushing."""
        log = diagnostics or logger
        if self.observe_selector:
            log.warning("AggregateOptions: observe_selector is deprecated")
        if self.observe_options:
            log.warning("AggregateOptions: observe_options is deprecated")
        if self.debounce_delay == 0 and self.debounce_count > 1:
            log.warning(
                "AggregateOptions: debounce_delay=0 with debounce_count=%d; "
                "fewer than %d pending notifications are never flushed",
                self.debounce_count,
                self.debounce_count,
            )
