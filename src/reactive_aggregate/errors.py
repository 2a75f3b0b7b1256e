"""
Error taxonomy for reactive aggregation.

Every error raised by this package derives from ReactiveAggregateError and
carries an error code plus a sanitized, client-safe message so a host
publish/subscribe runtime can forward it without leaking internals.
"""

ERROR_CODE = "reactive-aggregate"


class ReactiveAggregateError(Exception):
    """Base error for all reactive aggregation failures."""

    error_code = ERROR_CODE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def sanitized(self) -> str:
        """Message safe to hand to a downstream client."""
        return f"Error [{self.error_code}]"


class ConfigurationError(ReactiveAggregateError):
    """Invalid option value, detected once at setup."""


class IdentityError(ReactiveAggregateError):
    """A record's identity field could not be canonicalized."""


class MissingIdentityError(IdentityError):
    """Record has no (or a falsy) identity field."""


class UnsupportedIdentityTypeError(IdentityError):
    """Identity field is neither a string nor a known object-like identity."""


class ExecutionError(ReactiveAggregateError):
    """Query engine or sink failure during a recompute cycle."""


class ObserverError(ReactiveAggregateError):
    """A change source reported a failure or could not be released."""
