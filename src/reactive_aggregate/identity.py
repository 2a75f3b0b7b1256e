"""
Identity canonicalization for published records.

Every record republished downstream is addressed by a canonical string
token derived from its identity field. Plain strings are used verbatim;
object-like identities are converted through a registered coercer.
"""

from __future__ import annotations

import uuid
from abc import abstractmethod
from typing import Any, Mapping

from reactive_aggregate.errors import MissingIdentityError, UnsupportedIdentityTypeError
from reactive_aggregate.registry import AutoRegisterMeta

DEFAULT_IDENTITY_FIELD = "_id"

Identity = str


class IdentityCoercer(metaclass=AutoRegisterMeta):
    """
    Base class for object-like identity conversions.

    Coercers auto-register when defined; just set _coercer_name.

    Example:
        class ULIDCoercer(IdentityCoercer):
            _coercer_name = "ulid"

            @staticmethod
            def can_coerce(value):
                return isinstance(value, ULID)

            @staticmethod
            def coerce(value):
                return str(value)
    """

    __registry_key__ = "_coercer_name"
    _coercer_name: str | None = None

    @staticmethod
    @abstractmethod
    def can_coerce(value: Any) -> bool:
        """Check if this coercer recognises the identity value."""
        raise NotImplementedError

    @staticmethod
    @abstractmethod
    def coerce(value: Any) -> Identity:
        """Return the canonical string form of the identity value."""
        raise NotImplementedError


class CanonicalIdCoercer(IdentityCoercer):
    """Objects exposing their own canonical form via __canonical_id__()."""

    _coercer_name = "canonical"

    @staticmethod
    def can_coerce(value: Any) -> bool:
        return callable(getattr(type(value), "__canonical_id__", None))

    @staticmethod
    def coerce(value: Any) -> Identity:
        return str(value.__canonical_id__())


class UUIDCoercer(IdentityCoercer):
    _coercer_name = "uuid"

    @staticmethod
    def can_coerce(value: Any) -> bool:
        return isinstance(value, uuid.UUID)

    @staticmethod
    def coerce(value: Any) -> Identity:
        return str(value)


class ObjectIdCoercer(IdentityCoercer):
    """
    BSON-style ObjectId values (bson.ObjectId and look-alikes).

    Recognised by type name and the 12-byte ``binary`` attribute, so no
    driver import is required; the canonical form is the 24 char hex string.
    """

    _coercer_name = "objectid"

    @staticmethod
    def can_coerce(value: Any) -> bool:
        binary = getattr(value, "binary", None)
        return type(value).__name__ == "ObjectId" and isinstance(binary, bytes) and len(binary) == 12

    @staticmethod
    def coerce(value: Any) -> Identity:
        return value.binary.hex()


def _is_missing(value: Any) -> bool:
    try:
        return not value
    except Exception as exc:
        # e.g. array-like values with an ambiguous truth value
        raise UnsupportedIdentityTypeError(
            f"identity of type {type(value).__name__!r} has no truth value: {exc}"
        ) from exc


def canonical_identity(value: Any) -> Identity:
    """
    Canonicalize a raw identity value.

    Raises:
        MissingIdentityError: value is absent or falsy
        UnsupportedIdentityTypeError: value is not a string, no coercer
            recognises it, or the coercer failed
    """
    if _is_missing(value):
        raise MissingIdentityError("record identity is missing")
    if isinstance(value, str):
        return value
    for name, coercer in IdentityCoercer.__registry__.items():
        try:
            if coercer.can_coerce(value):
                return coercer.coerce(value)
        except Exception as exc:
            raise UnsupportedIdentityTypeError(
                f"{name} coercion of {type(value).__name__!r} identity failed: {exc}"
            ) from exc
    raise UnsupportedIdentityTypeError(
        f"unsupported identity type {type(value).__name__!r}"
    )


def normalize_identity(record: Mapping[str, Any], field: str = DEFAULT_IDENTITY_FIELD) -> Identity:
    """Return the canonical identity of a record."""
    try:
        value = record.get(field)
    except AttributeError:
        raise UnsupportedIdentityTypeError(
            f"record of type {type(record).__name__!r} is not a mapping"
        ) from None
    if _is_missing(value):
        raise MissingIdentityError(f"record has no {field!r} field")
    return canonical_identity(value)
