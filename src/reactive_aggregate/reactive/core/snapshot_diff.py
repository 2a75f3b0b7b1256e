"""Snapshot diffing: turn a fresh result set into added/changed/removed operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from reactive_aggregate.backend_protocols import Record
from reactive_aggregate.identity import DEFAULT_IDENTITY_FIELD, Identity, normalize_identity

Snapshot = dict[Identity, int]
FieldIndex = dict[Identity, frozenset[str]]


class OperationKind(Enum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


@dataclass(frozen=True)
class Operation:
    """One sink call; ``record`` is None for removals."""

    kind: OperationKind
    identity: Identity
    record: Optional[Record] = None


@dataclass(frozen=True)
class SnapshotDiff:
    """Diff result for a single cycle."""

    operations: list[Operation]
    snapshot: Snapshot
    field_index: Optional[FieldIndex] = field(default=None)


def _with_cleared_fields(record: Record, previous_fields: frozenset[str]) -> dict[str, Any]:
    """Copy of record with fields published before but now absent set to None."""
    patched = dict(record)
    for name in previous_fields - patched.keys():
        patched[name] = None
    return patched


def diff_snapshot(
    previous: Mapping[Identity, int],
    records: Iterable[Record],
    cycle_tag: int,
    *,
    identity_field: str = DEFAULT_IDENTITY_FIELD,
    field_index: Optional[Mapping[Identity, frozenset[str]]] = None,
) -> SnapshotDiff:
    """
    Diff a new result set against the previous snapshot.

    Added/changed operations follow record order, removals come last in no
    particular order. ``previous`` is not modified. Identity errors propagate
    before any operation is returned, so a cycle is never half-applied.

    Args:
        previous: Identity -> tag of the last completed cycle
        records: Result of the transformation, in order
        cycle_tag: Tag of the cycle being computed; must differ from every
            tag in ``previous``
        identity_field: Record field holding the identity
        field_index: Field names last published per identity. When given,
            changed records get dropped fields set to None and an updated
            index is returned.

    Returns:
        SnapshotDiff with the ordered operations and the next snapshot
    """
    operations: list[Operation] = []
    snapshot: Snapshot = {}
    next_index: Optional[FieldIndex] = {} if field_index is not None else None

    for record in records:
        identity = normalize_identity(record, identity_field)
        if identity in previous or identity in snapshot:
            published = record
            if field_index is not None and identity in field_index:
                published = _with_cleared_fields(record, field_index[identity])
            operations.append(Operation(OperationKind.CHANGED, identity, published))
        else:
            operations.append(Operation(OperationKind.ADDED, identity, record))
        snapshot[identity] = cycle_tag
        if next_index is not None:
            next_index[identity] = frozenset(record.keys())

    for identity, tag in previous.items():
        if tag != cycle_tag and identity not in snapshot:
            operations.append(Operation(OperationKind.REMOVED, identity))

    return SnapshotDiff(operations=operations, snapshot=snapshot, field_index=next_index)
