"""Record-level diff of two catalog snapshots.

Records are matched by id, never by position, so reordering a catalog
produces no changes. Numbers are compared at two decimal places; the
catalog editor round-trips prices through floats and would otherwise
report 8.1 vs 8.100000000000001 as an edit.
"""

from __future__ import annotations

from typing import Any

from storesync.catalog.files import (
    ID_FIELD,
    CatalogSpec,
    Record,
    index_by_id,
)
from storesync.catalog.model import (
    ChangeKind,
    ChangeSet,
    FieldDelta,
    RecordChange,
)

# Longer strings are summarised as "<label> updated"
_MAX_INLINE_TEXT = 40


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(a: Any, b: Any) -> bool:
    """Equality used for every field comparison in the engine."""
    if _is_number(a) and _is_number(b):
        return round(float(a), 2) == round(float(b), 2)
    if isinstance(a, dict) and isinstance(b, dict):
        if a.keys() != b.keys():
            return False
        return all(values_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(
            values_equal(x, y) for x, y in zip(a, b, strict=True)
        )
    if type(a) is not type(b) and not (_is_number(a) and _is_number(b)):
        return False
    return a == b


def record_fields(*records: Record | None) -> list[str]:
    """Union of field names, in first-seen order, without the id."""
    seen: dict[str, None] = {}
    for record in records:
        for key in record or {}:
            if key != ID_FIELD:
                seen.setdefault(key)
    return list(seen)


def field_value(record: Record | None, field: str) -> Any:
    """A field's value; absent fields read as None."""
    if record is None:
        return None
    return record.get(field)


def changed_fields(before: Record | None, after: Record | None) -> set[str]:
    """Fields whose value differs between two versions of a record.

    A field present on one side only counts as changed unless the
    present value is None.
    """
    return {
        field
        for field in record_fields(before, after)
        if not values_equal(
            field_value(before, field), field_value(after, field)
        )
    }


def format_value(spec: CatalogSpec, field: str, value: Any) -> str:
    if value is None:
        return "none"
    if field in spec.money_fields and _is_number(value):
        return f"{float(value):.2f}"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


def describe_delta(
    spec: CatalogSpec, field: str, old: Any, new: Any
) -> str:
    """One phrase such as "Price changed: 10.00 → 8.00"."""
    label = spec.label(field)
    if isinstance(old, (dict, list)) or isinstance(new, (dict, list)):
        return f"{label} updated"
    for value in (old, new):
        if isinstance(value, str) and (
            len(value) > _MAX_INLINE_TEXT or "\n" in value
        ):
            return f"{label} updated"
    if old is None:
        return f"{label} set: {format_value(spec, field, new)}"
    if new is None:
        return f"{label} cleared"
    return (
        f"{label} changed: {format_value(spec, field, old)} → "
        f"{format_value(spec, field, new)}"
    )


def describe_change(
    spec: CatalogSpec,
    kind: ChangeKind,
    record: Record,
    deltas: list[FieldDelta] | None = None,
) -> str:
    name = spec.display_name(record)
    if kind is ChangeKind.ADDED:
        return f"Added {spec.noun}: {name}"
    if kind is ChangeKind.REMOVED:
        return f"Removed {spec.noun}: {name}"
    return f"{name}: " + ", ".join(d.description for d in deltas or [])


def field_deltas(
    spec: CatalogSpec, old: Record, new: Record
) -> list[FieldDelta]:
    deltas = []
    for field in record_fields(old, new):
        before = field_value(old, field)
        after = field_value(new, field)
        if values_equal(before, after):
            continue
        deltas.append(FieldDelta(
            field=field,
            label=spec.label(field),
            old_value=before,
            new_value=after,
            description=describe_delta(spec, field, before, after),
        ))
    return deltas


def diff_records(
    spec: CatalogSpec,
    old_records: list[Record],
    new_records: list[Record],
) -> ChangeSet:
    """Classify every id as added, removed or modified.

    Added and modified entries follow the order of the new snapshot,
    removed entries the order of the old one.
    """
    old_by_id = index_by_id(old_records)
    new_by_id = index_by_id(new_records)
    changeset = ChangeSet(path=spec.path)

    for record_id, old in old_by_id.items():
        if record_id not in new_by_id:
            changeset.removed.append(RecordChange(
                kind=ChangeKind.REMOVED,
                path=spec.path,
                record_id=record_id,
                record_name=spec.display_name(old),
                description=describe_change(spec, ChangeKind.REMOVED, old),
                old_record=old,
            ))

    for record_id, new in new_by_id.items():
        old = old_by_id.get(record_id)
        if old is None:
            changeset.added.append(RecordChange(
                kind=ChangeKind.ADDED,
                path=spec.path,
                record_id=record_id,
                record_name=spec.display_name(new),
                description=describe_change(spec, ChangeKind.ADDED, new),
                new_record=new,
            ))
            continue

        deltas = field_deltas(spec, old, new)
        if deltas:
            changeset.modified.append(RecordChange(
                kind=ChangeKind.MODIFIED,
                path=spec.path,
                record_id=record_id,
                record_name=spec.display_name(new),
                description=describe_change(
                    spec, ChangeKind.MODIFIED, new, deltas
                ),
                deltas=deltas,
                old_record=old,
                new_record=new,
            ))

    return changeset
