"""Ordering and filtering of calculated efficiency rows.

Every sortable column belongs to one :class:`FieldKind`; the kind is resolved
once per sort and supplies the comparator.  Sorting is stable in both
directions, so rows with equal values keep their input order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from functools import cmp_to_key
from typing import Any, Iterable

from .durations import parse_duration
from .metrics import METRIC_ALIASES, CalculatedRecord, as_record, calculate_records
from .models import Shift, coerce_number, parse_date

ASCENDING = "asc"
DESCENDING = "desc"

DEFAULT_SORT_FIELD = "machine_number"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _cmp(left: Any, right: Any) -> int:
    return (left > right) - (left < right)


def _leading_int(value: Any) -> int | None:
    """Parse the integer prefix of ``value`` (``"12A"`` -> 12), ``None`` if absent."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def _text_key(value: Any) -> tuple[str, str]:
    if value is None:
        text = ""
    elif isinstance(value, Enum):
        text = str(value.value)
    elif isinstance(value, date):
        text = value.isoformat()
    else:
        text = str(value)
    return text.casefold(), text


def _duration_seconds(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return float(parse_duration(value))


class FieldKind(Enum):
    NUMERIC_STRING = "numeric_string"
    DURATION = "duration"
    NUMBER = "number"
    TEXT = "text"

    def compare(self, left: Any, right: Any) -> int:
        """Three-way compare two raw column values of this kind."""

        if self is FieldKind.NUMERIC_STRING:
            return _cmp(machine_sort_key(left), machine_sort_key(right))
        if self is FieldKind.DURATION:
            return _cmp(_duration_seconds(left), _duration_seconds(right))
        if self is FieldKind.NUMBER:
            return _cmp(coerce_number(left), coerce_number(right))
        return _cmp(_text_key(left), _text_key(right))


FIELD_KINDS = {
    "machine_number": FieldKind.NUMERIC_STRING,
    "total_time": FieldKind.DURATION,
    "run_time": FieldKind.DURATION,
    "time": FieldKind.DURATION,
    "weft_meter": FieldKind.NUMBER,
    "stops": FieldKind.NUMBER,
    "total_seconds": FieldKind.NUMBER,
    "run_seconds": FieldKind.NUMBER,
    "efficiency_percent": FieldKind.NUMBER,
    "diff_seconds": FieldKind.NUMBER,
    "hourly_rate": FieldKind.NUMBER,
    "production_loss": FieldKind.NUMBER,
    "date": FieldKind.TEXT,
    "shift": FieldKind.TEXT,
    "created_at": FieldKind.TEXT,
    "id": FieldKind.TEXT,
}

# Request parameter spellings accepted for the record columns.
FIELD_ALIASES = {
    **METRIC_ALIASES,
    "mc": "machine_number",
    "machine": "machine_number",
    "machineNumber": "machine_number",
    "weft": "weft_meter",
    "weftMeter": "weft_meter",
    "totalTime": "total_time",
    "runTime": "run_time",
}


def canonical_field(field: str | None) -> str:
    name = (field or "").strip()
    return FIELD_ALIASES.get(name, name)


def field_kind(field: str | None) -> FieldKind:
    return FIELD_KINDS.get(canonical_field(field), FieldKind.TEXT)


def normalize_direction(direction: str | None) -> str:
    return DESCENDING if str(direction or "").strip().lower() == DESCENDING else ASCENDING


def compare(a: Any, b: Any, field: str, direction: str = ASCENDING) -> int:
    """Compare two records on ``field``; returns -1, 0 or 1.

    ``a`` and ``b`` may be storage rows, records or calculated rows.
    """

    name = canonical_field(field)
    left, right = calculate_records((a, b))
    result = field_kind(name).compare(left.value(name), right.value(name))
    return -result if normalize_direction(direction) == DESCENDING else result


@dataclass(frozen=True)
class SortDescriptor:
    field: str = DEFAULT_SORT_FIELD
    direction: str = ASCENDING

    def toggle(self, field: str) -> "SortDescriptor":
        """Flip the direction when ``field`` is already the sort column."""

        name = canonical_field(field)
        if name == self.field:
            flipped = ASCENDING if self.direction == DESCENDING else DESCENDING
            return SortDescriptor(name, flipped)
        return SortDescriptor(name, ASCENDING)

    @classmethod
    def from_params(cls, field: str | None, direction: str | None = None) -> "SortDescriptor":
        name = canonical_field(field)
        if name not in FIELD_KINDS:
            name = DEFAULT_SORT_FIELD
        return cls(name, normalize_direction(direction))


def sort_records(
    records: Iterable[Any],
    field: str = DEFAULT_SORT_FIELD,
    direction: str = ASCENDING,
) -> list[CalculatedRecord]:
    """Return calculated rows ordered by ``field``.

    Python's sort is stable and the descending comparator only negates the
    result, so equal rows keep their input order in either direction.
    """

    rows = calculate_records(records)
    name = canonical_field(field)
    kind = field_kind(name)
    sign = -1 if normalize_direction(direction) == DESCENDING else 1

    def _compare(left: CalculatedRecord, right: CalculatedRecord) -> int:
        return sign * kind.compare(left.value(name), right.value(name))

    return sorted(rows, key=cmp_to_key(_compare))


def machine_sort_key(machine: Any) -> tuple[int, int, str, str]:
    """Sort key for machine numbers, shared by table sorting and machine lists.

    Values with an integer prefix come first in numeric order (``"2"`` before
    ``"10"``), then everything else by case-insensitive text.
    """

    number = _leading_int(machine)
    text = "" if machine is None else str(machine).strip()
    if number is None:
        return (1, 0, text.casefold(), text)
    return (0, number, text.casefold(), text)


def _is_wildcard(value: Any) -> bool:
    return value is None or str(value).strip().lower() in ("", "all")


def filter_records(
    records: Iterable[Any],
    *,
    start: Any = None,
    end: Any = None,
    machine: Any = None,
    shift: Any = None,
) -> list[Any]:
    """Keep the items matching a date range, machine and shift.

    ``None``, ``""`` and ``"all"`` disable a criterion.  Items are returned
    unchanged; an undated record never matches a date bound.
    """

    start_date = parse_date(start)
    end_date = parse_date(end)
    machine_value = None if _is_wildcard(machine) else str(machine).strip()
    shift_value = None if _is_wildcard(shift) else Shift.parse(shift)
    if shift_value is None and not _is_wildcard(shift):
        return []

    matched = []
    for item in records or ():
        record = as_record(item)
        if start_date or end_date:
            if record.date is None:
                continue
            if start_date and record.date < start_date:
                continue
            if end_date and record.date > end_date:
                continue
        if machine_value is not None and record.machine_number != machine_value:
            continue
        if shift_value is not None and record.shift is not shift_value:
            continue
        matched.append(item)
    return matched


__all__ = [
    "ASCENDING",
    "DESCENDING",
    "DEFAULT_SORT_FIELD",
    "FIELD_ALIASES",
    "FIELD_KINDS",
    "FieldKind",
    "SortDescriptor",
    "canonical_field",
    "compare",
    "field_kind",
    "filter_records",
    "machine_sort_key",
    "normalize_direction",
    "sort_records",
]
