"""Low-efficiency detection over a trailing window of days."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Iterable

from .aggregation import by_machine, group_records, summarize
from .metrics import CalculatedRecord
from .models import DEFAULT_LOW_EFFICIENCY_THRESHOLD, coerce_number, parse_date
from .sorting import machine_sort_key

LOW_EFFICIENCY_WINDOW_DAYS = 3


@dataclass(frozen=True)
class AlertEntry:
    machine_number: str
    efficiency_percent: float
    contributing_records: tuple[CalculatedRecord, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "machine_number": self.machine_number,
            "efficiency_percent": self.efficiency_percent,
            "record_ids": [row.record.id for row in self.contributing_records],
        }


def low_efficiency_window_start(as_of: Any, window_days: int = LOW_EFFICIENCY_WINDOW_DAYS) -> date | None:
    """First date considered by the low-efficiency check ending at ``as_of``."""

    as_of_date = parse_date(as_of)
    if as_of_date is None:
        return None
    return as_of_date - timedelta(days=max(window_days, 0))


def find_low_performers(
    records: Iterable[Any],
    threshold: float = DEFAULT_LOW_EFFICIENCY_THRESHOLD,
    *,
    as_of: Any = None,
    window_days: int = LOW_EFFICIENCY_WINDOW_DAYS,
) -> list[AlertEntry]:
    """List machines whose seconds-weighted efficiency is below ``threshold``.

    Machines at exactly 0% are left out: no recorded run time means missing
    data rather than a poor machine.  The list starts with the worst machine;
    ties are broken by numeric machine number.

    When ``as_of`` is given only records dated from
    ``as_of - window_days`` up to ``as_of`` are considered, otherwise every
    record passed in counts.
    """

    limit = coerce_number(threshold, float(DEFAULT_LOW_EFFICIENCY_THRESHOLD))
    as_of_date = parse_date(as_of)
    start = low_efficiency_window_start(as_of_date, window_days) if as_of_date else None

    def _in_window(record) -> bool:
        if as_of_date is None:
            return True
        return record.date is not None and start <= record.date <= as_of_date

    entries = []
    for machine, rows in group_records(records, by_machine).items():
        rows = [row for row in rows if _in_window(row.record)]
        if not rows:
            continue
        efficiency = summarize(rows).efficiency_percent
        if 0 < efficiency < limit:
            entries.append(
                AlertEntry(
                    machine_number=machine,
                    efficiency_percent=efficiency,
                    contributing_records=tuple(rows),
                )
            )

    entries.sort(key=lambda entry: (entry.efficiency_percent, machine_sort_key(entry.machine_number)))
    return entries


def efficiency_band(percent: float, threshold: float = DEFAULT_LOW_EFFICIENCY_THRESHOLD) -> str:
    """Classify an efficiency for colour coding: ``good``, ``fair``, ``low`` or ``idle``."""

    if percent >= 90:
        return "good"
    if percent > threshold:
        return "fair"
    if percent > 0:
        return "low"
    return "idle"


__all__ = [
    "AlertEntry",
    "LOW_EFFICIENCY_WINDOW_DAYS",
    "efficiency_band",
    "find_low_performers",
    "low_efficiency_window_start",
]
