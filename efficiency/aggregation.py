"""Grouping and reduction of efficiency records.

Group efficiency is always recomputed from summed seconds
(``sum(run) / sum(total)``) and never averaged from per-record percentages;
records of different lengths would otherwise be weighted equally.  Weft and
loss totals are plain sums.

Window helpers (rolling days, machine roster) zero-fill missing keys so their
output always has the full window or roster size.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Hashable, Iterable, Sequence

from .metrics import CalculatedRecord, calculate_records, efficiency_percent
from .models import MAX_TOTAL_MACHINES, EfficiencyRecord, Settings, Shift, parse_date
from .sorting import SortDescriptor, machine_sort_key, sort_records

KeyFn = Callable[[EfficiencyRecord], Hashable]


@dataclass(frozen=True)
class AggregateResult:
    total_weft: float = 0.0
    total_seconds: int = 0
    run_seconds: int = 0
    loss_total: float = 0.0
    stops_total: int = 0
    record_count: int = 0

    @property
    def efficiency_percent(self) -> float:
        return efficiency_percent(self.run_seconds, self.total_seconds)

    @property
    def diff_seconds(self) -> int:
        return self.total_seconds - self.run_seconds

    def add(self, row: CalculatedRecord) -> "AggregateResult":
        return AggregateResult(
            total_weft=self.total_weft + row.record.weft_meter,
            total_seconds=self.total_seconds + row.metrics.total_seconds,
            run_seconds=self.run_seconds + row.metrics.run_seconds,
            loss_total=self.loss_total + row.metrics.production_loss,
            stops_total=self.stops_total + row.record.stops,
            record_count=self.record_count + 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_weft": self.total_weft,
            "total_seconds": self.total_seconds,
            "run_seconds": self.run_seconds,
            "efficiency_percent": self.efficiency_percent,
            "loss_total": self.loss_total,
            "stops_total": self.stops_total,
            "record_count": self.record_count,
        }


EMPTY_RESULT = AggregateResult()


def by_date(record: EfficiencyRecord) -> str:
    return record.date_key


def by_machine(record: EfficiencyRecord) -> str:
    return record.machine_number


def by_shift(record: EfficiencyRecord) -> str:
    return record.shift.value if record.shift else ""


def by_date_and_shift(record: EfficiencyRecord) -> tuple[str, str]:
    return by_date(record), by_shift(record)


def summarize(records: Iterable[Any]) -> AggregateResult:
    """Reduce every record into one :class:`AggregateResult`."""

    result = EMPTY_RESULT
    for row in calculate_records(records):
        result = result.add(row)
    return result


def group_records(records: Iterable[Any], key_fn: KeyFn) -> dict[Hashable, list[CalculatedRecord]]:
    """Bucket calculated rows by ``key_fn``, keys in order of first appearance."""

    groups: dict[Hashable, list[CalculatedRecord]] = {}
    for row in calculate_records(records):
        groups.setdefault(key_fn(row.record), []).append(row)
    return groups


def aggregate(
    records: Iterable[Any],
    key_fn: KeyFn,
    keys: Sequence[Hashable] | None = None,
) -> dict[Hashable, AggregateResult]:
    """Group ``records`` by ``key_fn`` and reduce each group.

    Without ``keys`` the result holds every key seen, ordered by first
    appearance.  With ``keys`` it holds exactly those keys in that order, with
    zero-valued results for keys that have no records; other records are
    ignored.

    Example:
        >>> rows = [
        ...     {"machine_number": "4", "total_time": "02:00", "run_time": "02:00"},
        ...     {"machine_number": "4", "total_time": "00:10", "run_time": "00:00"},
        ... ]
        >>> round(aggregate(rows, by_machine)["4"].efficiency_percent, 2)
        92.31
    """

    totals: dict[Hashable, AggregateResult] = {}
    if keys is not None:
        totals = {key: EMPTY_RESULT for key in keys}

    for row in calculate_records(records):
        key = key_fn(row.record)
        if keys is not None and key not in totals:
            continue
        totals[key] = totals.get(key, EMPTY_RESULT).add(row)
    return totals


def window_dates(end: Any, days: int) -> list[date]:
    """Return the ``days`` calendar dates ending at ``end``, newest first."""

    end_date = parse_date(end)
    if end_date is None or days <= 0:
        return []
    return [end_date - timedelta(days=offset) for offset in range(days)]


@dataclass(frozen=True)
class DailySummary:
    date: date
    result: AggregateResult = EMPTY_RESULT

    @property
    def total_weft(self) -> float:
        return self.result.total_weft

    @property
    def efficiency_percent(self) -> float:
        return self.result.efficiency_percent

    def to_dict(self) -> dict[str, Any]:
        payload = {"date": self.date.isoformat()}
        payload.update(self.result.to_dict())
        return payload


def rolling_summary(records: Iterable[Any], end: Any, days: int = 9) -> list[DailySummary]:
    """Summaries for the ``days`` dates ending at ``end`` (newest first).

    Dates without records are present with zero values.
    """

    dates = window_dates(end, days)
    totals = aggregate(records, by_date, keys=[day.isoformat() for day in dates])
    return [DailySummary(date=day, result=totals[day.isoformat()]) for day in dates]


def machine_roster(settings: Settings | None) -> tuple[str, ...]:
    """Machine numbers ``"1"`` to ``"N"`` from the configured machine count.

    Counts above ``MAX_TOTAL_MACHINES`` are capped.
    """

    if settings is None or not settings.total_machines or settings.total_machines < 0:
        return ()
    count = min(settings.total_machines, MAX_TOTAL_MACHINES)
    return tuple(str(number) for number in range(1, count + 1))


@dataclass(frozen=True)
class MachineComparison:
    machine_number: str
    today: AggregateResult = EMPTY_RESULT
    yesterday: AggregateResult = EMPTY_RESULT

    @property
    def efficiency_change(self) -> float:
        return self.today.efficiency_percent - self.yesterday.efficiency_percent

    def to_dict(self) -> dict[str, Any]:
        return {
            "machine_number": self.machine_number,
            "today_weft": self.today.total_weft,
            "yesterday_weft": self.yesterday.total_weft,
            "today_efficiency": self.today.efficiency_percent,
            "yesterday_efficiency": self.yesterday.efficiency_percent,
            "efficiency_change": self.efficiency_change,
        }


def compare_today_yesterday(
    records: Iterable[Any],
    today: Any,
    roster: Sequence[str] | None = None,
) -> list[MachineComparison]:
    """Per-machine metrics for ``today`` next to the day before.

    Every roster machine is listed, idle ones with zero metrics, in numeric
    machine order.  When ``roster`` is ``None`` the machines found in the
    records are used instead.
    """

    today_date = parse_date(today)
    if today_date is None:
        return []
    yesterday_date = today_date - timedelta(days=1)

    rows = calculate_records(records)
    todays = [row for row in rows if row.record.date == today_date]
    yesterdays = [row for row in rows if row.record.date == yesterday_date]

    if roster is None:
        machines = {row.record.machine_number for row in todays + yesterdays}
    else:
        machines = set(roster)
    ordered = sorted(machines, key=machine_sort_key)

    today_totals = aggregate(todays, by_machine, keys=ordered)
    yesterday_totals = aggregate(yesterdays, by_machine, keys=ordered)
    return [
        MachineComparison(
            machine_number=machine,
            today=today_totals[machine],
            yesterday=yesterday_totals[machine],
        )
        for machine in ordered
    ]


@dataclass(frozen=True)
class ShiftWeftPoint:
    date: date
    day_weft: float = 0.0
    night_weft: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date.isoformat(), "Day": self.day_weft, "Night": self.night_weft}


def shift_weft_series(records: Iterable[Any]) -> list[ShiftWeftPoint]:
    """Day and Night weft totals per date, oldest date first.

    Any record not marked as a Day shift counts towards Night.  Undated
    records are skipped.
    """

    totals: dict[date, list[float]] = {}
    for row in calculate_records(records):
        record = row.record
        if record.date is None:
            continue
        bucket = totals.setdefault(record.date, [0.0, 0.0])
        if record.shift is Shift.DAY:
            bucket[0] += record.weft_meter
        else:
            bucket[1] += record.weft_meter
    return [
        ShiftWeftPoint(date=day, day_weft=values[0], night_weft=values[1])
        for day, values in sorted(totals.items())
    ]


def _shift_order(shift: Shift | None) -> int:
    if shift is Shift.DAY:
        return 0
    if shift is Shift.NIGHT:
        return 1
    return 2


@dataclass(frozen=True)
class ReportSection:
    date: date | None
    rows: tuple[CalculatedRecord, ...] = ()
    totals: AggregateResult = EMPTY_RESULT

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat() if self.date else None,
            "rows": [row.to_dict() for row in self.rows],
            "totals": self.totals.to_dict(),
        }


def build_report_sections(records: Iterable[Any]) -> list[ReportSection]:
    """Group records by date for the report view.

    Sections run from the newest date to the oldest (undated records last);
    rows within a section are ordered by shift, then machine number.
    """

    groups = group_records(records, lambda record: record.date)
    dated = sorted((day for day in groups if day is not None), reverse=True)
    if None in groups:
        dated.append(None)

    sections = []
    for day in dated:
        rows = sorted(
            groups[day],
            key=lambda row: (_shift_order(row.record.shift), machine_sort_key(row.record.machine_number)),
        )
        sections.append(ReportSection(date=day, rows=tuple(rows), totals=summarize(rows)))
    return sections


@dataclass(frozen=True)
class ShiftTable:
    shift: Shift
    rows: tuple[CalculatedRecord, ...] = ()
    totals: AggregateResult = EMPTY_RESULT

    def to_dict(self) -> dict[str, Any]:
        return {
            "shift": self.shift.value,
            "rows": [row.to_dict() for row in self.rows],
            "totals": self.totals.to_dict(),
        }


@dataclass(frozen=True)
class ShiftTables:
    day: ShiftTable = field(default_factory=lambda: ShiftTable(Shift.DAY))
    night: ShiftTable = field(default_factory=lambda: ShiftTable(Shift.NIGHT))

    def to_dict(self) -> dict[str, Any]:
        return {"day": self.day.to_dict(), "night": self.night.to_dict()}


def split_by_shift(records: Iterable[Any], descriptor: SortDescriptor | None = None) -> ShiftTables:
    """Split one day's records into sorted Day and Night tables with totals."""

    descriptor = descriptor or SortDescriptor()
    rows = sort_records(records, descriptor.field, descriptor.direction)
    tables = {}
    for shift in Shift:
        selected = tuple(row for row in rows if row.record.shift is shift)
        tables[shift] = ShiftTable(shift=shift, rows=selected, totals=summarize(selected))
    return ShiftTables(day=tables[Shift.DAY], night=tables[Shift.NIGHT])


__all__ = [
    "AggregateResult",
    "DailySummary",
    "EMPTY_RESULT",
    "MachineComparison",
    "ReportSection",
    "ShiftTable",
    "ShiftTables",
    "ShiftWeftPoint",
    "aggregate",
    "build_report_sections",
    "by_date",
    "by_date_and_shift",
    "by_machine",
    "by_shift",
    "compare_today_yesterday",
    "group_records",
    "machine_roster",
    "rolling_summary",
    "shift_weft_series",
    "split_by_shift",
    "summarize",
    "window_dates",
]
