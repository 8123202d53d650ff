"""Per-record efficiency metrics.

For a single reading:

- efficiency = run time / total time x 100 (0 when the total is zero)
- diff = total time - run time
- hourly rate = weft meter / run hours (0 when nothing ran)
- production loss = hourly rate x diff hours

Nothing is clamped.  A record whose run time exceeds its total time reports an
efficiency above 100% and a negative loss so the data problem stays visible.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union

from .durations import format_duration, parse_duration
from .models import EfficiencyRecord


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def efficiency_percent(run_seconds: float, total_seconds: float) -> float:
    """Return ``run_seconds`` as a percentage of ``total_seconds`` (0 if no total)."""

    if total_seconds <= 0:
        return 0.0
    return _finite(run_seconds / total_seconds * 100.0)


@dataclass(frozen=True)
class DerivedMetrics:
    total_seconds: int
    run_seconds: int
    efficiency_percent: float
    diff_seconds: int
    hourly_rate: float
    production_loss: float

    @property
    def total_minutes(self) -> float:
        return self.total_seconds / 60.0

    @property
    def run_minutes(self) -> float:
        return self.run_seconds / 60.0

    @property
    def diff_minutes(self) -> float:
        return self.diff_seconds / 60.0

    def to_dict(self) -> dict[str, float]:
        return {
            "total_seconds": self.total_seconds,
            "run_seconds": self.run_seconds,
            "efficiency_percent": self.efficiency_percent,
            "diff_seconds": self.diff_seconds,
            "diff_minutes": self.diff_minutes,
            "hourly_rate": self.hourly_rate,
            "production_loss": self.production_loss,
        }


RecordLike = Union[EfficiencyRecord, Mapping[str, Any]]


def as_record(record: Any) -> EfficiencyRecord:
    """Return the :class:`EfficiencyRecord` behind a row, record or calculated row."""

    if isinstance(record, EfficiencyRecord):
        return record
    if isinstance(record, CalculatedRecord):
        return record.record
    return EfficiencyRecord.from_row(record)


def compute_metrics(record: RecordLike) -> DerivedMetrics:
    """Derive efficiency, diff, hourly rate and loss for one record.

    Args:
        record: An :class:`EfficiencyRecord` or a storage row mapping.

    Returns:
        DerivedMetrics with finite values for every input.

    Example:
        >>> m = compute_metrics({"total_time": "10:00", "run_time": "09:00", "weft_meter": 90})
        >>> round(m.efficiency_percent, 1), m.hourly_rate, m.production_loss
        (90.0, 10.0, 10.0)
    """

    record = as_record(record)
    total_seconds = parse_duration(record.total_time)
    run_seconds = parse_duration(record.run_time)
    weft = _finite(float(record.weft_meter or 0.0))

    diff_seconds = total_seconds - run_seconds
    run_hours = run_seconds / 3600.0
    hourly_rate = _finite(weft / run_hours) if run_hours > 0 else 0.0
    production_loss = _finite(hourly_rate * (diff_seconds / 3600.0))

    return DerivedMetrics(
        total_seconds=total_seconds,
        run_seconds=run_seconds,
        efficiency_percent=efficiency_percent(run_seconds, total_seconds),
        diff_seconds=diff_seconds,
        hourly_rate=hourly_rate,
        production_loss=production_loss,
    )


# Names used by list views and exports for the derived columns.
METRIC_ALIASES = {
    "efficiency": "efficiency_percent",
    "diff": "diff_seconds",
    "diff_minutes": "diff_seconds",
    "hr": "hourly_rate",
    "loss": "production_loss",
    "loss_prd": "production_loss",
}

METRIC_FIELDS = frozenset(
    {"total_seconds", "run_seconds", "efficiency_percent", "diff_seconds", "hourly_rate", "production_loss"}
)


@dataclass(frozen=True)
class CalculatedRecord:
    """A record paired with its derived metrics (the row shown in tables)."""

    record: EfficiencyRecord
    metrics: DerivedMetrics

    def value(self, field: str) -> Any:
        """Return the raw value of ``field`` from the record or its metrics."""

        name = METRIC_ALIASES.get(field, field)
        if name in METRIC_FIELDS:
            return getattr(self.metrics, name)
        return getattr(self.record, name, None)

    def to_dict(self) -> dict[str, Any]:
        row = self.record.to_row()
        row.update(self.metrics.to_dict())
        diff = self.metrics.diff_seconds
        row["diff"] = ("-" if diff < 0 else "") + format_duration(abs(diff))
        return row


def calculate_record(record: RecordLike) -> CalculatedRecord:
    if isinstance(record, CalculatedRecord):
        return record
    record = as_record(record)
    return CalculatedRecord(record=record, metrics=compute_metrics(record))


def calculate_records(records: Iterable[RecordLike]) -> tuple[CalculatedRecord, ...]:
    return tuple(calculate_record(record) for record in records or ())


__all__ = [
    "CalculatedRecord",
    "METRIC_ALIASES",
    "DerivedMetrics",
    "as_record",
    "calculate_record",
    "calculate_records",
    "compute_metrics",
    "efficiency_percent",
]
