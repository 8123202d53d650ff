"""Shift efficiency calculations: metrics, aggregation, alerts and ordering.

The package has no Flask or Supabase dependency; callers pass record
snapshots and settings in explicitly.
"""

from .aggregation import (
    AggregateResult,
    DailySummary,
    MachineComparison,
    ReportSection,
    ShiftTable,
    ShiftTables,
    ShiftWeftPoint,
    aggregate,
    build_report_sections,
    by_date,
    by_date_and_shift,
    by_machine,
    by_shift,
    compare_today_yesterday,
    machine_roster,
    rolling_summary,
    shift_weft_series,
    split_by_shift,
    summarize,
    window_dates,
)
from .alerts import AlertEntry, efficiency_band, find_low_performers, low_efficiency_window_start
from .durations import (
    duration_minutes,
    format_duration,
    minutes_to_hhmm,
    minutes_to_seconds,
    normalize_duration,
    parse_duration,
    seconds_to_minutes,
)
from .metrics import CalculatedRecord, DerivedMetrics, calculate_record, calculate_records, compute_metrics
from .models import DEFAULT_LOW_EFFICIENCY_THRESHOLD, EfficiencyRecord, Settings, Shift
from .sorting import FieldKind, SortDescriptor, compare, field_kind, filter_records, sort_records
from .validation import default_shift, is_duplicate, validate_record_payload

__all__ = [
    "AggregateResult",
    "AlertEntry",
    "CalculatedRecord",
    "DEFAULT_LOW_EFFICIENCY_THRESHOLD",
    "DailySummary",
    "DerivedMetrics",
    "EfficiencyRecord",
    "FieldKind",
    "MachineComparison",
    "ReportSection",
    "Settings",
    "Shift",
    "ShiftTable",
    "ShiftTables",
    "ShiftWeftPoint",
    "SortDescriptor",
    "aggregate",
    "build_report_sections",
    "by_date",
    "by_date_and_shift",
    "by_machine",
    "by_shift",
    "calculate_record",
    "calculate_records",
    "compare",
    "compare_today_yesterday",
    "compute_metrics",
    "default_shift",
    "duration_minutes",
    "efficiency_band",
    "field_kind",
    "filter_records",
    "find_low_performers",
    "format_duration",
    "is_duplicate",
    "low_efficiency_window_start",
    "machine_roster",
    "minutes_to_hhmm",
    "minutes_to_seconds",
    "normalize_duration",
    "parse_duration",
    "rolling_summary",
    "seconds_to_minutes",
    "shift_weft_series",
    "sort_records",
    "split_by_shift",
    "summarize",
    "validate_record_payload",
    "window_dates",
]
