"""Submission rules for new and edited efficiency records.

These rules are only enforced when an operator submits a record.  Rows that
are already stored are calculated as they are, even when they break them.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, tzinfo
from typing import Any, Iterable, Mapping

from .durations import parse_duration
from .metrics import as_record
from .models import Shift, coerce_number, parse_date

TIME_PATTERN = re.compile(r"^(?:2[0-3]|[01]?[0-9]):[0-5][0-9]$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

RUN_EXCEEDS_TOTAL = "Run Time cannot be greater than Total Time."

DAY_SHIFT_START_HOUR = 7
DAY_SHIFT_END_HOUR = 19


def _text(payload: Mapping[str, Any], *names: str) -> str:
    for name in names:
        value = payload.get(name)
        if value is not None:
            return str(value).strip()
    return ""


def _pad_time(value: str) -> str:
    hours, minutes = value.split(":")
    return f"{int(hours):02d}:{int(minutes):02d}"


def validate_record_payload(
    payload: Mapping[str, Any] | None,
    *,
    tz: tzinfo | None = None,
) -> tuple[dict[str, Any] | None, dict[str, str]]:
    """Check a submitted record and build the row to store.

    Returns ``(row, {})`` on success and ``(None, errors)`` otherwise, where
    ``errors`` maps field names to messages.  The stored row keeps durations as
    zero-padded ``HH:MM``, the reading time as ``HH:MM:00`` and derives
    ``created_at`` from the record date and reading time.
    """

    payload = payload or {}
    errors: dict[str, str] = {}

    raw_date = _text(payload, "date")
    record_date = parse_date(raw_date) if DATE_PATTERN.match(raw_date) else None
    if record_date is None:
        errors["date"] = "A date is required."

    raw_time = _text(payload, "time")
    if raw_time.count(":") == 2:
        raw_time = raw_time.rsplit(":", 1)[0]
    if not TIME_PATTERN.match(raw_time):
        errors["time"] = "Invalid time (HH:MM)"

    shift = Shift.parse(_text(payload, "shift"))
    if shift is None:
        errors["shift"] = "Shift is required."

    machine = _text(payload, "machine_number", "machineNumber")
    if not machine:
        errors["machine_number"] = "M/C No. is required"

    weft = coerce_number(payload.get("weft_meter", payload.get("weftMeter")))
    if weft <= 0:
        errors["weft_meter"] = "Must be positive"

    stops = coerce_number(payload.get("stops"), default=-1.0)
    if stops < 0 or stops != int(stops):
        errors["stops"] = "Stops must be a whole number of at least 0"

    durations = {}
    for name, alias in (("total_time", "totalTime"), ("run_time", "runTime")):
        value = _text(payload, name, alias)
        if TIME_PATTERN.match(value):
            durations[name] = _pad_time(value)
        else:
            errors[name] = "Invalid format (HH:MM)"

    if len(durations) == 2 and parse_duration(durations["run_time"]) > parse_duration(durations["total_time"]):
        errors["run_time"] = RUN_EXCEEDS_TOTAL

    if errors:
        return None, errors

    reading_time = _pad_time(raw_time)
    hours, minutes = (int(part) for part in reading_time.split(":"))
    created_at = datetime.combine(record_date, time(hours, minutes), tzinfo=tz)

    row = {
        "date": record_date.isoformat(),
        "time": f"{reading_time}:00",
        "shift": shift.value,
        "machine_number": machine,
        "weft_meter": weft,
        "stops": int(stops),
        "total_time": durations["total_time"],
        "run_time": durations["run_time"],
        "created_at": created_at.isoformat(),
    }
    return row, {}


def is_duplicate(
    candidate: Any,
    existing_records: Iterable[Any],
    *,
    exclude_id: Any = None,
) -> bool:
    """True when another record shares the candidate's date, shift and machine."""

    target = as_record(candidate)
    key = (target.date, target.shift, target.machine_number)
    excluded = str(exclude_id) if exclude_id is not None else None
    for item in existing_records or ():
        record = as_record(item)
        if excluded is not None and record.id == excluded:
            continue
        if (record.date, record.shift, record.machine_number) == key:
            return True
    return False


def default_shift(moment: datetime | time | None = None) -> Shift:
    """Shift an operator is most likely logging at ``moment`` (Day from 07:00 to 19:00)."""

    if moment is None:
        moment = datetime.now()
    hour = moment.hour
    if DAY_SHIFT_START_HOUR <= hour < DAY_SHIFT_END_HOUR:
        return Shift.DAY
    return Shift.NIGHT


def default_record_date(moment: datetime | None = None) -> date:
    return (moment or datetime.now()).date()


__all__ = [
    "RUN_EXCEEDS_TOTAL",
    "TIME_PATTERN",
    "default_record_date",
    "default_shift",
    "is_duplicate",
    "validate_record_payload",
]
