"""Record and settings types consumed by the efficiency calculations.

Rows arrive from storage as plain dictionaries keyed by logical column names
(see :mod:`config.supabase_schema`).  The helpers here turn them into frozen
dataclasses so that every calculation works on an immutable snapshot.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping

DEFAULT_LOW_EFFICIENCY_THRESHOLD = 80
SETTINGS_ROW_ID = 1
MAX_TOTAL_MACHINES = 1000


# Single-letter crew codes used by older report filters.
_SHIFT_CODES = {"a": "day", "b": "night"}


class Shift(str, Enum):
    DAY = "Day"
    NIGHT = "Night"

    @classmethod
    def parse(cls, value: Any) -> "Shift | None":
        """Return the shift matching ``value`` (case-insensitive) or ``None``."""

        if isinstance(value, Shift):
            return value
        text = str(value or "").strip().lower()
        text = _SHIFT_CODES.get(text, text)
        for member in cls:
            if member.value.lower() == text:
                return member
        return None


def coerce_number(value: Any, default: float = 0.0) -> float:
    """Return ``value`` as a finite float, otherwise ``default``.

    Accepts numbers and numeric strings (thousands separators are ignored).
    """

    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return default
        try:
            number = float(text)
        except (TypeError, ValueError):
            return default

    if math.isnan(number) or math.isinf(number):
        return default
    return number


def coerce_int(value: Any, default: int = 0) -> int:
    number = coerce_number(value, default=float(default))
    return int(number)


def parse_date(value: Any) -> date | None:
    """Parse ``YYYY-MM-DD`` strings (or datetimes) into :class:`date`."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def _pick(row: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in row:
            value = row.get(name)
            if value not in (None, ""):
                return value
    return None


@dataclass(frozen=True)
class EfficiencyRecord:
    """One machine reading for one shift."""

    id: str | None
    date: date | None
    shift: Shift | None
    machine_number: str
    weft_meter: float = 0.0
    stops: int = 0
    total_time: str = "00:00"
    run_time: str = "00:00"
    time: str | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "EfficiencyRecord":
        """Build a record from a storage row, degrading bad values to zero."""

        record_id = _pick(row, "id")
        machine = _pick(row, "machine_number", "machineNumber")
        return cls(
            id=str(record_id) if record_id is not None else None,
            date=parse_date(_pick(row, "date")),
            shift=Shift.parse(_pick(row, "shift")),
            machine_number=str(machine).strip() if machine is not None else "",
            weft_meter=coerce_number(_pick(row, "weft_meter", "weftMeter")),
            stops=coerce_int(_pick(row, "stops")),
            total_time=str(_pick(row, "total_time", "totalTime") or "00:00"),
            run_time=str(_pick(row, "run_time", "runTime") or "00:00"),
            time=_pick(row, "time"),
            created_at=_pick(row, "created_at", "createdAt"),
        )

    @property
    def date_key(self) -> str:
        return self.date.isoformat() if self.date else ""

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "date": self.date_key,
            "time": self.time,
            "shift": self.shift.value if self.shift else None,
            "machine_number": self.machine_number,
            "weft_meter": self.weft_meter,
            "stops": self.stops,
            "total_time": self.total_time,
            "run_time": self.run_time,
        }


@dataclass(frozen=True)
class Settings:
    """Singleton application settings; every field has a usable default."""

    total_machines: int | None = None
    low_efficiency_threshold: int = DEFAULT_LOW_EFFICIENCY_THRESHOLD
    notification_number: str | None = None
    message_template: str | None = None
    vision_api_key: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any] | None) -> "Settings":
        if not row:
            return cls()

        total = _pick(row, "total_machines")
        threshold = _pick(row, "low_efficiency_threshold")
        return cls(
            total_machines=coerce_int(total) if total is not None else None,
            low_efficiency_threshold=(
                coerce_int(threshold, DEFAULT_LOW_EFFICIENCY_THRESHOLD)
                if threshold is not None
                else DEFAULT_LOW_EFFICIENCY_THRESHOLD
            ),
            notification_number=_pick(row, "notification_number"),
            message_template=_pick(row, "message_template"),
            vision_api_key=_pick(row, "vision_api_key"),
        )

    def to_row(self, *, include_secrets: bool = False) -> dict[str, Any]:
        row = {
            "id": SETTINGS_ROW_ID,
            "total_machines": self.total_machines,
            "low_efficiency_threshold": self.low_efficiency_threshold,
            "notification_number": self.notification_number,
            "message_template": self.message_template,
        }
        if include_secrets:
            row["vision_api_key"] = self.vision_api_key
        return row


__all__ = [
    "DEFAULT_LOW_EFFICIENCY_THRESHOLD",
    "MAX_TOTAL_MACHINES",
    "SETTINGS_ROW_ID",
    "EfficiencyRecord",
    "Settings",
    "Shift",
    "coerce_int",
    "coerce_number",
    "parse_date",
]
