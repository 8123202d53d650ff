"""Text messages and WhatsApp links for alerts and single records."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Iterable
from urllib.parse import quote

from efficiency.alerts import AlertEntry
from efficiency.metrics import CalculatedRecord

LOW_EFFICIENCY_HEADER = "Low Efficiency Report (last {days} days):"

_PLACEHOLDER = re.compile(r"\{(date|time|mc|shift|eff|weft|stops)\}")


def build_low_efficiency_message(entries: Iterable[AlertEntry], window_days: int = 3) -> str:
    """Return the alert text, one ``M/C <n>: <eff>%`` line per machine."""

    lines = [
        f"M/C {entry.machine_number}: {entry.efficiency_percent:.2f}%"
        for entry in entries
    ]
    header = LOW_EFFICIENCY_HEADER.format(days=window_days)
    return f"{header}\n\n" + "\n".join(lines)


def _reading_time(row: CalculatedRecord) -> str:
    record = row.record
    if record.time:
        return str(record.time)[:5]
    if record.created_at:
        try:
            return datetime.fromisoformat(str(record.created_at).replace("Z", "+00:00")).strftime("%H:%M")
        except ValueError:
            return ""
    return ""


def fill_record_template(template: str, row: CalculatedRecord) -> str:
    """Substitute ``{date}``, ``{time}``, ``{mc}``, ``{shift}``, ``{eff}``,
    ``{weft}`` and ``{stops}`` in ``template`` with values from ``row``.

    Unknown placeholders are left untouched.
    """

    record = row.record
    values = {
        "date": record.date_key,
        "time": _reading_time(row),
        "mc": record.machine_number,
        "shift": record.shift.value if record.shift else "",
        "eff": f"{row.metrics.efficiency_percent:.2f}",
        "weft": f"{record.weft_meter:.2f}",
        "stops": str(record.stops),
    }
    return _PLACEHOLDER.sub(lambda match: values[match.group(1)], template or "")


def whatsapp_link(number: str | None, message: str) -> str | None:
    """Return a ``wa.me`` link that opens ``message`` for ``number``."""

    digits = re.sub(r"[^\d]", "", number or "")
    if not digits:
        return None
    return f"https://wa.me/{digits}?text={quote(message, safe='')}"
