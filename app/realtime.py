"""Change notifications from Supabase database webhooks.

A webhook call describes one row change.  It is translated into
:class:`InvalidateMessage` values naming the views whose figures depend on the
changed rows; clients poll the :class:`ChangeFeed` and refetch those views,
which are then recomputed from scratch.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from flask import current_app

from config.supabase_schema import SUPABASE_SCHEMA, from_supabase_row
from efficiency.models import parse_date

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")

DASHBOARD_VIEWS = ("daily_summary", "performance", "shift_chart", "low_efficiency")
RECORD_VIEWS = ("records", "report", "machines")
SETTINGS_VIEWS = ("settings", "performance", "low_efficiency")


def _logical_table(name: str) -> str | None:
    for identifier, table in SUPABASE_SCHEMA.items():
        if name in (identifier, table.name):
            return identifier
    return None


@dataclass(frozen=True)
class InvalidateMessage:
    view: str
    date: str | None = None
    revision: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"view": self.view, "date": self.date, "revision": self.revision}


@dataclass(frozen=True)
class ChangeNotification:
    event: str
    table: str
    record: Mapping[str, Any] = field(default_factory=dict)
    old_record: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_webhook(cls, payload: Mapping[str, Any] | None) -> "ChangeNotification | None":
        """Parse a Supabase database webhook body; ``None`` when it is not one."""

        if not isinstance(payload, Mapping):
            return None
        event = str(payload.get("type") or "").upper()
        table = _logical_table(str(payload.get("table") or ""))
        if event not in EVENT_TYPES or table is None:
            return None

        record = payload.get("record")
        old_record = payload.get("old_record")
        return cls(
            event=event,
            table=table,
            record=from_supabase_row(table, record if isinstance(record, Mapping) else None),
            old_record=from_supabase_row(table, old_record if isinstance(old_record, Mapping) else None),
        )

    def affected_dates(self) -> list[str]:
        """Record dates touched by the change (old and new), oldest first."""

        dates = set()
        for row in (self.record, self.old_record):
            parsed = parse_date(row.get("date")) if row else None
            if parsed:
                dates.add(parsed.isoformat())
        return sorted(dates)


def invalidated_views(notification: ChangeNotification) -> list[InvalidateMessage]:
    """Views to recompute after ``notification``."""

    if notification.table == "settings":
        return [InvalidateMessage(view) for view in SETTINGS_VIEWS]

    messages = [InvalidateMessage(view) for view in DASHBOARD_VIEWS + RECORD_VIEWS]
    messages.extend(
        InvalidateMessage("records", date=day) for day in notification.affected_dates()
    )
    return messages


class ChangeFeed:
    """Thread-safe, bounded log of invalidate messages with a revision counter."""

    def __init__(self, history: int = 500) -> None:
        self._lock = threading.Lock()
        self._revision = 0
        self._dropped_through = 0
        self._messages: deque[InvalidateMessage] = deque(maxlen=max(history, 1))

    @property
    def revision(self) -> int:
        with self._lock:
            return self._revision

    def publish(self, messages: Iterable[InvalidateMessage]) -> int:
        """Append ``messages`` under a new revision and return it."""

        messages = list(messages)
        with self._lock:
            if not messages:
                return self._revision
            self._revision += 1
            for message in messages:
                if len(self._messages) == self._messages.maxlen:
                    self._dropped_through = self._messages[0].revision
                self._messages.append(
                    InvalidateMessage(message.view, message.date, self._revision)
                )
            return self._revision

    def since(self, revision: int) -> tuple[int, list[InvalidateMessage], bool]:
        """Messages newer than ``revision``.

        Returns ``(current_revision, messages, complete)``.  ``complete`` is
        false when older messages were already dropped from the log, in which
        case the caller should refresh every view.
        """

        with self._lock:
            messages = [message for message in self._messages if message.revision > revision]
            complete = revision >= self._dropped_through
            return self._revision, messages, complete


def get_change_feed() -> ChangeFeed:
    return current_app.config["CHANGE_FEED"]
