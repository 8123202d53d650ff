from datetime import date, datetime
from typing import Any, Iterable, Tuple

from flask import current_app

from config.supabase_schema import (
    column_name,
    from_supabase_row,
    select_columns,
    table_name,
    to_supabase_payload,
)
from efficiency.models import SETTINGS_ROW_ID, Settings, Shift
from efficiency.sorting import machine_sort_key

RECORDS = "efficiency_records"
SETTINGS = "settings"

# PostgREST refuses unfiltered deletes; every generated UUID differs from this.
_NIL_UUID = "00000000-0000-0000-0000-000000000000"


def _get_client():
    """Return the configured Supabase client."""
    return current_app.config["SUPABASE"]


def _ensure_supabase_client() -> Tuple[Any, str | None]:
    """Return the configured Supabase client or an explanatory error.

    Returns:
        tuple: (client, error). When Supabase is unavailable the client will be
        ``None`` and ``error`` will contain a message explaining the failure.
    """

    supabase = current_app.config.get("SUPABASE")
    if not supabase or not hasattr(supabase, "table"):
        return None, (
            "Supabase client is not configured. Set SUPABASE_URL and SUPABASE_"
            "SERVICE_KEY to enable the efficiency records store."
        )
    return supabase, None


def _normalize_date_for_query(value: date | datetime | str | None) -> str | None:
    """Return an ISO formatted date string for Supabase filters."""

    if not value:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _record_rows(rows: Iterable[dict] | None) -> list[dict]:
    return [from_supabase_row(RECORDS, row) for row in rows or []]


def _fetch_paginated_rows(
    table: str,
    *,
    columns: str = "*",
    filters: Iterable[tuple[str, str, Any]] = (),
    order_columns: Iterable[str] = (),
    page_size: int = 1000,
) -> list[dict]:
    """Fetch all rows from ``table`` applying ``filters``.

    ``filters`` holds ``(operator, logical column, value)`` triples such as
    ``("gte", "date", "2024-05-01")``.  Supabase caps responses to 1,000 rows
    by default, so rows are requested in ``page_size`` chunks with the filters
    reapplied to every page.
    """

    if page_size <= 0:
        raise ValueError("page_size must be greater than zero")

    supabase = _get_client()
    filters = list(filters)
    order_columns = list(order_columns)
    rows: list[dict] = []
    offset = 0

    while True:
        query = supabase.table(table_name(table)).select(columns)
        for operator, column, value in filters:
            query = getattr(query, operator)(column_name(table, column), value)
        for column in order_columns:
            query = query.order(column_name(table, column))
        query = query.range(offset, offset + page_size - 1)

        response = query.execute()
        batch = getattr(response, "data", None) or []
        rows.extend(batch)

        if len(batch) < page_size:
            break
        offset += page_size

    return rows


def fetch_efficiency_records(
    start_date: date | datetime | str | None = None,
    end_date: date | datetime | str | None = None,
    *,
    machine: str | None = None,
    shift: str | None = None,
    dates: Iterable[date | datetime | str] | None = None,
) -> tuple[list[dict] | None, str | None]:
    """Retrieve efficiency records as logical rows.

    Optional ``start_date``/``end_date`` bound the record date (inclusive),
    ``dates`` restricts to an explicit set of dates and ``machine``/``shift``
    filter exactly.  Rows are ordered by date, shift and machine number.
    """

    filters: list[tuple[str, str, Any]] = []
    start_value = _normalize_date_for_query(start_date)
    end_value = _normalize_date_for_query(end_date)
    if start_value:
        filters.append(("gte", "date", start_value))
    if end_value:
        filters.append(("lte", "date", end_value))
    if dates is not None:
        values = [_normalize_date_for_query(value) for value in dates]
        filters.append(("in_", "date", [value for value in values if value]))
    if machine:
        filters.append(("eq", "machine_number", str(machine).strip()))
    if shift:
        parsed = Shift.parse(shift)
        if parsed is None:
            return [], None
        filters.append(("eq", "shift", parsed.value))

    try:
        rows = _fetch_paginated_rows(
            RECORDS,
            filters=filters,
            order_columns=("date", "shift", "machine_number"),
        )
        return _record_rows(rows), None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch efficiency records: {exc}"


def fetch_efficiency_record(record_id: str) -> tuple[dict | None, str | None]:
    """Return the record identified by ``record_id`` if it exists."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = (
            supabase.table(table_name(RECORDS))
            .select("*")
            .eq(column_name(RECORDS, "id"), record_id)
            .limit(1)
            .execute()
        )
        rows = _record_rows(getattr(response, "data", None))
        return (rows[0] if rows else None), None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch efficiency record: {exc}"


def fetch_machine_numbers() -> tuple[list[str] | None, str | None]:
    """Return the distinct machine numbers on record in numeric order."""

    try:
        rows = _fetch_paginated_rows(
            RECORDS, columns=select_columns(RECORDS, "machine_number")
        )
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch machine numbers: {exc}"

    machines = {
        str(row.get("machine_number")).strip()
        for row in _record_rows(rows)
        if row.get("machine_number") not in (None, "")
    }
    return sorted(machines, key=machine_sort_key), None


def fetch_settings() -> tuple[Settings | None, str | None]:
    """Return the settings row, falling back to defaults when it is missing."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = (
            supabase.table(table_name(SETTINGS))
            .select("*")
            .eq(column_name(SETTINGS, "id"), SETTINGS_ROW_ID)
            .limit(1)
            .execute()
        )
        rows = getattr(response, "data", None) or []
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch settings: {exc}"

    row = from_supabase_row(SETTINGS, rows[0]) if rows else None
    return Settings.from_row(row), None


def find_duplicate_record(
    record_date: date | str,
    shift: str,
    machine_number: str,
    *,
    exclude_id: str | None = None,
) -> tuple[dict | None, str | None]:
    """Return the record already stored for (date, shift, machine), if any."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        query = (
            supabase.table(table_name(RECORDS))
            .select(select_columns(RECORDS, "id"))
            .eq(column_name(RECORDS, "date"), _normalize_date_for_query(record_date))
            .eq(column_name(RECORDS, "shift"), shift)
            .eq(column_name(RECORDS, "machine_number"), machine_number)
        )
        if exclude_id is not None:
            query = query.neq(column_name(RECORDS, "id"), exclude_id)
        response = query.limit(1).execute()
        rows = _record_rows(getattr(response, "data", None))
        return (rows[0] if rows else None), None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to check for duplicates: {exc}"


def insert_efficiency_record(data: dict):
    """Insert a new efficiency record.

    Args:
        data (dict): Validated record keyed by logical column names.
    """
    supabase = _get_client()
    try:
        payload = to_supabase_payload(RECORDS, data)
        response = supabase.table(table_name(RECORDS)).insert(payload).execute()
        return _record_rows(response.data), None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to insert efficiency record: {exc}"


def update_efficiency_record(record_id: str, data: dict):
    """Replace the mutable fields of the record identified by ``record_id``."""
    supabase = _get_client()
    try:
        payload = to_supabase_payload(RECORDS, data)
        response = (
            supabase.table(table_name(RECORDS))
            .update(payload)
            .eq(column_name(RECORDS, "id"), record_id)
            .execute()
        )
        return _record_rows(response.data), None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to update efficiency record: {exc}"


def delete_efficiency_record(record_id: str):
    """Delete the record identified by ``record_id``."""
    supabase = _get_client()
    try:
        response = (
            supabase.table(table_name(RECORDS))
            .delete()
            .eq(column_name(RECORDS, "id"), record_id)
            .execute()
        )
        return _record_rows(response.data), None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to delete efficiency record: {exc}"


def upsert_settings(settings: Settings) -> tuple[Settings | None, str | None]:
    """Create or replace the singleton settings row."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    payload = to_supabase_payload(SETTINGS, settings.to_row(include_secrets=True))
    try:
        response = (
            supabase.table(table_name(SETTINGS))
            .upsert(payload, on_conflict=column_name(SETTINGS, "id"))
            .execute()
        )
        rows = getattr(response, "data", None) or []
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to save settings: {exc}"

    if not rows:
        return settings, None
    return Settings.from_row(from_supabase_row(SETTINGS, rows[0])), None


def delete_all_data() -> tuple[bool, str | None]:
    """Remove every efficiency record and the settings row."""

    supabase, error = _ensure_supabase_client()
    if error:
        return False, error

    try:
        (
            supabase.table(table_name(RECORDS))
            .delete()
            .neq(column_name(RECORDS, "id"), _NIL_UUID)
            .execute()
        )
    except Exception as exc:  # pragma: no cover - network errors
        return False, f"Failed to delete efficiency records: {exc}"

    try:
        (
            supabase.table(table_name(SETTINGS))
            .delete()
            .eq(column_name(SETTINGS, "id"), SETTINGS_ROW_ID)
            .execute()
        )
    except Exception as exc:  # pragma: no cover - network errors
        return False, f"Failed to delete settings: {exc}"

    return True, None
