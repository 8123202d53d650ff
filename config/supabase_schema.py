"""Centralised Supabase table and column configuration.

The tracker stores two tables: efficiency readings and a single settings row.
Every table name and column identifier used by the code base is defined here
so that deployments can adjust naming conventions without touching
application logic.  Code works with the logical identifiers; the helpers
below translate them to the configured physical names and back.  When a
mapping is missing the identifier supplied by the caller is used unchanged.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping


@dataclass(frozen=True)
class SupabaseTable:
    """Configuration for a Supabase table."""

    name: str
    columns: Mapping[str, str] = field(default_factory=dict)


# Default table and column mappings. These act as fallbacks if no environment
# overrides are supplied.
_DEFAULT_SUPABASE_SCHEMA: Dict[str, SupabaseTable] = {
    "efficiency_records": SupabaseTable(
        name="efficiency_records",
        columns={
            "id": "id",
            "created_at": "created_at",
            "date": "date",
            "time": "time",
            "shift": "shift",
            "machine_number": "machine_number",
            "weft_meter": "weft_meter",
            "stops": "stops",
            "total_time": "total_time",
            "run_time": "run_time",
        },
    ),
    "settings": SupabaseTable(
        name="settings",
        columns={
            "id": "id",
            "total_machines": "total_machines",
            "low_efficiency_threshold": "low_efficiency_threshold",
            "vision_api_key": "gemini_api_key",
            "notification_number": "whatsapp_number",
            "message_template": "whatsapp_message_template",
        },
    ),
}


def _normalise_columns(columns: Any) -> Dict[str, str]:
    """Return a string-to-string column mapping from ``columns``."""

    if not isinstance(columns, Mapping):
        return {}
    return {
        str(logical): str(actual)
        for logical, actual in columns.items()
        if isinstance(logical, str) and isinstance(actual, str)
    }


def _load_schema_from_env() -> Dict[str, SupabaseTable]:
    """Build the Supabase schema from environment overrides."""

    schema = dict(_DEFAULT_SUPABASE_SCHEMA)

    raw_schema = os.getenv("SUPABASE_SCHEMA_JSON")
    if not raw_schema:
        return schema

    try:
        parsed = json.loads(raw_schema)
    except json.JSONDecodeError:
        return schema

    if not isinstance(parsed, Mapping):
        return schema

    for identifier, entry in parsed.items():
        if not isinstance(identifier, str) or not isinstance(entry, Mapping):
            continue

        name = entry.get("name")
        if not isinstance(name, str) or not name:
            continue

        columns = _normalise_columns(entry.get("columns", {}))
        schema[identifier] = SupabaseTable(name=name, columns=columns)

    return schema


SUPABASE_SCHEMA: Dict[str, SupabaseTable] = _load_schema_from_env()


def table_name(identifier: str) -> str:
    """Return the configured Supabase table name for ``identifier``."""

    table = SUPABASE_SCHEMA.get(identifier)
    if table:
        return table.name
    return identifier


def column_name(table_identifier: str, column_identifier: str) -> str:
    """Return the configured column name for ``table_identifier``."""

    table = SUPABASE_SCHEMA.get(table_identifier)
    if table and column_identifier in table.columns:
        return table.columns[column_identifier]
    return column_identifier


def table_columns(table_identifier: str) -> Mapping[str, str]:
    """Return the configured column mapping for ``table_identifier``."""

    table = SUPABASE_SCHEMA.get(table_identifier)
    if table:
        return table.columns
    return {}


def to_supabase_payload(
    table_identifier: str, payload: Mapping[str, Any]
) -> Dict[str, Any]:
    """Return ``payload`` with keys mapped to Supabase column names."""

    columns = table_columns(table_identifier)
    if not columns:
        return dict(payload)
    return {columns.get(key, key): value for key, value in payload.items()}


def from_supabase_row(
    table_identifier: str, row: Mapping[str, Any] | None
) -> Dict[str, Any]:
    """Return ``row`` with Supabase column names mapped back to logical keys."""

    if not row:
        return {}
    columns = table_columns(table_identifier)
    if not columns:
        return dict(row)
    reverse = {actual: logical for logical, actual in columns.items()}
    return {reverse.get(key, key): value for key, value in row.items()}


def select_columns(table_identifier: str, *logical_columns: str) -> str:
    """Return a PostgREST ``select`` clause for ``logical_columns`` (``*`` when empty)."""

    if not logical_columns:
        return "*"
    return ",".join(column_name(table_identifier, column) for column in logical_columns)
