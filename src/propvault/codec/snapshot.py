"""
propvault.codec.snapshot  ──  whole-dataset Parquet snapshots.

Combined layout
---------------
Property rows and audit rows share one table. A `table_type` column
(`properties` | `audit_logs`) tells them apart; columns that do not apply
to a row are null. Rows are sorted by (table_type, environment, key).

Legacy layout
-------------
Only the property columns, no `table_type`. Importing one replaces the
properties and leaves the audit trail alone.

Decoding validates every row before returning, so a caller that writes
only after `decode_snapshot` succeeds never writes a partial import.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Literal, Sequence

import pyarrow as pa
import pyarrow.parquet as pq
from pydantic import BaseModel, ValidationError

from ..core.audit import AuditEntry, from_row, to_row
from ..core.property import DEFAULT_COMPONENT, Property, as_utc
from ..errors import FormatDetectionError

logger = logging.getLogger(__name__)

PROPERTIES = "properties"
AUDIT_LOGS = "audit_logs"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

SCHEMA = pa.schema(
    [
        ("table_type", pa.string()),
        ("id", pa.string()),
        ("environment", pa.string()),
        ("key", pa.string()),
        ("value", pa.string()),
        ("description", pa.string()),
        ("component", pa.string()),
        ("last_modified", pa.string()),
        ("environment_order", pa.int64()),
        ("file_order", pa.int64()),
        ("line_order", pa.int64()),
        ("timestamp", pa.string()),
        ("action", pa.string()),
        ("record_id", pa.string()),
        ("property_key", pa.string()),
        ("old_value", pa.string()),
        ("new_value", pa.string()),
        ("old_description", pa.string()),
        ("new_description", pa.string()),
        ("change_details", pa.string()),
        ("user_id", pa.string()),
        ("session_id", pa.string()),
    ]
)
COLUMNS = tuple(SCHEMA.names)

LEGACY_REQUIRED = frozenset({"id", "environment", "key", "value"})
COMBINED_REQUIRED = frozenset(
    {
        "table_type",
        "id",
        "environment",
        "key",
        "value",
        "description",
        "component",
        "timestamp",
        "action",
        "record_id",
        "property_key",
        "change_details",
        "session_id",
    }
)

Layout = Literal["combined", "legacy"]


class Snapshot(BaseModel):
    layout: Layout
    properties: List[Property]
    entries: List[AuditEntry] | None = None  # None for legacy snapshots


# ---------- time columns ----------
def format_time(value: dt.datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).strftime(TIME_FORMAT)


def parse_time(value: Any) -> dt.datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        return as_utc(value)
    if isinstance(value, str):
        return as_utc(dt.datetime.fromisoformat(value.strip()))
    raise ValueError(f"not a timestamp: {value!r}")


# ---------- encoding ----------
def _blank_row(table_type: str) -> Dict[str, Any]:
    row: Dict[str, Any] = dict.fromkeys(COLUMNS)
    row["table_type"] = table_type
    return row


def _property_row(prop: Property) -> Dict[str, Any]:
    row = _blank_row(PROPERTIES)
    row.update(
        id=prop.id,
        environment=prop.environment,
        key=prop.key,
        value=prop.value,
        description=prop.description,
        component=prop.component,
        last_modified=format_time(prop.last_modified),
        environment_order=prop.environment_order,
        file_order=prop.file_order,
        line_order=prop.line_order,
    )
    return row


def _audit_row(entry: AuditEntry) -> Dict[str, Any]:
    flat = to_row(entry)
    row = _blank_row(AUDIT_LOGS)
    for name in COLUMNS:
        if name in flat and name != "timestamp":
            row[name] = flat[name]
    row.update(
        key=flat["property_key"],
        value=flat["new_value"],
        description=flat["new_description"],
        timestamp=format_time(entry.timestamp),
    )
    return row


def encode_snapshot(
    properties: Sequence[Property], entries: Sequence[AuditEntry]
) -> bytes:
    """Serialize the full dataset as one combined Parquet blob."""
    rows = [_property_row(p) for p in properties]
    # audit rows go in oldest-first; the stable sort keeps that within a key
    ordered = sorted(entries, key=lambda e: e.timestamp)
    rows.extend(_audit_row(e) for e in ordered)
    rows.sort(key=lambda r: (r["table_type"], r["environment"] or "", r["key"] or ""))

    table = pa.Table.from_pylist(rows, schema=SCHEMA)
    sink = pa.BufferOutputStream()
    pq.write_table(table, sink)
    return sink.getvalue().to_pybytes()


# ---------- decoding ----------
def _read_table(blob: bytes) -> pa.Table:
    if not blob:
        raise FormatDetectionError("snapshot is empty")
    try:
        return pq.read_table(pa.BufferReader(blob))
    except (pa.ArrowException, OSError) as exc:
        raise FormatDetectionError(f"not a Parquet snapshot: {exc}") from exc


def _require(columns: set, required: frozenset, layout: str) -> None:
    missing = sorted(required - columns)
    if missing:
        raise FormatDetectionError(
            f"{layout} snapshot is missing columns: {', '.join(missing)}"
        )


def _decode_property(row: Dict[str, Any]) -> Property:
    data = {
        "id": row.get("id"),
        "environment": row.get("environment"),
        "key": row.get("key"),
        "value": row.get("value") or "",
        "description": row.get("description") or None,
        "component": row.get("component") or DEFAULT_COMPONENT,
        "environment_order": row.get("environment_order"),
        "file_order": row.get("file_order"),
        "line_order": row.get("line_order"),
    }
    modified = parse_time(row.get("last_modified"))
    if modified is not None:
        data["last_modified"] = modified
    return Property.model_validate(data)


def _decode_entry(row: Dict[str, Any]) -> AuditEntry:
    flat = {
        name: row.get(name)
        for name in (
            "id",
            "action",
            "record_id",
            "property_key",
            "environment",
            "component",
            "old_value",
            "new_value",
            "old_description",
            "new_description",
            "change_details",
            "user_id",
            "session_id",
        )
    }
    flat["table_name"] = PROPERTIES
    flat["timestamp"] = parse_time(row.get("timestamp")) or dt.datetime.now(
        tz=dt.timezone.utc
    )
    return from_row(flat)


def decode_snapshot(blob: bytes) -> Snapshot:
    """
    Detect the layout of `blob` and decode every row.

    Raises FormatDetectionError when the blob is unreadable, required
    columns are missing, or any row fails validation.
    """
    table = _read_table(blob)
    columns = set(table.column_names)
    layout: Layout = "combined" if "table_type" in columns else "legacy"
    rows = table.to_pylist()

    properties: List[Property] = []
    entries: List[AuditEntry] = []
    try:
        if layout == "legacy":
            _require(columns, LEGACY_REQUIRED, layout)
            properties = [_decode_property(row) for row in rows]
        else:
            _require(columns, COMBINED_REQUIRED, layout)
            for index, row in enumerate(rows):
                table_type = row.get("table_type")
                if table_type == PROPERTIES:
                    properties.append(_decode_property(row))
                elif table_type == AUDIT_LOGS:
                    entries.append(_decode_entry(row))
                else:
                    raise FormatDetectionError(
                        f"row {index}: unknown table_type {table_type!r}"
                    )
    except FormatDetectionError:
        raise
    except (ValidationError, ValueError, TypeError) as exc:
        raise FormatDetectionError(f"invalid {layout} snapshot row: {exc}") from exc

    entries.sort(key=lambda e: e.timestamp)
    logger.info(
        "decoded %s snapshot: %d properties, %d audit entries",
        layout,
        len(properties),
        len(entries),
    )
    return Snapshot(
        layout=layout,
        properties=properties,
        entries=entries if layout == "combined" else None,
    )
