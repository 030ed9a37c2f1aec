"""
Audit entries as a tagged variant, one case per `action`.

Each case carries only the fields its action populates. The flat
`audit_logs` row layout (where a BATCH entry keeps its payload in
`new_value` and an operation count in `old_value`) exists only at the
persistence boundary: see `to_row` / `from_row`.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from ..errors import PayloadDecodeError
from .property import Property, as_utc, now_utc

Action = Literal["CREATE", "UPDATE", "DELETE", "RESTORE", "BATCH"]
MULTIPLE = "multiple"

_COUNT_RE = re.compile(r"^\s*(\d+)")


class _EntryBase(BaseModel):
    id: str
    timestamp: dt.datetime = Field(default_factory=now_utc)
    table_name: Literal["properties"] = "properties"
    record_id: str
    property_key: str
    environment: str
    component: str
    change_details: str
    session_id: str
    user_id: str | None = None

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: dt.datetime) -> dt.datetime:
        return as_utc(value)

    @property
    def restorable(self) -> bool:
        return True

    # ------------------------------------------------------------------ #
    # flat column view
    # ------------------------------------------------------------------ #
    def _value_columns(self) -> dict[str, Any]:
        return {}


class CreateEntry(_EntryBase):
    action: Literal["CREATE"] = "CREATE"
    new_value: str = ""
    new_description: str | None = None

    def _value_columns(self) -> dict[str, Any]:
        return {"new_value": self.new_value, "new_description": self.new_description}


class UpdateEntry(_EntryBase):
    action: Literal["UPDATE"] = "UPDATE"
    old_value: str = ""
    new_value: str = ""
    old_description: str | None = None
    new_description: str | None = None

    def _value_columns(self) -> dict[str, Any]:
        return {
            "old_value": self.old_value,
            "new_value": self.new_value,
            "old_description": self.old_description,
            "new_description": self.new_description,
        }


class DeleteEntry(_EntryBase):
    action: Literal["DELETE"] = "DELETE"
    old_value: str = ""
    old_description: str | None = None

    def _value_columns(self) -> dict[str, Any]:
        return {"old_value": self.old_value, "old_description": self.old_description}


class RestoreEntry(_EntryBase):
    """Written by a restore; old fields are set when the prior state was known."""

    action: Literal["RESTORE"] = "RESTORE"
    old_value: str | None = None
    new_value: str | None = None
    old_description: str | None = None
    new_description: str | None = None

    @property
    def restorable(self) -> bool:
        # no redo: an earlier entry has to be restored instead
        return False

    def _value_columns(self) -> dict[str, Any]:
        return {
            "old_value": self.old_value,
            "new_value": self.new_value,
            "old_description": self.old_description,
            "new_description": self.new_description,
        }


class BatchChange(BaseModel):
    """`original` is absent when the change created the property."""

    target: Property = Field(alias="property")
    original: Property | None = Field(default=None, alias="originalProperty")

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def is_creation(self) -> bool:
        return self.original is None


class BatchPayload(BaseModel):
    changes: list[BatchChange] = Field(default_factory=list)
    deletions: list[Property] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def operation_count(self) -> int:
        return len(self.changes) + len(self.deletions)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, text: str | None) -> "BatchPayload":
        if not text:
            raise PayloadDecodeError("batch entry carries no payload")
        try:
            return cls.model_validate_json(text)
        except ValidationError as exc:
            raise PayloadDecodeError(f"unreadable batch payload: {exc}") from exc


class BatchEntry(_EntryBase):
    """
    One entry for a whole save. `payload` is None only when a stored row
    could not be decoded; `raw_payload` then keeps the text untouched so the
    row survives export and the restore attempt can report the failure.
    """

    action: Literal["BATCH"] = "BATCH"
    payload: BatchPayload | None = None
    raw_payload: str | None = None
    operation_count: int = 0

    @property
    def operations_label(self) -> str:
        return f"{self.operation_count} operations"

    def decoded_payload(self) -> BatchPayload:
        if self.payload is not None:
            return self.payload
        return BatchPayload.from_json(self.raw_payload)

    def _value_columns(self) -> dict[str, Any]:
        return {
            "old_value": self.operations_label,
            "new_value": self.payload.to_json() if self.payload else self.raw_payload,
        }


AuditEntry = Annotated[
    Union[CreateEntry, UpdateEntry, DeleteEntry, RestoreEntry, BatchEntry],
    Field(discriminator="action"),
]

_ADAPTER: TypeAdapter[AuditEntry] = TypeAdapter(AuditEntry)

ROW_COLUMNS = (
    "id",
    "timestamp",
    "action",
    "table_name",
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


def to_row(entry: AuditEntry) -> dict[str, Any]:
    """Flatten an entry into the `audit_logs` column set."""
    row = {name: None for name in ROW_COLUMNS}
    row.update(
        id=entry.id,
        timestamp=entry.timestamp,
        action=entry.action,
        table_name=entry.table_name,
        record_id=entry.record_id,
        property_key=entry.property_key,
        environment=entry.environment,
        component=entry.component,
        change_details=entry.change_details,
        user_id=entry.user_id,
        session_id=entry.session_id,
    )
    row.update(entry._value_columns())
    return row


def from_row(row: Mapping[str, Any]) -> AuditEntry:
    """
    Rebuild the typed entry from a flat row.

    Raises pydantic's ValidationError for rows that do not fit any case.
    A BATCH row with an unreadable payload still loads (see `BatchEntry`).
    """
    data = {k: v for k, v in row.items() if v is not None}
    data.setdefault("table_name", "properties")
    if data.get("action") == "BATCH":
        raw = data.pop("new_value", None)
        label = data.pop("old_value", "")
        try:
            payload = BatchPayload.model_validate_json(raw) if raw else None
        except ValidationError:
            payload = None
        data["payload"] = payload
        data["raw_payload"] = None if payload is not None else raw
        match = _COUNT_RE.match(str(label))
        if match:
            data["operation_count"] = int(match.group(1))
        elif payload is not None:
            data["operation_count"] = payload.operation_count
    return _ADAPTER.validate_python(data)

