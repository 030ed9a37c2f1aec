"""
Property record plus the RestorePoint used when converting between a live
property and an audit entry.

* Models are frozen; use `model_copy(update=...)` for a changed copy.
* `environment_order` / `file_order` / `line_order` only record where a
  property came from so regenerated files keep the source layout.
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field, field_validator

DEFAULT_COMPONENT = "env"


def now_utc() -> dt.datetime:
    return dt.datetime.now(tz=dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    """Attach UTC to naive datetimes read back from the store."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def property_id(environment: str, key: str) -> str:
    return f"{environment}_{key}"


class Property(BaseModel):
    """One key/value entry of one component in one environment."""

    id: str
    environment: str
    key: str
    value: str = ""
    description: str | None = None
    component: str = DEFAULT_COMPONENT
    last_modified: dt.datetime = Field(default_factory=now_utc)
    environment_order: int | None = None
    file_order: int | None = None
    line_order: int | None = None

    model_config = {"frozen": True}

    @field_validator("last_modified")
    @classmethod
    def _utc_last_modified(cls, value: dt.datetime) -> dt.datetime:
        return as_utc(value)

    @field_validator("description")
    @classmethod
    def _blank_description(cls, value: str | None) -> str | None:
        return value or None

    @classmethod
    def new(
        cls,
        environment: str,
        key: str,
        value: str = "",
        *,
        description: str | None = None,
        component: str = DEFAULT_COMPONENT,
        **extra,
    ) -> "Property":
        return cls(
            id=property_id(environment, key),
            environment=environment,
            key=key,
            value=value,
            description=description or None,
            component=component,
            **extra,
        )

    def touched(self, **changes) -> "Property":
        """Copy with `changes` applied and a fresh `last_modified`."""
        changes.setdefault("last_modified", now_utc())
        return self.model_copy(update=changes)


class RestorePoint(BaseModel):
    """Minimal `(value, description, last_modified)` state of one property."""

    timestamp: dt.datetime = Field(default_factory=now_utc)
    record_id: str
    property_key: str
    environment: str
    component: str
    value: str = ""
    description: str | None = None
    last_modified: dt.datetime = Field(default_factory=now_utc)

    model_config = {"frozen": True}

    def to_property(self) -> Property:
        # restored rows are stamped with the time of the restore
        return Property(
            id=self.record_id,
            key=self.property_key,
            environment=self.environment,
            component=self.component,
            value=self.value,
            description=self.description or None,
        )
