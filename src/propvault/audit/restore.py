"""
Invert one audit entry into the upserts and deletes that undo it.

Resolving is pure: nothing is written here. The vault applies the plan and
records the restore as a new audit entry.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from ..core.audit import (
    AuditEntry,
    BatchEntry,
    CreateEntry,
    DeleteEntry,
    RestoreEntry,
    UpdateEntry,
)
from ..core.property import Property, RestorePoint
from ..errors import NotRestorableError


class RestorePlan(BaseModel):
    upserts: List[Property] = Field(default_factory=list)
    deletes: List[Property] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def operation_count(self) -> int:
        return len(self.upserts) + len(self.deletes)


def _point(
    entry: AuditEntry, value: str | None, description: str | None
) -> RestorePoint:
    return RestorePoint(
        timestamp=entry.timestamp,
        record_id=entry.record_id,
        property_key=entry.property_key,
        environment=entry.environment,
        component=entry.component,
        value=value or "",
        description=description,
    )


class RestoreResolver:
    """
    CREATE       → delete the created property
    UPDATE       → upsert the previous value/description
    DELETE       → upsert the deleted property again
    BATCH        → revert updates, delete creations, re-create deletions
    RESTORE      → not restorable (there is no redo)
    """

    def resolve(self, entry: AuditEntry) -> RestorePlan:
        if isinstance(entry, CreateEntry):
            point = _point(entry, entry.new_value, entry.new_description)
            return RestorePlan(deletes=[point.to_property()])

        if isinstance(entry, (UpdateEntry, DeleteEntry)):
            point = _point(entry, entry.old_value, entry.old_description)
            return RestorePlan(upserts=[point.to_property()])

        if isinstance(entry, BatchEntry):
            return self._resolve_batch(entry)

        if isinstance(entry, RestoreEntry):
            raise NotRestorableError(
                f"{entry.id} is a RESTORE entry; restore an earlier entry instead"
            )
        raise NotRestorableError(f"unsupported audit action {entry.action!r}")

    @staticmethod
    def _resolve_batch(entry: BatchEntry) -> RestorePlan:
        payload = entry.decoded_payload()  # PayloadDecodeError on bad data
        upserts: List[Property] = []
        deletes: List[Property] = []

        for change in payload.changes:
            if change.original is not None:
                upserts.append(change.original.touched())
            else:
                deletes.append(change.target)
        for deleted in payload.deletions:
            upserts.append(deleted.touched())

        return RestorePlan(upserts=upserts, deletes=deletes)
