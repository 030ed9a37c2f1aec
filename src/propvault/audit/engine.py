"""
Builds audit entries for single edits, batch saves and restores.

Every entry is stamped with the `SessionContext` the engine was created
with. Timestamps handed out by one engine strictly increase, so ordering
by timestamp is also insertion order.
"""

from __future__ import annotations

import datetime as dt
import logging
import secrets
from typing import Callable, Iterable, List, Sequence

from ..core.audit import (
    MULTIPLE,
    Action,
    AuditEntry,
    BatchChange,
    BatchEntry,
    BatchPayload,
    CreateEntry,
    DeleteEntry,
    RestoreEntry,
    UpdateEntry,
)
from ..core.property import Property, now_utc
from ..core.session import SessionContext
from .restore import RestorePlan

logger = logging.getLogger(__name__)

_TICK = dt.timedelta(microseconds=1)


def _millis(ts: dt.datetime) -> int:
    return int(ts.timestamp() * 1000)


def _or_empty(text: str | None) -> str:
    return text or "(empty)"


def describe_change(
    action: Action, prop: Property, old_property: Property | None = None
) -> str:
    """Human text for what an action did to `prop`."""
    env_key = f"{prop.environment}.{prop.key}"

    if action == "CREATE":
        return (
            f"Created property '{env_key}' in {prop.component} "
            f"with value: '{prop.value}'"
        )
    if action == "DELETE":
        return (
            f"Deleted property '{env_key}' from {prop.component} "
            f"(was: '{prop.value}')"
        )
    if action == "RESTORE":
        return f"Restored property '{env_key}' to previous state"
    if action == "UPDATE":
        if old_property is None:
            return f"Updated property '{env_key}'"
        parts = []
        if old_property.value != prop.value:
            parts.append(f"value: '{old_property.value}' → '{prop.value}'")
        if (old_property.description or None) != (prop.description or None):
            parts.append(
                f"description: '{_or_empty(old_property.description)}'"
                f" → '{_or_empty(prop.description)}'"
            )
        if old_property.component != prop.component:
            parts.append(
                f"component: '{old_property.component}' → '{prop.component}'"
            )
        if not parts:
            return f"Updated property '{env_key}'"
        return f"Updated property '{env_key}': {', '.join(parts)}"
    return f"{action} operation on property '{env_key}'"


class AuditLogEngine:
    def __init__(
        self,
        session: SessionContext,
        clock: Callable[[], dt.datetime] = now_utc,
    ):
        self.session = session
        self._clock = clock
        self._last: dt.datetime | None = None

    # ---------- stamping ----------
    def _stamp(self) -> tuple[str, dt.datetime]:
        ts = self._clock()
        if self._last is not None and ts <= self._last:
            ts = self._last + _TICK
        self._last = ts
        return f"audit_{_millis(ts)}_{secrets.token_hex(4)}", ts

    def _common(self, prop: Property, details: str) -> dict:
        entry_id, ts = self._stamp()
        return {
            "id": entry_id,
            "timestamp": ts,
            "record_id": prop.id,
            "property_key": prop.key,
            "environment": prop.environment,
            "component": prop.component,
            "change_details": details,
            "session_id": self.session.session_id,
            "user_id": self.session.user_id,
        }

    # ---------- single-property entries ----------
    def create_audit_log(
        self,
        action: Action,
        prop: Property,
        old_property: Property | None = None,
        comment: str | None = None,
    ) -> AuditEntry:
        """
        CREATE fills only the new fields, DELETE only the old ones, UPDATE
        both. RESTORE behaves like UPDATE but `old_property` is optional.
        `comment` replaces the generated change details.
        """
        details = comment or describe_change(action, prop, old_property)
        common = self._common(prop, details)

        if action == "CREATE":
            return CreateEntry(
                **common, new_value=prop.value, new_description=prop.description
            )
        if action == "DELETE":
            return DeleteEntry(
                **common, old_value=prop.value, old_description=prop.description
            )
        if action == "UPDATE":
            if old_property is None:
                raise ValueError("an UPDATE entry needs the previous property state")
            return UpdateEntry(
                **common,
                old_value=old_property.value,
                new_value=prop.value,
                old_description=old_property.description,
                new_description=prop.description,
            )
        if action == "RESTORE":
            return RestoreEntry(
                **common,
                old_value=old_property.value if old_property else None,
                old_description=old_property.description if old_property else None,
                new_value=prop.value,
                new_description=prop.description,
            )
        raise ValueError(f"use create_batch_operation_audit_log for {action!r}")

    # ---------- batch entries ----------
    def create_batch_operation_audit_log(
        self,
        changes: Sequence[Property],
        deletions: Sequence[Property],
        comment: str | None = None,
        original_properties: Iterable[Property] | None = None,
    ) -> BatchEntry:
        """
        One BATCH entry for a whole save. Each change carries the property
        it replaced (looked up by id in `original_properties`); a change
        without one was a creation.
        """
        originals = {p.id: p for p in original_properties or ()}
        payload = BatchPayload(
            changes=[
                BatchChange(target=change, original=originals.get(change.id))
                for change in changes
            ],
            deletions=list(deletions),
        )
        total = payload.operation_count

        counts = []
        if changes:
            counts.append(f"{len(changes)} properties updated/added")
        if deletions:
            counts.append(f"{len(deletions)} properties deleted")

        entry_id, ts = self._stamp()
        return BatchEntry(
            id=entry_id,
            timestamp=ts,
            record_id=f"batch_{_millis(ts)}",
            property_key=f"batch_operation_{total}_properties",
            environment=MULTIPLE,
            component=MULTIPLE,
            change_details=comment or f"Batch operation: {', '.join(counts)}",
            session_id=self.session.session_id,
            user_id=self.session.user_id,
            payload=payload,
            operation_count=total,
        )

    def record_save(
        self,
        changes: Sequence[Property],
        deletions: Sequence[Property],
        original_properties: Sequence[Property],
        comment: str | None = None,
        new_environments: Iterable[str] = (),
    ) -> List[AuditEntry]:
        """
        Entries for one save: nothing for an empty save, a precise
        CREATE / UPDATE / DELETE when exactly one property is touched,
        otherwise a single BATCH entry.
        """
        total = len(changes) + len(deletions)
        if total == 0:
            return []
        if total > 1:
            return [
                self.create_batch_operation_audit_log(
                    changes, deletions, comment, original_properties
                )
            ]

        if deletions:
            return [self.create_audit_log("DELETE", deletions[0], comment=comment)]

        change = changes[0]
        original = next((p for p in original_properties if p.id == change.id), None)
        if original is not None:
            return [self.create_audit_log("UPDATE", change, original, comment)]
        if comment is None and change.environment in set(new_environments):
            comment = f"Created property in new environment: {change.environment}"
        return [self.create_audit_log("CREATE", change, comment=comment)]

    # ---------- restores ----------
    def record_restore(
        self,
        source: AuditEntry,
        plan: RestorePlan,
        current: Sequence[Property] = (),
    ) -> List[AuditEntry]:
        """
        Entries describing a restore of `source`: DELETE for an undone
        creation, RESTORE for a reverted update or deletion, and one
        RESTORE summary for an undone batch.
        """
        if source.action == "BATCH":
            entry_id, ts = self._stamp()
            details = (
                f"Restored batch operation from audit log: {source.id} "
                f"({len(plan.upserts)} restored, {len(plan.deletes)} deleted)"
            )
            return [
                RestoreEntry(
                    id=entry_id,
                    timestamp=ts,
                    record_id=f"batch_restore_{_millis(ts)}",
                    property_key=f"batch_restore_{plan.operation_count}_properties",
                    environment=MULTIPLE,
                    component=MULTIPLE,
                    change_details=details,
                    session_id=self.session.session_id,
                    user_id=self.session.user_id,
                    old_value=source.operations_label,
                )
            ]

        by_id = {p.id: p for p in current}
        entries: List[AuditEntry] = []
        for prop in plan.deletes:
            entries.append(
                self.create_audit_log(
                    "DELETE",
                    by_id.get(prop.id, prop),
                    comment=(
                        f"Restored (deleted) property created in audit log: {source.id}"
                    ),
                )
            )
        for prop in plan.upserts:
            entries.append(
                self.create_audit_log(
                    "RESTORE",
                    prop,
                    by_id.get(prop.id),
                    comment=f"Restored from audit log: {source.id}",
                )
            )
        logger.debug("restore of %s produced %d entries", source.id, len(entries))
        return entries
