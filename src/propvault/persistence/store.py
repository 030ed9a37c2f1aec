"""
Thin data-access layer around the `properties` and `audit_logs` tables.

Each user-visible action is written with `commit`: the property table is
rewritten to its new complete state and the audit entries are appended
inside the same transaction, so neither can land without the other.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import delete, func, insert, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..core.audit import AuditEntry, from_row, to_row
from ..core.property import DEFAULT_COMPONENT, Property
from ..errors import DuplicatePropertyError, StoreUninitializedError
from .models import AUDIT_COLUMNS, PROPERTY_COLUMNS, AuditLogRow, Base, PropertyRow

logger = logging.getLogger(__name__)


class AuditStats(BaseModel):
    total: int = 0
    by_action: Dict[str, int] = Field(default_factory=dict)
    recent: List[AuditEntry] = Field(default_factory=list)


def property_to_row(prop: Property) -> dict[str, Any]:
    return prop.model_dump(include=set(PROPERTY_COLUMNS))


def row_to_property(row: Any) -> Property:
    data = {name: getattr(row, name) for name in PROPERTY_COLUMNS}
    data["value"] = data["value"] or ""
    data["component"] = data["component"] or DEFAULT_COMPONENT
    if data["last_modified"] is None:
        del data["last_modified"]
    return Property.model_validate(data)


def row_to_entry(row: Any) -> AuditEntry:
    return from_row({name: getattr(row, name) for name in AUDIT_COLUMNS})


def check_unique(properties: Iterable[Property]) -> None:
    counts = Counter(p.id for p in properties)
    duplicates = sorted(pid for pid, n in counts.items() if n > 1)
    if duplicates:
        raise DuplicatePropertyError(duplicates)


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class PropertyStore:
    def __init__(self, engine: Engine):
        self.engine = engine
        self._ready = False

    def initialize(self) -> "PropertyStore":
        Base.metadata.create_all(self.engine)
        self._ready = True
        return self

    @property
    def ready(self) -> bool:
        return self._ready

    def _ensure_ready(self) -> None:
        if not self._ready:
            raise StoreUninitializedError(
                "Call PropertyStore.initialize() before using the store"
            )

    def _new_session(self) -> Session:
        self._ensure_ready()
        return Session(self.engine, future=True)

    # ---- reads: properties ----------------------------------------------
    def properties(
        self, environment: str | None = None, search: str | None = None
    ) -> List[Property]:
        """Properties ordered by (environment, key), optionally filtered."""
        q = select(PropertyRow)
        if environment:
            q = q.where(PropertyRow.environment == environment)
        if search:
            pattern = _like(search)
            q = q.where(
                or_(
                    PropertyRow.key.ilike(pattern, escape="\\"),
                    PropertyRow.value.ilike(pattern, escape="\\"),
                    PropertyRow.description.ilike(pattern, escape="\\"),
                )
            )
        q = q.order_by(PropertyRow.environment, PropertyRow.key)
        with self._new_session() as s:
            return [row_to_property(row) for (row,) in s.execute(q)]

    def get_property(self, property_id: str) -> Property | None:
        with self._new_session() as s:
            row = s.get(PropertyRow, property_id)
            return row_to_property(row) if row else None

    def count_properties(self) -> int:
        with self._new_session() as s:
            return s.scalar(select(func.count()).select_from(PropertyRow)) or 0

    def is_empty(self) -> bool:
        return self.count_properties() == 0

    # ---- reads: audit trail ---------------------------------------------
    def audit_entries(
        self,
        limit: int | None = 1000,
        offset: int = 0,
        search: str | None = None,
    ) -> List[AuditEntry]:
        """Newest first."""
        q = select(AuditLogRow)
        if search:
            pattern = _like(search)
            q = q.where(
                or_(
                    AuditLogRow.property_key.ilike(pattern, escape="\\"),
                    AuditLogRow.environment.ilike(pattern, escape="\\"),
                    AuditLogRow.component.ilike(pattern, escape="\\"),
                    AuditLogRow.change_details.ilike(pattern, escape="\\"),
                )
            )
        q = q.order_by(AuditLogRow.timestamp.desc(), AuditLogRow.id.desc())
        if offset:
            q = q.offset(offset)
        if limit is not None:
            q = q.limit(limit)
        with self._new_session() as s:
            return [row_to_entry(row) for (row,) in s.execute(q)]

    def audit_trail(self) -> List[AuditEntry]:
        """Every entry, oldest first."""
        q = select(AuditLogRow).order_by(AuditLogRow.timestamp, AuditLogRow.id)
        with self._new_session() as s:
            return [row_to_entry(row) for (row,) in s.execute(q)]

    def audit_entry(self, entry_id: str) -> AuditEntry | None:
        with self._new_session() as s:
            row = s.get(AuditLogRow, entry_id)
            return row_to_entry(row) if row else None

    def audit_for_property(self, key: str, environment: str) -> List[AuditEntry]:
        q = (
            select(AuditLogRow)
            .where(AuditLogRow.property_key == key)
            .where(AuditLogRow.environment == environment)
            .order_by(AuditLogRow.timestamp.desc(), AuditLogRow.id.desc())
        )
        with self._new_session() as s:
            return [row_to_entry(row) for (row,) in s.execute(q)]

    def audit_stats(self, recent: int = 10) -> AuditStats:
        q = (
            select(AuditLogRow.action, func.count())
            .group_by(AuditLogRow.action)
            .order_by(func.count().desc())
        )
        with self._new_session() as s:
            by_action = {action: count for action, count in s.execute(q)}
        return AuditStats(
            total=sum(by_action.values()),
            by_action=by_action,
            recent=self.audit_entries(limit=recent),
        )

    # ---- writes ---------------------------------------------------------
    def commit(
        self,
        properties: Sequence[Property],
        entries: Sequence[AuditEntry] = (),
    ) -> None:
        """
        Rewrite the property table to `properties` and append `entries`,
        all in one transaction.
        """
        check_unique(properties)
        with self._new_session() as s, s.begin():
            self._rewrite_properties(s, properties)
            self._append(s, entries)
        logger.info(
            "committed %d properties, %d audit entries", len(properties), len(entries)
        )

    def replace_all(
        self,
        properties: Sequence[Property],
        entries: Sequence[AuditEntry] | None,
    ) -> None:
        """
        Replace the property table and, unless `entries` is None, the whole
        audit trail as well.
        """
        check_unique(properties)
        with self._new_session() as s, s.begin():
            self._rewrite_properties(s, properties)
            if entries is not None:
                s.execute(delete(AuditLogRow))
                self._append(s, entries)
        logger.info(
            "replaced %d properties%s",
            len(properties),
            "" if entries is None else f" and {len(entries)} audit entries",
        )

    @staticmethod
    def _rewrite_properties(s: Session, properties: Sequence[Property]) -> None:
        s.execute(delete(PropertyRow))
        if properties:
            s.execute(insert(PropertyRow), [property_to_row(p) for p in properties])

    @staticmethod
    def _append(s: Session, entries: Sequence[AuditEntry]) -> None:
        if entries:
            s.execute(insert(AuditLogRow), [to_row(e) for e in entries])
