"""
propvault.runtime  ──  the `PropertyVault` facade.

Every user-visible action (edit, delete, batch save, restore, snapshot
import) is one transaction: the property table is rewritten to its new
complete state and the matching audit entries are appended in the same
commit. Lifecycle hooks from `propvault.events` run after the commit.

Usage pattern
-------------
    from propvault import PropertyVault

    vault = PropertyVault.open("sqlite:///props.db")
    vault.load_folder("conf/")
    vault.save_property(prop.touched(value="jdbc:prod2"))
    vault.restore(vault.audit_log(limit=1)[0].id)
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, Dict, Iterable, List, Sequence

from pydantic import BaseModel, Field

from .audit.engine import AuditLogEngine
from .audit.restore import RestorePlan, RestoreResolver
from .bootstrap import init_store, make_engine
from .codec.envelope import SnapshotCipher, split_envelope
from .codec.snapshot import decode_snapshot, encode_snapshot
from .codec.text import parse, serialize
from .core import matrix as grid
from .core.audit import AuditEntry
from .core.matrix import MatrixRow
from .core.property import Property, now_utc, property_id
from .core.session import SessionContext
from .errors import AuditEntryNotFoundError, PropertyNotFoundError
from .events import CommitEvent, emit
from .loader import component_for_file, filename_for_component, load_folder
from .persistence.store import AuditStats, PropertyStore

logger = logging.getLogger(__name__)


class RestoreOutcome(BaseModel):
    source: AuditEntry
    plan: RestorePlan
    entries: List[AuditEntry] = Field(default_factory=list)


def _merge(
    current: Sequence[Property],
    upserts: Iterable[Property],
    deletes: Iterable[Property],
) -> List[Property]:
    """Apply deletes, then upserts, by id; existing rows keep their position."""
    by_id: Dict[str, Property] = {p.id: p for p in current}
    for prop in deletes:
        by_id.pop(prop.id, None)
    for prop in upserts:
        by_id[prop.id] = prop
    return list(by_id.values())


def _keep_layout(prop: Property, existing: Property | None) -> Property:
    """Carry the source-file position over to a rebuilt property."""
    if existing is None or prop.line_order is not None:
        return prop
    return prop.model_copy(
        update={
            "environment_order": existing.environment_order,
            "file_order": existing.file_order,
            "line_order": existing.line_order,
        }
    )


class PropertyVault:
    """Property store plus its reversible audit trail."""

    def __init__(
        self,
        store: PropertyStore,
        session: SessionContext | None = None,
        *,
        clock: Callable[[], dt.datetime] = now_utc,
    ):
        self.store = store
        self.audit = AuditLogEngine(session or SessionContext.start(), clock)
        self.resolver = RestoreResolver()

    # ---------- construction ----------
    @classmethod
    def open(
        cls,
        database_url: str,
        *,
        session: SessionContext | None = None,
        user_id: str | None = None,
    ) -> "PropertyVault":
        """One-liner: engine, tables and a fresh session."""
        store = init_store(make_engine(database_url))
        return cls(store, session or SessionContext.start(user_id))

    @property
    def session(self) -> SessionContext:
        return self.audit.session

    def rotate_session(self) -> SessionContext:
        self.audit.session = self.audit.session.rotate()
        return self.audit.session

    # ---------- reads ----------
    def properties(
        self, environment: str | None = None, search: str | None = None
    ) -> List[Property]:
        return self.store.properties(environment=environment, search=search)

    def environments(self) -> List[str]:
        return grid.environments(self.store.properties())

    def components(self) -> List[str]:
        return grid.components(self.store.properties())

    def matrix(self, component: str | None = None) -> List[MatrixRow]:
        return grid.build_matrix(self.store.properties(), component)

    def audit_log(
        self, limit: int | None = 1000, offset: int = 0, search: str | None = None
    ) -> List[AuditEntry]:
        return self.store.audit_entries(limit=limit, offset=offset, search=search)

    def history(self, key: str, environment: str) -> List[AuditEntry]:
        return self.store.audit_for_property(key, environment)

    def audit_stats(self) -> AuditStats:
        return self.store.audit_stats()

    def audit_entry(self, entry_id: str) -> AuditEntry:
        entry = self.store.audit_entry(entry_id)
        if entry is None:
            raise AuditEntryNotFoundError(entry_id)
        return entry

    # ---------- loading ----------
    def load(self, properties: Sequence[Property]) -> int:
        """Replace the whole property set without auditing (initial load)."""
        self.store.commit(list(properties))
        return len(properties)

    def load_folder(self, root) -> List[Property]:
        properties = load_folder(root)
        if not properties:
            logger.warning("no properties found under %s, store left unchanged", root)
            return []
        self.load(properties)
        logger.info(
            "initialized %d properties from %d environments",
            len(properties),
            len({p.environment for p in properties}),
        )
        return properties

    # ---------- saves ----------
    def batch_save(
        self,
        changes: Sequence[Property],
        deletions: Sequence[Property] = (),
        comment: str | None = None,
    ) -> List[AuditEntry]:
        """
        Apply `deletions` then `changes` (both matched by id) and record the
        save: one precise entry when a single property is touched, a single
        BATCH entry otherwise.
        """
        current = self.store.properties()
        known_envs = {p.environment for p in current}
        new_envs = {c.environment for c in changes} - known_envs

        updated = _merge(current, changes, deletions)
        entries = self.audit.record_save(
            list(changes), list(deletions), current, comment, new_envs
        )
        self.store.commit(updated, entries)
        if new_envs:
            logger.info("added environments: %s", ", ".join(sorted(new_envs)))
        emit(
            CommitEvent(
                kind="save",
                changed=list(changes),
                deleted=list(deletions),
                entries=entries,
            )
        )
        return entries

    def save_property(
        self, prop: Property, comment: str | None = None
    ) -> AuditEntry:
        """Create or update one property (UPDATE when its id already exists)."""
        return self.batch_save([prop], comment=comment)[0]

    def delete_property(
        self, property_id: str, comment: str | None = None
    ) -> AuditEntry:
        existing = self.store.get_property(property_id)
        if existing is None:
            raise PropertyNotFoundError(property_id)
        return self.batch_save([], [existing], comment)[0]

    def save_matrix(
        self,
        original_rows: Sequence[MatrixRow],
        edited_rows: Sequence[MatrixRow],
        deletions: Sequence[Property] = (),
        comment: str | None = None,
        component: str | None = None,
    ) -> List[AuditEntry]:
        """Diff an edited matrix against its original and save the result."""
        in_view = [
            p
            for p in self.store.properties()
            if component is None or p.component == component
        ]
        envs = grid.environments(in_view)
        changes = grid.diff(original_rows, edited_rows, in_view, envs)
        return self.batch_save(changes, deletions, comment)

    # ---------- environments & components ----------
    def add_environment(
        self,
        name: str,
        component: str,
        source: str | None = None,
        comment: str | None = None,
    ) -> List[AuditEntry]:
        """
        Add environment `name` to `component` with one property per key,
        copying values and descriptions from `source` when given. Ids that
        already exist (in any component) are left alone.
        """
        current = self.store.properties()
        taken = {p.id for p in current}
        scoped = [p for p in current if p.component == component]
        copied = {p.key: p for p in scoped if source and p.environment == source}
        created = []
        for key in dict.fromkeys(p.key for p in scoped):
            pid = property_id(name, key)
            if pid in taken:
                logger.warning("%s already exists, not added", pid)
                continue
            template = copied.get(key)
            created.append(
                Property.new(
                    name,
                    key,
                    template.value if template else "",
                    description=template.description if template else None,
                    component=component,
                )
            )
        return self.batch_save(created, comment=comment)

    def remove_environment(
        self, name: str, component: str, comment: str | None = None
    ) -> List[AuditEntry]:
        doomed = [
            p
            for p in self.store.properties()
            if p.environment == name and p.component == component
        ]
        if not doomed:
            raise PropertyNotFoundError(f"no properties for {name!r} in {component!r}")
        return self.batch_save([], doomed, comment)

    def fill_missing(
        self,
        component: str,
        environments: Sequence[str] | None = None,
        comment: str | None = None,
    ) -> List[AuditEntry]:
        """Add empty properties so `component` has every key in every environment."""
        current = self.store.properties()
        taken = {p.id for p in current}
        scoped = [p for p in current if p.component == component]
        targets = environments or grid.environments(current)
        candidates = grid.create_missing(scoped, targets)
        created = []
        for prop in candidates:
            if prop.id in taken:
                logger.warning("%s is taken by another component, not filled", prop.id)
                continue
            taken.add(prop.id)
            created.append(prop)
        return self.batch_save(created, comment=comment)

    def import_properties_file(
        self, filename: str, text: str, comment: str | None = None
    ) -> List[AuditEntry]:
        """Add one file's properties to every environment that lacks them."""
        current = self.store.properties()
        taken = {p.id for p in current}
        envs = grid.environments(current) or ["default"]
        component = component_for_file(filename)

        created = []
        for item in parse(text):
            for env in envs:
                prop = Property.new(
                    env,
                    item.key,
                    item.value,
                    description=item.description,
                    component=component,
                )
                if prop.id not in taken:
                    taken.add(prop.id)
                    created.append(prop)
        return self.batch_save(created, comment=comment)

    # ---------- restore ----------
    def restore(self, entry_id: str) -> RestoreOutcome:
        """
        Undo one audit entry and record the restore as new entries.
        The restored entry itself is never modified.
        """
        source = self.audit_entry(entry_id)
        plan = self.resolver.resolve(source)  # raises before anything is written

        current = self.store.properties()
        by_id = {p.id: p for p in current}
        upserts = [_keep_layout(p, by_id.get(p.id)) for p in plan.upserts]
        plan = RestorePlan(upserts=upserts, deletes=plan.deletes)

        updated = _merge(current, plan.upserts, plan.deletes)
        entries = self.audit.record_restore(source, plan, current)
        self.store.commit(updated, entries)
        logger.info(
            "restored %s: %d upserted, %d deleted",
            source.id,
            len(plan.upserts),
            len(plan.deletes),
        )
        emit(
            CommitEvent(
                kind="restore",
                changed=plan.upserts,
                deleted=plan.deletes,
                entries=entries,
            )
        )
        return RestoreOutcome(source=source, plan=plan, entries=entries)

    # ---------- snapshots ----------
    def export_snapshot(self) -> bytes:
        return encode_snapshot(self.store.properties(), self.store.audit_trail())

    def import_snapshot(self, blob: bytes) -> List[Property]:
        """
        Replace the dataset from a snapshot. Combined snapshots replace the
        audit trail too; legacy ones leave it untouched. Nothing is written
        if the blob fails to decode.
        """
        snapshot = decode_snapshot(blob)
        self.store.replace_all(snapshot.properties, snapshot.entries)
        emit(
            CommitEvent(
                kind="import_snapshot",
                changed=snapshot.properties,
                entries=snapshot.entries or [],
            )
        )
        return self.store.properties()

    def export_encrypted(self, password: str, cipher: SnapshotCipher) -> bytes:
        return cipher.encrypt(self.export_snapshot(), password).pack()

    def import_encrypted(
        self, blob: bytes, password: str, cipher: SnapshotCipher
    ) -> List[Property]:
        return self.import_snapshot(cipher.decrypt(split_envelope(blob), password))

    # ---------- rendering ----------
    def render_files(self, environment: str | None = None) -> Dict[str, Dict[str, str]]:
        """`{environment: {filename: text}}` for every component file."""
        grouped: Dict[str, Dict[str, List[Property]]] = {}
        for prop in self.store.properties(environment=environment):
            by_component = grouped.setdefault(prop.environment, {})
            by_component.setdefault(prop.component, []).append(prop)
        return {
            env: {
                filename_for_component(component): serialize(props)
                for component, props in components.items()
            }
            for env, components in grouped.items()
        }
