"""
Key-by-environment projection of the property store.

One `MatrixRow` per distinct key, one value per environment. An edited copy
of the rows is compared against the original rows with `diff` to get the
property mutations a save has to apply.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, Iterable, List, Sequence

from pydantic import BaseModel, Field

from .property import DEFAULT_COMPONENT, Property, now_utc

logger = logging.getLogger(__name__)


class MatrixRow(BaseModel):
    """`id` is the key the row was built from; `key` may be edited."""

    id: str
    key: str
    description: str = ""
    component: str = DEFAULT_COMPONENT
    last_modified: dt.datetime = Field(default_factory=now_utc)
    values: Dict[str, str] = Field(default_factory=dict)

    def edit(self, **changes) -> "MatrixRow":
        """Copy with `changes`; `values` entries are merged, not replaced."""
        values = dict(self.values)
        values.update(changes.pop("values", {}))
        return self.model_copy(update={**changes, "values": values})


def environments(properties: Iterable[Property]) -> List[str]:
    return sorted({p.environment for p in properties})


def components(properties: Iterable[Property]) -> List[str]:
    return sorted({p.component for p in properties})


def build_matrix(
    properties: Iterable[Property], component: str | None = None
) -> List[MatrixRow]:
    """Group properties by key, keeping first-seen key order."""
    rows: Dict[str, MatrixRow] = {}
    for prop in properties:
        if component is not None and prop.component != component:
            continue
        row = rows.get(prop.key)
        if row is None:
            row = rows[prop.key] = MatrixRow(
                id=prop.key,
                key=prop.key,
                description=prop.description or "",
                component=prop.component,
                last_modified=prop.last_modified,
            )
        row.values[prop.environment] = prop.value
        if prop.last_modified > row.last_modified:
            row.last_modified = prop.last_modified
    return list(rows.values())


def _find(
    properties: Sequence[Property], key: str, environment: str, component: str
) -> Property | None:
    fallback = None
    for prop in properties:
        if prop.key == key and prop.environment == environment:
            if prop.component == component:
                return prop
            fallback = fallback or prop
    return fallback


def diff(
    original_rows: Sequence[MatrixRow],
    edited_rows: Sequence[MatrixRow],
    properties: Sequence[Property],
    envs: Sequence[str] | None = None,
) -> List[Property]:
    """
    Property mutations turning `original_rows` into `edited_rows`.

    For every edited row and environment, one mutation is emitted when the
    key, the description or that environment's value changed. A value typed
    into an empty cell creates a new property with id `environment_key`.
    Unchanged cells emit nothing.
    """
    originals = {row.id: row for row in original_rows}
    envs = list(envs) if envs is not None else environments(properties)
    changes: List[Property] = []

    for edited in edited_rows:
        original = originals.get(edited.id)
        if original is None:
            logger.debug("edited row %s has no original, skipped", edited.id)
            continue
        key_changed = edited.key != original.key
        description_changed = edited.description != original.description

        for env in envs:
            new_value = edited.values.get(env)
            value_changed = original.values.get(env) != new_value
            if not (key_changed or description_changed or value_changed):
                continue

            existing = _find(properties, original.key, env, original.component)
            if existing is not None:
                changes.append(
                    existing.touched(
                        key=edited.key,
                        value=new_value or "",
                        description=edited.description or None,
                    )
                )
            elif new_value:
                changes.append(
                    Property.new(
                        env,
                        edited.key,
                        new_value,
                        description=edited.description,
                        component=edited.component,
                    )
                )
    return changes


def create_missing(
    existing: Sequence[Property], target_environments: Sequence[str] | None = None
) -> List[Property]:
    """
    Empty-valued properties for every (key, component, environment)
    combination not yet present, so each component file lists the same keys
    in every environment. Descriptions are borrowed from a property with the
    same key and component.
    """
    keys = list(dict.fromkeys(p.key for p in existing))
    comps = list(dict.fromkeys(p.component for p in existing))
    if target_environments is None:
        target_environments = list(dict.fromkeys(p.environment for p in existing))

    present = {(p.key, p.environment, p.component) for p in existing}
    descriptions: Dict[tuple, str | None] = {}
    for prop in existing:
        descriptions.setdefault((prop.key, prop.component), prop.description)

    created: List[Property] = []
    for key in keys:
        for component in comps:
            for env in target_environments:
                if (key, env, component) in present:
                    continue
                created.append(
                    Property.new(
                        env,
                        key,
                        "",
                        description=descriptions.get((key, component)),
                        component=component,
                    )
                )
    return created
