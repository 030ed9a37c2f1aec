"""
propvault.events  ──  post-commit hooks for vault transactions

Hooks run after the transaction committed. Every matching hook runs even
if an earlier one fails; failures are then raised together as `HookError`.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, Dict, List, Literal, Set, Tuple

from pydantic import BaseModel, Field

from .core.audit import AuditEntry
from .core.property import Property
from .errors import HookError

logger = logging.getLogger(__name__)

EventType = Literal["save", "restore", "import_snapshot"]
Handler = Callable[["CommitEvent"], None]


class CommitEvent(BaseModel):
    """What one committed transaction changed."""

    kind: EventType
    changed: List[Property] = Field(default_factory=list)
    deleted: List[Property] = Field(default_factory=list)
    entries: List[AuditEntry] = Field(default_factory=list)

    @property
    def components(self) -> Set[str]:
        return {p.component for p in self.changed} | {p.component for p in self.deleted}


class EventRegistry:
    """Central registry for event handlers"""

    def __init__(self):
        # event type -> [(component filter, handler)]
        self._handlers: Dict[str, List[Tuple[frozenset, Handler]]] = defaultdict(list)

    def register(
        self, event_type: EventType, components: tuple[str, ...], handler: Handler
    ) -> None:
        """Register a handler; an empty `components` filter matches every event."""
        self._handlers[event_type].append((frozenset(components), handler))

    def emit(self, event: CommitEvent) -> None:
        touched = event.components
        failures: List[Exception] = []
        for components, handler in list(self._handlers[event.kind]):
            # snapshot imports replace everything, filters never skip them
            if event.kind != "import_snapshot" and components:
                if not components & touched:
                    continue
            try:
                handler(event)
            except Exception as exc:
                logger.exception("%s hook %r failed", event.kind, handler)
                failures.append(exc)
        if failures:
            raise HookError(event.kind, failures) from failures[0]

    def clear(self) -> None:
        self._handlers.clear()


# Global registry instance
_registry = EventRegistry()


class OnDecorator:
    """Namespace for event decorators"""

    @staticmethod
    def _decorate(event_type: EventType, components: tuple[str, ...]) -> Callable:
        def decorator(func: Handler) -> Handler:
            _registry.register(event_type, components, func)
            return func

        return decorator

    def save(self, *components: str) -> Callable:
        """Run after a save or delete commits (optionally only for `components`)."""
        return self._decorate("save", components)

    def restore(self, *components: str) -> Callable:
        """Run after a restore commits."""
        return self._decorate("restore", components)

    def import_snapshot(self) -> Callable:
        """Run after a snapshot import replaced the dataset."""
        return self._decorate("import_snapshot", ())


# Export the decorator interface
on = OnDecorator()


def emit(event: CommitEvent) -> None:
    _registry.emit(event)


def clear_handlers() -> None:
    _registry.clear()
