"""
Public surface for propvault.
Importing this module does **not** open a database; call
`PropertyVault.open(url)` (or `bootstrap.init_store(engine)`) at start-up.
"""

from .audit import AuditLogEngine, RestorePlan, RestoreResolver
from .codec.snapshot import decode_snapshot, encode_snapshot
from .codec.text import parse, serialize
from .core.audit import AuditEntry, BatchPayload
from .core.matrix import MatrixRow
from .core.property import Property, RestorePoint
from .core.session import SessionContext
from .errors import (
    AuditEntryNotFoundError,
    DuplicatePropertyError,
    EnvelopeError,
    FormatDetectionError,
    HookError,
    NotRestorableError,
    PayloadDecodeError,
    PropertyNotFoundError,
    StoreUninitializedError,
    VaultError,
)
from .events import on
from .runtime import PropertyVault, RestoreOutcome

__all__ = [
    "PropertyVault",
    "RestoreOutcome",
    "Property",
    "RestorePoint",
    "MatrixRow",
    "SessionContext",
    "AuditEntry",
    "BatchPayload",
    "AuditLogEngine",
    "RestorePlan",
    "RestoreResolver",
    "parse",
    "serialize",
    "encode_snapshot",
    "decode_snapshot",
    "on",
    "VaultError",
    "StoreUninitializedError",
    "PayloadDecodeError",
    "FormatDetectionError",
    "DuplicatePropertyError",
    "NotRestorableError",
    "AuditEntryNotFoundError",
    "PropertyNotFoundError",
    "EnvelopeError",
    "HookError",
]
