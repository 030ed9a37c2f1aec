"""
propvault.errors  ──  failure taxonomy.

Recoverable conditions (malformed lines, unreadable files) are never raised;
everything here aborts the operation before anything is committed.
"""


class VaultError(Exception):
    """Base class for every propvault failure."""


class StoreUninitializedError(VaultError, RuntimeError):
    """A store operation ran before `PropertyStore.initialize()`."""


class PayloadDecodeError(VaultError, ValueError):
    """A BATCH audit payload could not be decoded."""


class FormatDetectionError(VaultError, ValueError):
    """A snapshot blob is not a readable legacy or combined layout."""


class DuplicatePropertyError(VaultError, ValueError):
    """Two properties in one rewrite share the same id."""

    def __init__(self, ids: list[str]):
        self.ids = ids
        super().__init__(f"duplicate property ids: {', '.join(ids)}")


class NotRestorableError(VaultError):
    """The audit entry has no inverse (RESTORE entries)."""


class AuditEntryNotFoundError(VaultError, KeyError):
    pass


class PropertyNotFoundError(VaultError, KeyError):
    pass


class EnvelopeError(VaultError, ValueError):
    """An encrypted export is too short to hold salt and iv."""


class HookError(VaultError):
    """One or more post-commit hooks failed; the transaction itself committed."""

    def __init__(self, kind: str, failures: list[Exception]):
        self.kind = kind
        self.failures = failures
        super().__init__(
            f"{len(failures)} {kind} hook(s) failed after commit: {failures[0]!r}"
        )
