"""
Encrypted-export envelope: `salt(16) ∥ iv(12) ∥ ciphertext`.

Key derivation and encryption belong to the `SnapshotCipher` collaborator;
this module only fixes the byte layout both directions agree on.
"""

from __future__ import annotations

from typing import NamedTuple, Protocol

from ..errors import EnvelopeError

SALT_SIZE = 16
IV_SIZE = 12
HEADER_SIZE = SALT_SIZE + IV_SIZE


class Envelope(NamedTuple):
    salt: bytes
    iv: bytes
    ciphertext: bytes

    def pack(self) -> bytes:
        if len(self.salt) != SALT_SIZE or len(self.iv) != IV_SIZE:
            raise EnvelopeError(
                f"salt must be {SALT_SIZE} bytes and iv {IV_SIZE} bytes"
            )
        return self.salt + self.iv + self.ciphertext


def split_envelope(blob: bytes) -> Envelope:
    if len(blob) <= HEADER_SIZE:
        raise EnvelopeError(
            f"encrypted export is {len(blob)} bytes, expected more than {HEADER_SIZE}"
        )
    return Envelope(blob[:SALT_SIZE], blob[SALT_SIZE:HEADER_SIZE], blob[HEADER_SIZE:])


class SnapshotCipher(Protocol):
    """Password-based symmetric encryption supplied by the host."""

    def encrypt(self, data: bytes, password: str) -> Envelope: ...

    def decrypt(self, envelope: Envelope, password: str) -> bytes: ...
