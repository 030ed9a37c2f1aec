"""
Explicit session identity stamped on every audit entry.

The caller owns the lifecycle: create one at application start and
`rotate()` when a new working session begins.
"""

from __future__ import annotations

import secrets
import time

from pydantic import BaseModel


def _new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class SessionContext(BaseModel):
    session_id: str
    user_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def start(cls, user_id: str | None = None) -> "SessionContext":
        return cls(session_id=_new_session_id(), user_id=user_id)

    def rotate(self) -> "SessionContext":
        """Return a new context for the same user."""
        return SessionContext(session_id=_new_session_id(), user_id=self.user_id)
