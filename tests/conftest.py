from __future__ import annotations

import datetime as dt
import os
import sys

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC_PATH = os.path.join(PROJECT_ROOT, "src")

if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

# Keep tests deterministic: do not load developer-local PROPVAULT_* values.
for key in list(os.environ.keys()):
    if key.startswith("PROPVAULT_"):
        os.environ.pop(key, None)

from propvault.bootstrap import init_store, make_engine  # noqa: E402
from propvault.core.session import SessionContext  # noqa: E402
from propvault.events import clear_handlers  # noqa: E402
from propvault.persistence.store import PropertyStore  # noqa: E402
from propvault.runtime import PropertyVault  # noqa: E402


@pytest.fixture(autouse=True)
def _restore_environment():
    """Prevent environment mutations and hook registrations leaking across tests."""
    snapshot = os.environ.copy()
    try:
        yield
    finally:
        os.environ.clear()
        os.environ.update(snapshot)
        clear_handlers()


@pytest.fixture
def session() -> SessionContext:
    return SessionContext(session_id="session_test", user_id="tester")


@pytest.fixture
def clock():
    """A clock that advances one second per call."""
    state = {"now": dt.datetime(2024, 1, 1, 12, 0, tzinfo=dt.timezone.utc)}

    def tick() -> dt.datetime:
        state["now"] += dt.timedelta(seconds=1)
        return state["now"]

    return tick


@pytest.fixture
def store(tmp_path) -> PropertyStore:
    return init_store(make_engine(f"sqlite:///{tmp_path / 'vault.db'}"))


@pytest.fixture
def vault(store, session, clock) -> PropertyVault:
    return PropertyVault(store, session, clock=clock)


@pytest.fixture
def conf_folder(tmp_path):
    """Two environments with an `env` and an `app-properties` file each."""
    root = tmp_path / "conf"
    for env, url in (("production", "jdbc:prod"), ("staging", "jdbc:stage")):
        folder = root / env
        folder.mkdir(parents=True)
        (folder / "env.properties").write_text(
            f"# Database URL\ndb.url={url}\n\ndb.pool=10\n", encoding="utf-8"
        )
        (folder / "app-properties.properties").write_text(
            "! Feature flag\nfeature.x=on\n", encoding="utf-8"
        )
    return root
