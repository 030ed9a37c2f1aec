"""
Single entry-point that wires SQLAlchemy into propvault.
Call once at application start-up.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from .persistence.store import PropertyStore


def make_engine(database_url: str) -> Engine:
    return create_engine(database_url, pool_pre_ping=True, future=True)


def init_store(engine: Engine) -> PropertyStore:
    """Create both tables if needed and return a ready store."""
    return PropertyStore(engine).initialize()
