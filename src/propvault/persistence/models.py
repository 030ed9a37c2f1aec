"""
Two-table schema: the live `properties` set and the append-only
`audit_logs` trail.
"""

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class PropertyRow(Base):
    __tablename__ = "properties"

    id = Column(String, primary_key=True)
    environment = Column(String, nullable=False, index=True)
    key = Column(String, nullable=False, index=True)
    value = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    component = Column(String, nullable=True)
    last_modified = Column(DateTime(timezone=True), nullable=True)
    environment_order = Column(Integer, nullable=True)
    file_order = Column(Integer, nullable=True)
    line_order = Column(Integer, nullable=True)


class AuditLogRow(Base):
    """Rows are only ever inserted, never updated."""

    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    action = Column(String, nullable=False)
    table_name = Column(String, nullable=False)
    record_id = Column(String, nullable=False)
    property_key = Column(String, nullable=False)
    environment = Column(String, nullable=False)
    component = Column(String, nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    old_description = Column(Text, nullable=True)
    new_description = Column(Text, nullable=True)
    change_details = Column(Text, nullable=False)
    user_id = Column(String, nullable=True)
    session_id = Column(String, nullable=False)


PROPERTY_COLUMNS = tuple(c.name for c in PropertyRow.__table__.columns)
AUDIT_COLUMNS = tuple(c.name for c in AuditLogRow.__table__.columns)
