"""
Database engine initialisation and table definitions.
"""

import sys
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    text,
)
from sqlalchemy.pool import StaticPool

from medqr.config import SUPPORTED_DIALECTS, get_env

metadata = MetaData()

users = Table(
    "users", metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("email", String(254), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(20), nullable=False),
    Column("is_verified", Boolean, nullable=False, default=False),
    Column("hospital", JSON, nullable=True),
    Column("created_at", DateTime, nullable=False),
)

# Only one admin identity may ever exist.
Index(
    "uq_users_single_admin", users.c.role, unique=True,
    sqlite_where=users.c.role == "admin",
    postgresql_where=users.c.role == "admin",
)

staff_access = Table(
    "staff_access", metadata,
    Column("staff_id", String(36), ForeignKey("users.id"), primary_key=True),
    Column("status", String(20), nullable=False, default="pending"),
    Column("role", String(20), nullable=False),
    Column("approved_by", String(36), ForeignKey("users.id"), nullable=True),
    Column("approval_date", DateTime, nullable=True),
    Column("specialization", String(200), nullable=True),
    Column("department", String(200), nullable=True),
    Column("notes", String(1000), nullable=True),
    Column("created_at", DateTime, nullable=False),
)

medical_records = Table(
    "medical_records", metadata,
    Column("id", String(36), nullable=False, unique=True),
    Column("patient_id", String(36), ForeignKey("users.id"), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("blood_type", String(3), nullable=False),
    Column("allergies", JSON, nullable=False),
    Column("medications", JSON, nullable=False),
    Column("conditions", JSON, nullable=False),
    Column("emergency_contact", JSON, nullable=False),
    Column("insurance_info", JSON, nullable=False),
    Column("last_updated", DateTime, nullable=False),
)

access_log = Table(
    "access_log", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("patient_id", String(36), ForeignKey("medical_records.patient_id"),
           nullable=False, index=True),
    Column("accessor_id", String(36), ForeignKey("users.id"), nullable=False),
    Column("action", String(20), nullable=False),
    # Microseconds since the epoch; strictly increasing per patient_id.
    Column("accessed_at_us", BigInteger, nullable=False),
)

Index(
    "uq_access_log_patient_time",
    access_log.c.patient_id, access_log.c.accessed_at_us,
    unique=True,
)


def init_engine(db_uri: Optional[str] = None):
    """Create a SQLAlchemy engine, verify the connection and create missing tables."""
    db_uri = db_uri or get_env("DB_URI")
    kwargs = {"echo": False, "future": True}
    if db_uri in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every checkout sees an empty database.
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    engine = create_engine(db_uri, **kwargs)

    if engine.dialect.name not in SUPPORTED_DIALECTS:
        print(f"ERROR: unsupported database dialect '{engine.dialect.name}'", file=sys.stderr)
        sys.exit(1)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)

    metadata.create_all(engine)
    print("[init] Connected to DB.")
    return engine


def dialect_insert(engine, table):
    """Return the dialect's INSERT construct, which supports ON CONFLICT."""
    if engine.dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert(table)
