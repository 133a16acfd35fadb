"""
Database engine initialisation, table definitions and row helpers.
"""

import logging
import sys
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.exc import SQLAlchemyError

from ehr.config import get_env, ROLES, AUDIT_ACTIONS
from ehr.errors import StorageError

logger = logging.getLogger(__name__)

GENDERS = ("male", "female", "other")

metadata = MetaData()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _one_of(column: str, values: Iterable[str]) -> str:
    allowed = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({allowed})"


# ── Tables ───────────────────────────────────────────────────────────

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("username", String(80), unique=True, nullable=False),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(16), nullable=False),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    CheckConstraint(_one_of("role", ROLES), name="ck_users_role"),
)

patients = Table(
    "patients",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("full_name", String(200), nullable=False),
    Column("date_of_birth", Date, nullable=False),
    Column("gender", String(10), nullable=False),
    Column("phone", String(40)),
    Column("created_at", DateTime, nullable=False, default=utcnow, index=True),
    CheckConstraint(_one_of("gender", GENDERS), name="ck_patients_gender"),
)

encounters = Table(
    "encounters",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("patient_id", Integer, ForeignKey("patients.id"), nullable=False, index=True),
    Column("clinician_role", String(50), nullable=False),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False, default=utcnow),
)

prescriptions = Table(
    "prescriptions",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("encounter_id", Integer, ForeignKey("encounters.id"), nullable=False, index=True),
    Column("drug_name", String(200), nullable=False),
    Column("dosage", String(100), nullable=False),
    Column("frequency", String(100), nullable=False),
    Column("duration", String(100), nullable=False),
    Column("created_by", Integer, ForeignKey("users.id"), nullable=False),
    Column("created_at", DateTime, nullable=False, default=utcnow),
)

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_role", String(16), nullable=False),
    Column("action", String(10), nullable=False),
    Column("entity_type", String(50), nullable=False),
    Column("entity_id", Integer),
    Column("timestamp", DateTime, nullable=False, default=utcnow, index=True),
    CheckConstraint(_one_of("action", AUDIT_ACTIONS), name="ck_audit_logs_action"),
)


# ── Engine ───────────────────────────────────────────────────────────

def _enable_sqlite_foreign_keys(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine(db_uri: Optional[str] = None, **engine_kwargs):
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = db_uri or get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True, **engine_kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    logger.info("[init] Connected to DB (%s).", engine.dialect.name)
    return engine


def create_schema(engine) -> None:
    """Create any missing tables."""
    metadata.create_all(engine)


@contextmanager
def store_errors(operation: str):
    """Turn any persistence failure into a StorageError, logging the cause."""
    try:
        yield
    except SQLAlchemyError:
        logger.exception("[db] %s failed", operation)
        raise StorageError()


def row_to_dict(row) -> Optional[Dict[str, Any]]:
    """Convert a result mapping into a JSON-ready dict (ISO dates)."""
    if row is None:
        return None
    out = {}
    for key, value in dict(row).items():
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        out[key] = value
    return out
