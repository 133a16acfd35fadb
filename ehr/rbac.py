"""
Role-Based Access Control – credential lookup, user provisioning and role allow-lists.
"""

from typing import Iterable

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from ehr.config import ROLES
from ehr.database import users
from ehr.models import Identity

# ── Per-route allow-lists ────────────────────────────────────────────
ALL_STAFF = frozenset({"doctor", "nurse", "admin"})
CLINICIANS = frozenset({"doctor", "nurse"})
PRESCRIBERS = frozenset({"doctor"})
AUDITORS = frozenset({"admin"})


def is_allowed(role, allowed_roles: Iterable[str]) -> bool:
    """True iff *role* is a known role listed in *allowed_roles*."""
    return role in ROLES and role in allowed_roles


def authenticate(engine, username: str, password: str) -> Identity:
    """Look up a user by username, check the password and return their Identity."""
    stmt = select(users.c.id, users.c.username, users.c.password_hash, users.c.role).where(
        users.c.username == username
    )
    with engine.connect() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row or not check_password_hash(row["password_hash"], password):
        raise ValueError("Invalid credentials")

    role = str(row["role"]).strip().lower()
    if role not in ROLES:
        raise ValueError(f"Unsupported role '{row['role']}' for user {row['username']}.")

    return Identity(id=int(row["id"]), username=str(row["username"]), role=role)


def create_user(engine, username: str, password: str, role: str) -> int:
    """Provision a user with a hashed password. Returns the new user id."""
    role = role.strip().lower()
    if role not in ROLES:
        raise ValueError(f"Unsupported role '{role}'. Expected one of: {', '.join(ROLES)}.")
    if not username or not password:
        raise ValueError("Username and password are required.")

    try:
        with engine.begin() as conn:
            result = conn.execute(insert(users).values(
                username=username,
                password_hash=generate_password_hash(password),
                role=role,
            ))
    except IntegrityError:
        raise ValueError(f"User '{username}' already exists.")
    return int(result.inserted_primary_key[0])
