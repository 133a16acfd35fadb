"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Roles / audit actions ────────────────────────────────────────────
ROLES = ("doctor", "nurse", "admin")
AUDIT_ACTIONS = ("CREATE", "READ", "UPDATE", "DELETE")

# Largest id an INTEGER primary key can hold.
MAX_RECORD_ID = 2**63 - 1

# ── Session token ────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_ALGORITHM = "HS256"
TOKEN_EXPIRY_HOURS = 24
TOKEN_COOKIE_NAME = "token"

IS_PRODUCTION = os.getenv("FLASK_ENV") == "production"

# ── Result caps ──────────────────────────────────────────────────────
MAX_PATIENT_RESULTS = 50
MAX_AUDIT_RESULTS = 100

# ── API server ───────────────────────────────────────────────────────
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
RATE_LIMIT = os.getenv("RATE_LIMIT", "100 per 15 minutes")
MAX_CONTENT_LENGTH = 10 * 1024 * 1024
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Number of reverse proxies in front of the app whose X-Forwarded-* headers are trusted.
TRUST_PROXY = int(os.getenv("TRUST_PROXY", "0"))


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
