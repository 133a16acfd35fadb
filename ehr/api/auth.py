"""
JWT session helpers and request guards for the Flask API.

Identity travels in an HttpOnly cookie. The claim is trusted purely on its
signature: it is not re-checked against the users table, so a removed user
stays valid until the token expires.
"""

from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Iterable, Optional

import jwt
from flask import current_app, request

from ehr.config import (
    ROLES,
    SECRET_KEY,
    TOKEN_ALGORITHM,
    TOKEN_COOKIE_NAME,
    TOKEN_EXPIRY_HOURS,
)
from ehr.errors import Forbidden, InsufficientPermissions, Unauthenticated
from ehr.models import Identity
from ehr.rbac import is_allowed


def issue_token(identity: Identity, secret_key: str = SECRET_KEY,
                expiry_hours: float = TOKEN_EXPIRY_HOURS) -> str:
    """Sign an identity claim that expires *expiry_hours* from now."""
    now = datetime.now(timezone.utc)
    payload = {
        "id": identity.id,
        "username": identity.username,
        "role": identity.role,
        "iat": now,
        "exp": now + timedelta(hours=expiry_hours),
    }
    return jwt.encode(payload, secret_key, algorithm=TOKEN_ALGORITHM)


def _identity_from_claims(payload: Dict[str, Any]) -> Optional[Identity]:
    user_id = payload.get("id")
    username = payload.get("username")
    role = payload.get("role")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        return None
    if not isinstance(username, str) or role not in ROLES:
        return None
    return Identity(id=user_id, username=username, role=role)


def verify_token(token: str, secret_key: str = SECRET_KEY) -> Optional[Identity]:
    """Verify a token and return its Identity, or None if it cannot be trusted."""
    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[TOKEN_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    return _identity_from_claims(payload)


# ── Cookies ──────────────────────────────────────────────────────────

def set_token_cookie(response, token: str):
    cfg = current_app.config
    response.set_cookie(
        TOKEN_COOKIE_NAME,
        token,
        max_age=int(TOKEN_EXPIRY_HOURS * 3600),
        httponly=True,
        secure=cfg["TOKEN_COOKIE_SECURE"],
        samesite=cfg["TOKEN_COOKIE_SAMESITE"],
        path="/",
    )
    return response


def clear_token_cookie(response):
    cfg = current_app.config
    response.delete_cookie(
        TOKEN_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=cfg["TOKEN_COOKIE_SECURE"],
        samesite=cfg["TOKEN_COOKIE_SAMESITE"],
    )
    return response


# ── Guards ───────────────────────────────────────────────────────────

def current_identity() -> Optional[Identity]:
    return getattr(request, "identity", None)


def token_required(f):
    """Decorator that resolves the session cookie into ``request.identity``."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = request.cookies.get(TOKEN_COOKIE_NAME)
        if not token:
            raise Unauthenticated()

        identity = verify_token(token, current_app.config["JWT_SECRET_KEY"])
        if identity is None:
            raise Forbidden()

        request.identity = identity
        return f(*args, **kwargs)

    return decorated


def require_role(allowed_roles: Iterable[str]):
    """Decorator factory restricting a view to *allowed_roles*.

    Must sit below ``token_required``. A request with no resolved identity
    is refused, never let through.
    """
    allowed = frozenset(allowed_roles)

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            identity = current_identity()
            if identity is None or not is_allowed(identity.role, allowed):
                raise InsufficientPermissions()
            return f(*args, **kwargs)

        return decorated

    return decorator
