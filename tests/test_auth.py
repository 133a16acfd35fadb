"""
Tests for the session token codec, request guards and the login/logout flow.
"""

import base64
import json
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from flask import Flask, jsonify

from ehr.api.auth import issue_token, require_role, token_required, verify_token
from ehr.errors import ApiError
from ehr.models import Identity

from conftest import PASSWORD, TEST_SECRET

DOCTOR = Identity(id=1, username="dr.who", role="doctor")


# ── Token codec ──────────────────────────────────────────────────────

def test_issue_then_verify_returns_same_identity():
    token = issue_token(DOCTOR, TEST_SECRET)
    assert verify_token(token, TEST_SECRET) == DOCTOR


def test_token_expires_after_24_hours():
    token = issue_token(DOCTOR, TEST_SECRET)
    claims = jwt.decode(token, TEST_SECRET, algorithms=["HS256"])
    assert claims["exp"] - claims["iat"] == 24 * 3600
    assert {"id", "username", "role"} <= set(claims)


def test_verify_rejects_expired_token():
    token = issue_token(DOCTOR, TEST_SECRET, expiry_hours=-1)
    assert verify_token(token, TEST_SECRET) is None


def test_verify_rejects_wrong_secret():
    token = issue_token(DOCTOR, "someone-elses-secret")
    assert verify_token(token, TEST_SECRET) is None


def test_verify_rejects_tampered_payload():
    header, _payload, signature = issue_token(DOCTOR, TEST_SECRET).split(".")
    forged = {"id": 1, "username": "dr.who", "role": "admin",
              "exp": int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp())}
    forged_payload = base64.urlsafe_b64encode(json.dumps(forged).encode()).rstrip(b"=").decode()
    assert verify_token(f"{header}.{forged_payload}.{signature}", TEST_SECRET) is None


@pytest.mark.parametrize("claims", [
    {"username": "x", "role": "doctor"},
    {"id": "1", "username": "x", "role": "doctor"},
    {"id": 1, "role": "doctor"},
    {"id": 1, "username": "x", "role": "janitor"},
])
def test_verify_rejects_malformed_claims(claims):
    claims = dict(claims, exp=datetime.now(timezone.utc) + timedelta(hours=1))
    token = jwt.encode(claims, TEST_SECRET, algorithm="HS256")
    assert verify_token(token, TEST_SECRET) is None


def test_verify_requires_expiry():
    token = jwt.encode({"id": 1, "username": "x", "role": "doctor"}, TEST_SECRET, algorithm="HS256")
    assert verify_token(token, TEST_SECRET) is None


def test_verify_rejects_garbage():
    assert verify_token("not-a-token", TEST_SECRET) is None


# ── Guards on a bare app ─────────────────────────────────────────────

@pytest.fixture
def guarded_app():
    app = Flask(__name__)
    app.config["JWT_SECRET_KEY"] = TEST_SECRET

    @app.errorhandler(ApiError)
    def api_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.route("/role-only")
    @require_role({"doctor"})
    def role_only():
        return jsonify({"ok": True})

    @app.route("/doctors")
    @token_required
    @require_role({"doctor"})
    def doctors():
        return jsonify({"ok": True})

    return app


def test_role_gate_without_identity_fails_closed(guarded_app):
    resp = guarded_app.test_client().get("/role-only")
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Insufficient permissions"}


def test_guards_allow_matching_role(guarded_app):
    client = guarded_app.test_client()
    client.set_cookie("token", issue_token(DOCTOR, TEST_SECRET))
    assert client.get("/doctors").status_code == 200


def test_guards_reject_other_role(guarded_app):
    client = guarded_app.test_client()
    client.set_cookie("token", issue_token(Identity(2, "n", "nurse"), TEST_SECRET))
    assert client.get("/doctors").status_code == 403


# ── Login / logout / me ──────────────────────────────────────────────

def test_login_sets_httponly_cookie_that_resolves_to_user(client, users):
    resp = client.post("/api/auth/login", json={"username": "doctor", "password": PASSWORD})
    assert resp.status_code == 200
    user = {"id": users["doctor"], "username": "doctor", "role": "doctor"}
    assert resp.get_json() == {"message": "Login successful", "user": user}

    set_cookie = resp.headers["Set-Cookie"]
    assert set_cookie.startswith("token=")
    assert "HttpOnly" in set_cookie
    assert "SameSite=Lax" in set_cookie
    assert "Path=/" in set_cookie

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.get_json() == {"user": user}


def test_login_wrong_password_sets_no_cookie(client, users):
    resp = client.post("/api/auth/login", json={"username": "doctor", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Invalid credentials"}
    assert "Set-Cookie" not in resp.headers
    assert client.get("/api/auth/me").status_code == 401


def test_login_unknown_user(client, users):
    resp = client.post("/api/auth/login", json={"username": "nobody", "password": PASSWORD})
    assert resp.status_code == 401


def test_login_missing_fields(client):
    resp = client.post("/api/auth/login", json={"username": "doctor"})
    assert resp.status_code == 400
    assert "password" in resp.get_json()["error"]


def test_logout_then_protected_request_is_unauthenticated(client, login):
    login("nurse")
    assert client.get("/api/patients").status_code == 200

    resp = client.post("/api/auth/logout")
    assert resp.status_code == 200
    assert resp.get_json() == {"message": "Logged out successfully"}

    assert client.get("/api/patients").status_code == 401
    assert client.get("/api/auth/me").status_code == 401


def test_logout_without_session_is_ok(client):
    assert client.post("/api/auth/logout").status_code == 200


def test_me_without_cookie_is_401(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "Access token required"}


def test_me_with_invalid_cookie_is_403(client):
    client.set_cookie("token", "garbage")
    resp = client.get("/api/auth/me")
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Invalid token"}


def test_expired_cookie_is_403(client):
    client.set_cookie("token", issue_token(DOCTOR, TEST_SECRET, expiry_hours=-1))
    assert client.get("/api/auth/me").status_code == 403


def test_deleted_user_token_stays_valid_until_expiry(client, engine, login):
    from ehr.database import users

    login("admin")
    with engine.begin() as conn:
        conn.execute(users.delete().where(users.c.username == "admin"))
    assert client.get("/api/auth/me").status_code == 200
