"""
Flask application factory and server entry-point.
"""

import atexit
import logging
import os
import sys
import time

from flask import Flask, g, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.middleware.proxy_fix import ProxyFix

from ehr.config import (
    FRONTEND_URL,
    IS_PRODUCTION,
    LOG_LEVEL,
    MAX_CONTENT_LENGTH,
    RATE_LIMIT,
    SECRET_KEY,
    TOKEN_EXPIRY_HOURS,
    TRUST_PROXY,
)
from ehr.database import init_engine, create_schema
from ehr.api.audit import AuditRecorder
from ehr.api.routes import register_routes

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
}


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _register_hooks(app):
    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def finish_request(response):
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)

        started = g.get("request_started")
        if started is not None:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info("%s %s %s %.1fms", request.method, request.path,
                        response.status_code, elapsed_ms)
        return response


def create_app(engine=None, config=None):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    app.config.update(
        JWT_SECRET_KEY=SECRET_KEY,
        TOKEN_COOKIE_SECURE=IS_PRODUCTION,
        TOKEN_COOKIE_SAMESITE="None" if IS_PRODUCTION else "Lax",
        MAX_CONTENT_LENGTH=MAX_CONTENT_LENGTH,
        AUDIT_ASYNC=True,
        RATELIMIT_ENABLED=True,
        TRUST_PROXY=TRUST_PROXY,
    )
    if config:
        app.config.update(config)

    hops = int(app.config["TRUST_PROXY"])
    if hops > 0:
        # Client address for rate limiting comes from X-Forwarded-For.
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops)

    CORS(app, origins=[FRONTEND_URL], supports_credentials=True)
    Limiter(
        get_remote_address,
        app=app,
        default_limits=[RATE_LIMIT],
        storage_uri="memory://",
    )

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if engine is None:
            logger.info("[init] Initializing database connection...")
            engine = init_engine()
        logger.info("[init] Ensuring tables exist...")
        create_schema(engine)
    except SQLAlchemyError:
        logger.critical("[init] Failed to initialize the database", exc_info=True)
        sys.exit(1)

    recorder = AuditRecorder(engine, background=app.config["AUDIT_ASYNC"])
    app.extensions["audit_recorder"] = recorder

    # ── Register routes ──────────────────────────────────────────────
    _register_hooks(app)
    register_routes(app, engine, recorder)

    logger.info("[init] ✓ API server ready")
    return app


def main():
    """Run the development server."""
    configure_logging()

    print("=" * 60)
    print("Clinic EHR – REST API Server")
    print("=" * 60)

    app = create_app()
    atexit.register(app.extensions["audit_recorder"].shutdown)

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "3001"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] CORS origin: {FRONTEND_URL}")
    print(f"[server] Rate limit: {RATE_LIMIT}")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - POST http://{host}:{port}/api/auth/logout")
    print(f"  - GET  http://{host}:{port}/api/auth/me")
    print(f"  - POST http://{host}:{port}/api/patients")
    print(f"  - GET  http://{host}:{port}/api/patients")
    print(f"  - GET  http://{host}:{port}/api/patients/<id>")
    print(f"  - GET  http://{host}:{port}/api/patients/<id>/records")
    print(f"  - POST http://{host}:{port}/api/encounters")
    print(f"  - POST http://{host}:{port}/api/prescriptions")
    print(f"  - GET  http://{host}:{port}/api/audit-logs")
    print(f"  - GET  http://{host}:{port}/api/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
