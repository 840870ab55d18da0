"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from hivcare.api.auth import register_auth_routes
from hivcare.api.clinical_routes import register_clinical_routes
from hivcare.api.job_routes import register_job_routes
from hivcare.api.routes import register_routes
from hivcare.audit import AuditLogger
from hivcare.config import API_HOST, API_PORT, CRON_SECRET, OTP_DELIVERY_MODE, SESSION_EXPIRY_DAYS
from hivcare.database import init_engine, make_session_factory
from hivcare.logging_config import configure_logging
from hivcare.notifications import OtpNotifier


def create_app(engine=None, notifier=None):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    CORS(app, supports_credentials=True)

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if engine is None:
            print("[init] Initializing database connection...")
            engine = init_engine()
        session_factory = make_session_factory(engine)
        notifier = notifier or OtpNotifier()
        audit = AuditLogger(session_factory)
    except Exception as e:
        print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)

    app.config["SESSION_FACTORY"] = session_factory

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine)
    register_auth_routes(app, session_factory, notifier, audit)
    register_clinical_routes(app, session_factory, audit)
    register_job_routes(app, session_factory, audit)

    return app


def main(host: str = API_HOST, port: int = API_PORT):
    """Run the development server."""
    configure_logging()

    print("=" * 60)
    print("HIV Care Portal – REST API Server")
    print("=" * 60)

    app = create_app()
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] OTP delivery: {OTP_DELIVERY_MODE}")
    print(f"[server] Session expiry: {SESSION_EXPIRY_DAYS} days")
    if not CRON_SECRET:
        print("[server] WARNING: CRON_SECRET not set, job endpoints will reject every call")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/otp/request")
    print(f"  - POST http://{host}:{port}/api/auth/otp/verify")
    print(f"  - GET  http://{host}:{port}/api/clients")
    print(f"  - GET  http://{host}:{port}/api/tasks")
    print(f"  - GET  http://{host}:{port}/api/dashboard")
    print(f"  - POST http://{host}:{port}/api/jobs/generate-tasks")
    print(f"  - POST http://{host}:{port}/api/jobs/refresh-summaries")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
