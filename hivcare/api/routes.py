"""
Service-level Flask routes (index, health) and the JSON error handlers.
"""

import logging
import time

from flask import jsonify
from sqlalchemy import text as sa_text

from hivcare.errors import PortalError, RateLimitExceeded, ValidationFailed

logger = logging.getLogger(__name__)


def register_routes(app, engine):
    """Register the info/health routes and error handlers on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "HIV Care Portal API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "otp_request": "/api/auth/otp/request",
                "otp_verify": "/api/auth/otp/verify",
                "me": "/api/auth/me",
                "logout": "/api/auth/logout",
                "clients": "/api/clients",
                "encounters": "/api/encounters",
                "lab_panels": "/api/labs/panels",
                "lab_results": "/api/labs/results",
                "prescriptions": "/api/prescriptions",
                "dispenses": "/api/dispenses",
                "tasks": "/api/tasks",
                "dashboard": "/api/dashboard",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": False}
        try:
            with engine.connect() as conn:
                conn.execute(sa_text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            logger.error("Health check failed: %s", e)

        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }), 200 if all_healthy else 503

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(RateLimitExceeded)
    def rate_limited(e):
        response = jsonify({"error": e.message, "reset_time": int(e.reset_time * 1000)})
        response.headers["Retry-After"] = str(max(1, int(e.reset_time - time.time())))
        return response, e.status_code

    @app.errorhandler(PortalError)
    def portal_error(e):
        body = {"error": e.message}
        if isinstance(e, ValidationFailed) and e.details:
            body["details"] = e.details
        return jsonify(body), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"error": "Internal server error", "message": str(e)}), 500