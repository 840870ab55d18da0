"""
Scheduled job triggers.

A cron service calls these with ``Authorization: Bearer <CRON_SECRET>``.
"""

import hmac
import logging
from functools import wraps

from flask import jsonify, request

from hivcare.config import CRON_SECRET
from hivcare.constants import AuditAction
from hivcare.database import session_scope, utcnow
from hivcare.errors import TransactionFailure
from hivcare.jobs.clinical_summary import run_summary_refresh
from hivcare.jobs.task_generator import run_task_generation
from hivcare.reports import refresh_dashboard_metrics

logger = logging.getLogger(__name__)


def cron_authorized(secret: str) -> bool:
    """True when the request carries the configured cron secret."""
    if not secret:
        return False
    supplied = request.headers.get("Authorization", "")
    return hmac.compare_digest(supplied.encode(), f"Bearer {secret}".encode())


def cron_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not cron_authorized(CRON_SECRET):
            logger.warning("Rejected job trigger for %s", request.path)
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)

    return decorated


def register_job_routes(app, session_factory, audit):
    """Register the batch job endpoints on the Flask *app*."""

    @app.route("/api/jobs/generate-tasks", methods=["POST"])
    @cron_required
    def generate_tasks_job():
        started = utcnow()
        try:
            report = run_task_generation(session_factory)
        except TransactionFailure as e:
            return jsonify({"error": "Failed to generate tasks", "message": e.message}), 500

        audit.log_system_action(AuditAction.CREATE, "tasks", after=report.to_dict())
        return jsonify({
            "success": True,
            "message": f"Generated {report.total} tasks",
            "tasks_created": report.to_dict(),
            "timestamp": started.isoformat(),
        }), 200

    @app.route("/api/jobs/refresh-summaries", methods=["POST"])
    @cron_required
    def refresh_summaries_job():
        started = utcnow()
        try:
            count = run_summary_refresh(session_factory)
        except TransactionFailure as e:
            return jsonify({"error": "Failed to refresh clinical summaries", "message": e.message}), 500

        audit.log_system_action(AuditAction.UPDATE, "clinical_summaries",
                                after={"clients_updated": count})
        return jsonify({
            "success": True,
            "message": f"Refreshed {count} clinical summaries",
            "clients_updated": count,
            "timestamp": started.isoformat(),
        }), 200

    @app.route("/api/jobs/refresh-dashboard", methods=["POST"])
    @cron_required
    def refresh_dashboard_job():
        started = utcnow()
        try:
            with session_scope(session_factory) as db:
                metrics = refresh_dashboard_metrics(db, started)
        except Exception as e:
            logger.exception("Dashboard refresh failed")
            return jsonify({"error": "Failed to refresh dashboard", "message": str(e)}), 500

        logger.info("Dashboard metrics refreshed")
        return jsonify({
            "success": True,
            "message": "Dashboard metrics refreshed",
            "metrics": metrics,
            "timestamp": started.isoformat(),
        }), 200
