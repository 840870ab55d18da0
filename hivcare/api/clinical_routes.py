"""
Flask routes for the clinical record: clients, encounters, labs, pharmacy,
tasks and the dashboard.

Every handler runs its service call in one transaction, serialises the
result while the session is open, then writes the audit entry.
"""

from flask import jsonify, request

from hivcare.api.auth import request_info, token_required
from hivcare.api.serializers import (
    client_brief,
    client_detail_to_dict,
    client_to_dict,
    dispense_to_dict,
    encounter_to_dict,
    lab_panel_to_dict,
    lab_result_to_dict,
    prescription_to_dict,
    task_to_dict,
)
from hivcare.constants import Action, Resource, Scope, TaskStatus
from hivcare.database import session_scope
from hivcare.errors import AuthorizationDenied
from hivcare.rbac import granted_scopes
from hivcare.reports import build_dashboard
from hivcare.services import clients as client_service
from hivcare.services import encounters as encounter_service
from hivcare.services import labs as lab_service
from hivcare.services import pharmacy as pharmacy_service
from hivcare.services import tasks as task_service


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _query_filters() -> dict:
    return {key: value for key, value in request.args.items() if value}


def register_clinical_routes(app, session_factory, audit):
    """Register the clinical record routes on the Flask *app*."""

    # ── Clients ──────────────────────────────────────────────────────

    @app.route("/api/clients", methods=["GET"])
    @token_required
    def list_clients():
        session = request.session_data
        with session_scope(session_factory) as db:
            rows = client_service.list_clients(
                db, session,
                search=request.args.get("search"),
                status=request.args.get("status"),
                limit=request.args.get("limit"),
            )
            clients = [client_brief(c) for c in rows]
        audit.log_read(session.user_id, Resource.CLIENTS.value, request=request_info(),
                       filters=_query_filters())
        return jsonify({"success": True, "clients": clients, "total": len(clients)}), 200

    @app.route("/api/clients", methods=["POST"])
    @token_required
    def create_client():
        session = request.session_data
        with session_scope(session_factory) as db:
            client = client_service.create_client(db, session, _json_body())
            created = client_to_dict(client)
        audit.log_create(session.user_id, Resource.CLIENTS.value, created["id"],
                         created, request_info())
        return jsonify({"success": True, "client": created}), 201

    @app.route("/api/clients/<client_id>", methods=["GET"])
    @token_required
    def get_client(client_id):
        session = request.session_data
        with session_scope(session_factory) as db:
            detail = client_detail_to_dict(
                client_service.get_client_detail(db, session, client_id)
            )
        audit.log_read(session.user_id, Resource.CLIENTS.value, client_id, request_info())
        return jsonify({"success": True, "client": detail}), 200

    @app.route("/api/clients/<client_id>", methods=["PATCH"])
    @token_required
    def update_client(client_id):
        session = request.session_data
        with session_scope(session_factory) as db:
            before = client_to_dict(
                client_service.get_client(db, session, client_id, Action.UPDATE)
            )
            after = client_to_dict(
                client_service.update_client(db, session, client_id, _json_body())
            )
        audit.log_update(session.user_id, Resource.CLIENTS.value, client_id,
                         before, after, request_info())
        return jsonify({"success": True, "client": after}), 200

    # ── Encounters ───────────────────────────────────────────────────

    @app.route("/api/encounters", methods=["POST"])
    @token_required
    def create_encounter():
        session = request.session_data
        with session_scope(session_factory) as db:
            encounter = encounter_to_dict(
                encounter_service.create_encounter(db, session, _json_body())
            )
        audit.log_create(session.user_id, Resource.ENCOUNTERS.value, encounter["id"],
                         encounter, request_info())
        return jsonify({"success": True, "encounter": encounter}), 201

    # ── Labs ─────────────────────────────────────────────────────────

    @app.route("/api/labs/panels", methods=["POST"])
    @token_required
    def create_lab_panel():
        session = request.session_data
        with session_scope(session_factory) as db:
            panel = lab_panel_to_dict(
                lab_service.create_lab_panel(db, session, _json_body()),
                include_results=False,
            )
        audit.log_create(session.user_id, Resource.LAB_PANELS.value, panel["id"],
                         panel, request_info())
        return jsonify({"success": True, "panel": panel}), 201

    @app.route("/api/labs/results", methods=["POST"])
    @token_required
    def create_lab_results():
        session = request.session_data
        data = _json_body()
        with session_scope(session_factory) as db:
            if isinstance(data.get("results"), list):
                results = [lab_result_to_dict(r)
                           for r in lab_service.add_lab_results(db, session, data)]
            else:
                results = [lab_result_to_dict(lab_service.add_lab_result(db, session, data))]
        for result in results:
            audit.log_create(session.user_id, Resource.LAB_RESULTS.value, result["id"],
                             result, request_info())
        if isinstance(data.get("results"), list):
            return jsonify({"success": True, "results": results, "count": len(results)}), 201
        return jsonify({"success": True, "result": results[0]}), 201

    # ── Pharmacy ─────────────────────────────────────────────────────

    @app.route("/api/prescriptions", methods=["GET"])
    @token_required
    def list_prescriptions():
        session = request.session_data
        with session_scope(session_factory) as db:
            rows = pharmacy_service.list_prescriptions(
                db, session,
                client_id=request.args.get("client_id"),
                category=request.args.get("category"),
                is_active=request.args.get("is_active"),
                limit=request.args.get("limit"),
            )
            prescriptions = [prescription_to_dict(p) for p in rows]
        audit.log_read(session.user_id, Resource.PRESCRIPTIONS.value, request=request_info(),
                       filters=_query_filters())
        return jsonify({
            "success": True,
            "prescriptions": prescriptions,
            "total": len(prescriptions),
        }), 200

    @app.route("/api/prescriptions", methods=["POST"])
    @token_required
    def create_prescription():
        session = request.session_data
        with session_scope(session_factory) as db:
            prescription = prescription_to_dict(
                pharmacy_service.create_prescription(db, session, _json_body())
            )
        audit.log_create(session.user_id, Resource.PRESCRIPTIONS.value, prescription["id"],
                         prescription, request_info())
        return jsonify({"success": True, "prescription": prescription}), 201

    @app.route("/api/dispenses", methods=["POST"])
    @token_required
    def create_dispense():
        session = request.session_data
        with session_scope(session_factory) as db:
            dispense = dispense_to_dict(
                pharmacy_service.create_dispense(db, session, _json_body())
            )
        audit.log_create(session.user_id, Resource.DISPENSES.value, dispense["id"],
                         dispense, request_info())
        return jsonify({"success": True, "dispense": dispense}), 201

    # ── Tasks ────────────────────────────────────────────────────────

    @app.route("/api/tasks", methods=["GET"])
    @token_required
    def list_tasks():
        session = request.session_data
        with session_scope(session_factory) as db:
            rows, summary = task_service.list_tasks(
                db, session,
                status=request.args.get("status"),
                task_type=request.args.get("type"),
                client_id=request.args.get("client_id"),
                assigned_role=request.args.get("assigned_role"),
                overdue=request.args.get("overdue"),
                limit=request.args.get("limit"),
            )
            tasks = [task_to_dict(t) for t in rows]
        audit.log_read(session.user_id, Resource.TASKS.value, request=request_info(),
                       filters=_query_filters())
        return jsonify({"success": True, "tasks": tasks, "summary": summary}), 200

    @app.route("/api/tasks", methods=["POST"])
    @token_required
    def create_task():
        session = request.session_data
        with session_scope(session_factory) as db:
            task = task_to_dict(task_service.create_task(db, session, _json_body()))
        audit.log_create(session.user_id, Resource.TASKS.value, task["id"],
                         task, request_info())
        return jsonify({"success": True, "task": task}), 201

    @app.route("/api/tasks/<task_id>", methods=["PATCH"])
    @token_required
    def update_task(task_id):
        session = request.session_data
        with session_scope(session_factory) as db:
            task = task_service.transition_task(db, session, task_id, _json_body().get("status"))
            after = task_to_dict(task)
        audit.log_update(session.user_id, Resource.TASKS.value, task_id,
                         {"status": TaskStatus.OPEN.value}, {"status": after["status"]}, request_info())
        return jsonify({"success": True, "task": after}), 200

    # ── Dashboard ────────────────────────────────────────────────────

    @app.route("/api/dashboard", methods=["GET"])
    @token_required
    def dashboard():
        session = request.session_data
        scopes = granted_scopes(session, Action.READ, Resource.DASHBOARD)
        if not scopes:
            raise AuthorizationDenied("Insufficient permissions to read dashboard")

        facility_id = None if Scope.ALL in scopes else session.facility_id
        if Scope.ALL not in scopes and not facility_id:
            raise AuthorizationDenied("Dashboard requires a facility assignment")

        with session_scope(session_factory) as db:
            metrics = build_dashboard(db, facility_id)
        audit.log_read(session.user_id, Resource.DASHBOARD.value, request=request_info(),
                       filters={"facility_id": facility_id} if facility_id else None)
        return jsonify({"success": True, "facility_id": facility_id, "dashboard": metrics}), 200
