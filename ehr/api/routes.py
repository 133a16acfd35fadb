"""
Flask route handlers for the REST API.
"""

import logging
from datetime import datetime, timezone

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from ehr import records
from ehr.api.auth import (
    clear_token_cookie,
    issue_token,
    require_role,
    set_token_cookie,
    token_required,
)
from ehr.api.schemas import (
    EncounterCreate,
    LoginRequest,
    PatientCreate,
    PrescriptionCreate,
    validate_body,
)
from ehr.database import store_errors
from ehr.errors import ApiError, InvalidCredentials, NotFound
from ehr.rbac import ALL_STAFF, AUDITORS, CLINICIANS, PRESCRIBERS, authenticate

logger = logging.getLogger(__name__)


def register_routes(app, engine, recorder):
    """Register all API routes on the Flask *app*."""

    audited = recorder.wrap

    # ── Health ───────────────────────────────────────────────────────

    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        body = validate_body(LoginRequest, request.get_json(silent=True))

        try:
            with store_errors("login lookup"):
                identity = authenticate(engine, body.username, body.password)
        except ValueError as e:
            logger.info("[auth] Login refused for %r: %s", body.username, e)
            raise InvalidCredentials()

        token = issue_token(identity, current_app.config["JWT_SECRET_KEY"])
        logger.info("[auth] %s logged in as %s", identity.username, identity.role)

        response = jsonify({"message": "Login successful", "user": identity.to_dict()})
        return set_token_cookie(response, token)

    @app.route("/api/auth/logout", methods=["POST"])
    def logout():
        response = jsonify({"message": "Logged out successfully"})
        return clear_token_cookie(response)

    @app.route("/api/auth/me", methods=["GET"])
    @token_required
    def me():
        return jsonify({"user": request.identity.to_dict()})

    # ── Patients ─────────────────────────────────────────────────────

    @app.route("/api/patients", methods=["POST"])
    @token_required
    @require_role(ALL_STAFF)
    @audited("CREATE", "patient")
    def create_patient():
        body = validate_body(PatientCreate, request.get_json(silent=True))
        with store_errors("create patient"):
            patient_id = records.create_patient(
                engine,
                full_name=body.full_name,
                date_of_birth=body.date_of_birth,
                gender=body.gender,
                phone=body.phone,
            )
        return jsonify({"id": patient_id, "message": "Patient created successfully"}), 201

    @app.route("/api/patients", methods=["GET"])
    @token_required
    @require_role(ALL_STAFF)
    def list_patients():
        search = request.args.get("search", "").strip() or None
        with store_errors("list patients"):
            rows = records.list_patients(engine, search)
        return jsonify(rows)

    @app.route("/api/patients/<int:patient_id>", methods=["GET"])
    @token_required
    @require_role(ALL_STAFF)
    @audited("READ", "patient")
    def get_patient(patient_id):
        with store_errors("get patient"):
            patient = records.get_patient(engine, patient_id)
        if patient is None:
            raise NotFound("Patient not found")
        return jsonify(patient)

    @app.route("/api/patients/<int:patient_id>/records", methods=["GET"])
    @token_required
    @require_role(ALL_STAFF)
    @audited("READ", "patient_records")
    def get_patient_records(patient_id):
        with store_errors("get patient records"):
            result = records.get_patient_records(engine, patient_id)
        if result is None:
            raise NotFound("Patient not found")
        return jsonify(result)

    # ── Encounters / prescriptions ───────────────────────────────────

    @app.route("/api/encounters", methods=["POST"])
    @token_required
    @require_role(CLINICIANS)
    @audited("CREATE", "encounter")
    def create_encounter():
        body = validate_body(EncounterCreate, request.get_json(silent=True))
        with store_errors("create encounter"):
            if records.get_patient(engine, body.patient_id) is None:
                raise NotFound("Patient not found")
            encounter_id = records.create_encounter(
                engine,
                patient_id=body.patient_id,
                clinician_role=body.clinician_role,
                notes=body.notes,
            )
        return jsonify({"id": encounter_id, "message": "Encounter created successfully"}), 201

    @app.route("/api/prescriptions", methods=["POST"])
    @token_required
    @require_role(PRESCRIBERS)
    @audited("CREATE", "prescription")
    def create_prescription():
        body = validate_body(PrescriptionCreate, request.get_json(silent=True))
        with store_errors("create prescription"):
            if records.get_encounter(engine, body.encounter_id) is None:
                raise NotFound("Encounter not found")
            prescription_id = records.create_prescription(
                engine,
                encounter_id=body.encounter_id,
                drug_name=body.drug_name,
                dosage=body.dosage,
                frequency=body.frequency,
                duration=body.duration,
                created_by=request.identity.id,
            )
        return jsonify({
            "id": prescription_id,
            "message": "Prescription created successfully",
        }), 201

    # ── Audit ────────────────────────────────────────────────────────

    @app.route("/api/audit-logs", methods=["GET"])
    @token_required
    @require_role(AUDITORS)
    def list_audit_logs():
        with store_errors("list audit logs"):
            rows = records.list_audit_logs(engine)
        return jsonify(rows)

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(ApiError)
    def api_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(Exception)
    def internal_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        logger.exception("[error] Unhandled exception on %s %s", request.method, request.path)
        return jsonify({"error": "Something went wrong!"}), 500
