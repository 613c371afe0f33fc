"""
Flask route handlers for the REST API.
"""

import sys
import traceback

from flask import jsonify, request
from sqlalchemy import text

from medqr import access, accounts
from medqr.config import AUDIT_ACTION_SCAN, AUDIT_ACTION_VIEW, TOKEN_EXPIRY_HOURS
from medqr.errors import AccessDenied, MedQRError, ValidationError
from medqr.qr import decode_access_token, generate_access_token, parse_scan_payload
from medqr.api.auth import generate_token, token_required

STATUS_BY_CODE = {
    "unauthenticated": 401,
    "forbidden": 403,
    "admin_exists": 403,
    "staff_not_approved": 403,
    "invalid_target": 404,
    "not_found": 404,
    "validation_error": 400,
    "conflict": 409,
    "store_unavailable": 503,
}


def _json_body():
    if not request.is_json:
        raise ValidationError("Content-Type must be application/json")
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def register_routes(app, engine):
    """Register all API routes on the Flask *app*."""

    def auth_response(identity, status=200):
        token = generate_token(identity, app.config["JWT_SECRET_KEY"])
        return jsonify({
            "success": True,
            "token": token,
            "user": identity.to_dict(),
            "expiresInHours": TOKEN_EXPIRY_HOURS,
        }), status

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "MedQR Emergency Medical Information API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth",
                "medical": "/api/medical",
                "staff_access": "/api/staffAccess",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        healthy = True
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            print(f"[WARN] Health check failed: {e}", file=sys.stderr)
            healthy = False
        return jsonify({
            "status": "healthy" if healthy else "unhealthy",
            "checks": {"database": healthy},
        }), 200 if healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/register", methods=["POST"])
    def register():
        identity = accounts.register(engine, _json_body())
        return auth_response(identity, 201)

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = _json_body()
        identity = accounts.authenticate(engine, data.get("email"), data.get("password"))
        print(f"[auth] Login successful for {identity.id} (role={identity.role.value})")
        return auth_response(identity)

    @app.route("/api/auth/me", methods=["GET"])
    @token_required
    def me():
        return jsonify(request.identity.to_dict()), 200

    @app.route("/api/auth/unverified-staff", methods=["GET"])
    @token_required
    def unverified_staff():
        staff = access.list_staff(engine, request.identity, verified=False)
        return jsonify([s.to_dict() for s in staff]), 200

    @app.route("/api/auth/all-staff", methods=["GET"])
    @token_required
    def all_staff():
        staff = access.list_staff(engine, request.identity)
        return jsonify([s.to_dict() for s in staff]), 200

    @app.route("/api/auth/verify-staff/<user_id>", methods=["POST"])
    @token_required
    def verify_staff(user_id):
        user = access.set_staff_verification(engine, request.identity, user_id, True)
        return jsonify({"success": True, "message": "Staff member verified successfully",
                        "user": user.to_dict()}), 200

    @app.route("/api/auth/revoke-staff/<user_id>", methods=["POST"])
    @token_required
    def revoke_staff(user_id):
        user = access.set_staff_verification(engine, request.identity, user_id, False)
        return jsonify({"success": True, "message": "Staff verification revoked successfully",
                        "user": user.to_dict()}), 200

    # ── Medical records ──────────────────────────────────────────────

    @app.route("/api/medical/patient/me", methods=["GET"])
    @token_required
    def own_record():
        data = access.get_own_record(engine, request.identity)
        if data.get("_id"):
            data["accessToken"] = generate_access_token(
                request.identity.id, app.config["JWT_SECRET_KEY"])
        return jsonify(data), 200

    @app.route("/api/medical", methods=["POST"])
    @token_required
    def save_record():
        record = access.upsert_record(engine, request.identity, _json_body())
        return jsonify({"success": True, "message": "Medical information saved successfully",
                        "data": record.to_dict()}), 200

    @app.route("/api/medical", methods=["DELETE"])
    @token_required
    def delete_record():
        access.delete_own_record(engine, request.identity)
        return jsonify({"success": True,
                        "message": "Medical information deleted successfully"}), 200

    @app.route("/api/medical/access-log", methods=["GET"])
    @token_required
    def own_access_log():
        entries = access.get_own_access_log(engine, request.identity)
        return jsonify({"success": True, "data": [e.to_dict() for e in entries]}), 200

    @app.route("/api/medical/scan", methods=["POST"])
    @token_required
    def scan():
        data = _json_body()
        patient_id = parse_scan_payload(data.get("patientId") or data.get("data"))
        record = access.scan_by_staff(engine, request.identity, patient_id, AUDIT_ACTION_SCAN)
        return jsonify({"success": True, "data": record}), 200

    @app.route("/api/medical/patient/<patient_id>", methods=["GET"])
    @token_required
    def patient_record(patient_id):
        record = access.scan_by_staff(engine, request.identity, patient_id, AUDIT_ACTION_VIEW)
        return jsonify({"success": True, "data": record}), 200

    @app.route("/api/medical/access/<token>", methods=["GET"])
    @token_required
    def access_by_token(token):
        patient_id = decode_access_token(token, app.config["JWT_SECRET_KEY"])
        record = access.scan_by_staff(engine, request.identity, patient_id, AUDIT_ACTION_VIEW)
        return jsonify({"success": True, "data": record}), 200

    @app.route("/api/medical/staff-status", methods=["GET"])
    @token_required
    def staff_status():
        status = access.staff_status(engine, request.identity)
        return jsonify({"success": True, "data": status}), 200

    # ── Staff access requests ────────────────────────────────────────

    @app.route("/api/staffAccess/request", methods=["POST"])
    @token_required
    def request_access():
        data = _json_body()
        grant = access.request_staff_access(
            engine, request.identity,
            role=data.get("role"),
            specialization=data.get("specialization"),
            department=data.get("department"),
        )
        return jsonify({"success": True, "message": "Access request submitted successfully",
                        "data": grant.to_dict()}), 200

    @app.route("/api/staffAccess/requests", methods=["GET"])
    @token_required
    def access_requests():
        grants = access.list_grants(engine, request.identity)
        return jsonify({"success": True, "data": [g.to_dict() for g in grants]}), 200

    @app.route("/api/staffAccess/approve/<staff_id>", methods=["POST"])
    @token_required
    def approve_access(staff_id):
        grant = access.decide_grant(engine, request.identity, staff_id, approve=True)
        return jsonify({"success": True, "message": "Staff access approved successfully",
                        "data": grant.to_dict()}), 200

    @app.route("/api/staffAccess/reject/<staff_id>", methods=["POST"])
    @token_required
    def reject_access(staff_id):
        grant = access.decide_grant(engine, request.identity, staff_id, approve=False)
        return jsonify({"success": True, "message": "Staff access rejected successfully",
                        "data": grant.to_dict()}), 200

    @app.route("/api/staffAccess/status", methods=["GET"])
    @token_required
    def own_access_status():
        grant = access.get_own_grant(engine, request.identity)
        return jsonify({"success": True, "data": grant.to_dict()}), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(MedQRError)
    def domain_error(e):
        body = {"success": False, "error": e.code, "message": e.message}
        if isinstance(e, AccessDenied) and e.detail:
            body["details"] = {"reason": e.detail}
        return jsonify(body), STATUS_BY_CODE.get(e.code, 500)

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        print(f"[ERROR] Unhandled error: {e}", file=sys.stderr)
        traceback.print_exc()
        return jsonify({"success": False, "error": "Internal server error",
                        "message": "Something went wrong"}), 500
