"""
Application Blueprint — licence application workflow endpoints.

Endpoints:
  POST /api/v1/applications                                   — submit (applicant)
  GET  /api/v1/applications                                   — list visible applications
  GET  /api/v1/applications/<id>                              — detail
  POST /api/v1/applications/<id>/stage                        — officer decision
  POST /api/v1/applications/<id>/appointment                  — schedule verification (Junior)
  POST /api/v1/applications/<id>/signature/otp                — request HSM signing OTP
  POST /api/v1/applications/<id>/signature                    — sign with OTP
  GET  /api/v1/applications/<id>/documents/<doc_id>           — download uploaded document
  GET  /api/v1/applications/<id>/files/<kind>                 — recommended-form | certificate | challan

Service layer owns all business logic and commits.
"""

import logging
from io import BytesIO

from flask import Blueprint, jsonify, request, send_file

from pmcrms.blueprints import json_body, register_error_handlers
from pmcrms.middleware.jwt_auth import require_auth
from pmcrms.services import application_service, signature_service
from pmcrms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

application_bp = Blueprint("application_bp", __name__, url_prefix="/api/v1/applications")
register_error_handlers(application_bp)

_LIST_FILTERS = ("applicant_name", "status", "from_date", "to_date", "page_number", "page_size")


def _download(file_name: str, content: bytes):
    return send_file(BytesIO(content), download_name=file_name, as_attachment=True)


# ═══════════════════════════════════════════════════════════════
# Submit / read
# ═══════════════════════════════════════════════════════════════
@application_bp.route("", methods=["POST"])
def create_application():
    """
    Submit a new application for the authenticated applicant.

    Body: applicant fields, permanent_address / current_address objects,
          qualifications[], experiences[], documents[{document_type, file_name, content_base64}]
    """
    user_id = require_auth()
    application = application_service.create_application(json_body(), user_id)
    return jsonify(application.to_dict(include_children=True)), 201


@application_bp.route("", methods=["GET"])
def list_applications():
    user_id = require_auth()
    filters = {k: request.args.get(k) for k in _LIST_FILTERS if request.args.get(k)}
    return jsonify(application_service.list_applications(user_id, filters)), 200


@application_bp.route("/<application_id>", methods=["GET"])
def get_application(application_id):
    user_id = require_auth()
    application = application_service.get_application(application_id, user_id)
    return jsonify(application.to_dict(include_children=True)), 200


# ═══════════════════════════════════════════════════════════════
# Officer actions
# ═══════════════════════════════════════════════════════════════
@application_bp.route("/<application_id>/stage", methods=["POST"])
def update_stage(application_id):
    """
    Officer decision.

    Body: { "new_stage": "ASSISTANT_ENGINEER_PENDING", "comments": "..." }
    """
    user_id = require_auth()
    data = json_body()
    new_stage = (data.get("new_stage") or "").strip()
    if not new_stage:
        return api_error(E.VALIDATION_REQUIRED, "new_stage is required")

    application = application_service.update_application_stage(
        application_id, new_stage, user_id, data.get("comments"),
    )
    return jsonify(application.to_dict()), 200


@application_bp.route("/<application_id>/appointment", methods=["POST"])
def schedule_appointment(application_id):
    """
    Body: { "appointment_date": ISO datetime, "place": "...", "room_number": "...",
            "contact_person": "...", "comments": "..." }
    """
    user_id = require_auth()
    appointment = application_service.schedule_appointment(application_id, json_body(), user_id)
    return jsonify(appointment.to_dict()), 201


@application_bp.route("/<application_id>/signature/otp", methods=["POST"])
def generate_otp(application_id):
    user_id = require_auth()
    payload = signature_service.generate_signature_otp(application_id, user_id)
    return jsonify({"message": "OTP sent to the registered signer", "hsm_response": payload}), 200


@application_bp.route("/<application_id>/signature", methods=["POST"])
def apply_signature(application_id):
    """Body: { "otp": "123456" }"""
    user_id = require_auth()
    otp = str(json_body().get("otp") or "").strip()
    if not otp:
        return api_error(E.VALIDATION_REQUIRED, "otp is required")
    application = signature_service.apply_signature(application_id, otp, user_id)
    return jsonify(application.to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# Files
# ═══════════════════════════════════════════════════════════════
@application_bp.route("/<application_id>/documents/<int:document_id>", methods=["GET"])
def download_document(application_id, document_id):
    user_id = require_auth()
    file_name, content = application_service.download_document(application_id, document_id, user_id)
    return _download(file_name, content)


@application_bp.route("/<application_id>/files/<kind>", methods=["GET"])
def download_output(application_id, kind):
    user_id = require_auth()
    file_name, content = application_service.download_output(application_id, kind, user_id)
    return _download(file_name, content)
