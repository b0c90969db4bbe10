"""
Auth Blueprint — JWT authentication and officer onboarding endpoints.

Endpoints:
  POST /api/v1/auth/register      — applicant sign-up → JWT
  POST /api/v1/auth/login         — email + password → JWT
  POST /api/v1/auth/otp/request   — send a login OTP (throttled)
  POST /api/v1/auth/otp/verify    — email + OTP → JWT
  POST /api/v1/auth/invite        — Admin invites an officer
  POST /api/v1/auth/set-password  — set password with the invitation token
  GET  /api/v1/auth/me            — current user profile
"""

from flask import Blueprint, jsonify

from pmcrms.blueprints import json_body, register_error_handlers
from pmcrms.middleware.jwt_auth import require_auth
from pmcrms.models import db
from pmcrms.models.auth import User
from pmcrms.services import auth_service
from pmcrms.services.jwt_service import token_response
from pmcrms.utils.errors import E, api_error

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Body: { "email": "...", "password": "...", "full_name": "...", "phone_number": "..." }
    """
    data = json_body()
    user = auth_service.register_applicant(
        data.get("email"), data.get("password"),
        data.get("full_name"), data.get("phone_number"),
    )
    return jsonify(token_response(user)), 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """Body: { "email": "...", "password": "..." }"""
    data = json_body()
    if not data.get("email") or not data.get("password"):
        return api_error(E.VALIDATION_REQUIRED, "Email and password are required")
    return jsonify(auth_service.login(data["email"], data["password"])), 200


# ═══════════════════════════════════════════════════════════════
# Login OTP
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/otp/request", methods=["POST"])
def request_otp():
    """Body: { "email": "..." }"""
    result = auth_service.request_login_otp(json_body().get("email"))
    return jsonify({"message": "OTP sent", **result}), 200


@auth_bp.route("/otp/verify", methods=["POST"])
def verify_otp():
    """Body: { "email": "...", "otp": "123456" }"""
    data = json_body()
    if not data.get("otp"):
        return api_error(E.VALIDATION_REQUIRED, "otp is required")
    return jsonify(auth_service.verify_login_otp(data.get("email"), data["otp"])), 200


# ═══════════════════════════════════════════════════════════════
# Officer onboarding
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/invite", methods=["POST"])
def invite():
    """Body: { "email": "...", "role": "JuniorArchitect", "full_name": "..." }"""
    admin_id = require_auth()
    data = json_body()
    if not data.get("role"):
        return api_error(E.VALIDATION_REQUIRED, "role is required")
    user = auth_service.invite_officer(
        data.get("email"), data["role"], data.get("full_name"), admin_user_id=admin_id,
    )
    return jsonify(user.to_dict()), 201


@auth_bp.route("/set-password", methods=["POST"])
def set_password():
    """Body: { "email": "...", "password": "...", "token": "<from the invitation>", "key_label": "..." }"""
    data = json_body()
    user = auth_service.set_password(
        data.get("email"), data.get("password"), data.get("key_label"), token=data.get("token"),
    )
    return jsonify(user.to_dict()), 200


@auth_bp.route("/me", methods=["GET"])
def me():
    user = db.session.get(User, require_auth())
    if user is None:
        return api_error(E.UNAUTHENTICATED, "User not found")
    body = user.to_dict()
    body["officer"] = user.officer.to_dict() if user.officer else None
    return jsonify(body), 200
