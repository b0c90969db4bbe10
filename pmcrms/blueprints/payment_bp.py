"""
Payment Blueprint — licence-fee payment and challan endpoints.

Endpoints:
  POST /api/v1/payments/<application_id>/initiate   — applicant starts payment
  POST /api/v1/payments/callback                    — signed gateway return (form or JSON)
  POST /api/v1/payments/<application_id>/challan    — generate (idempotent)
  GET  /api/v1/payments/<application_id>/challan    — fetch challan details
"""

import logging

from flask import Blueprint, jsonify, request

from pmcrms.blueprints import register_error_handlers
from pmcrms.middleware.jwt_auth import require_auth
from pmcrms.services import challan_service, payment_service

logger = logging.getLogger(__name__)

payment_bp = Blueprint("payment_bp", __name__, url_prefix="/api/v1/payments")
register_error_handlers(payment_bp)


@payment_bp.route("/<application_id>/initiate", methods=["POST"])
def initiate_payment(application_id):
    user_id = require_auth()
    redirect = payment_service.initiate_payment(application_id, user_id)
    return jsonify(redirect.to_dict()), 200


@payment_bp.route("/callback", methods=["POST"])
def payment_callback():
    """Gateway return; authenticated by the callback signature, not a user token."""
    data = request.form.to_dict() or (request.get_json(silent=True) or {})
    callback = payment_service.parse_callback(data)
    txn = payment_service.handle_payment_callback(callback)
    return jsonify(txn.to_dict()), 200


@payment_bp.route("/<application_id>/challan", methods=["POST"])
def generate_challan(application_id):
    user_id = require_auth()
    challan = challan_service.generate_challan(application_id, user_id=user_id)
    return jsonify(challan.to_dict()), 200


@payment_bp.route("/<application_id>/challan", methods=["GET"])
def get_challan(application_id):
    user_id = require_auth()
    return jsonify(challan_service.get_challan(application_id, user_id).to_dict()), 200
