"""
PMC Licensing Workflow
Blueprint registry and shared error handling.

Every API blueprint calls ``register_error_handlers(bp)`` so that service
exceptions map to the same status codes everywhere:

    NotFoundError            404
    UnauthorizedError        403 (401 when no identity was presented)
    ValidationError          400 (InvalidTransitionError included)
    ConflictError            409
    OtpThrottledError        429
    ExternalServiceError     502
    ConfigurationError       500
    anything else            500
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from pmcrms.core.exceptions import (
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    OtpThrottledError,
    UnauthorizedError,
    ValidationError,
)
from pmcrms.models import db
from pmcrms.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def json_body() -> dict:
    """Request JSON object, or an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(bp):
    """Attach the workflow exception → HTTP mapping to *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error: UnauthorizedError):
        if not error.authenticated:
            return api_error(E.UNAUTHENTICATED, str(error))
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error: InvalidTransitionError):
        return api_error(E.INVALID_TRANSITION, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(OtpThrottledError)
    def _handle_throttled(error: OtpThrottledError):
        return api_error(E.THROTTLED, str(error))

    @bp.errorhandler(ExternalServiceError)
    def _handle_external(error: ExternalServiceError):
        logger.warning("External service %s failed on %s: %s", error.service, request.endpoint, error)
        return api_error(E.EXTERNAL_SERVICE, str(error), details={"retryable": error.retryable})

    @bp.errorhandler(ConfigurationError)
    def _handle_configuration(error: ConfigurationError):
        logger.error("Configuration error on %s: %s", request.endpoint, error)
        return api_error(E.CONFIGURATION, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
