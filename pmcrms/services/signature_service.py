"""
Digital Signature Coordinator — two-step HSM signing.

    1. generate_signature_otp   HSM sends an OTP to the officer's key holder;
                                a DIGITAL_SIGNATURE challenge row is stored
                                (the OTP value itself never is).
    2. apply_signature          the pending document is signed with that OTP;
                                on success the application advances one step
                                along the signature chain.

A failed signing leaves the stage untouched and expires the challenge, so
the officer must request a fresh OTP. A stale OTP is never retried.
"""

import base64
import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from pmcrms.core.exceptions import (
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from pmcrms.integrations.hsm_gateway import HSMError, HSMGateway, SignRequest
from pmcrms.models import db
from pmcrms.models.application import Application, OfficerAssignment
from pmcrms.models.audit import write_audit
from pmcrms.models.auth import User
from pmcrms.models.enums import ApplicationStage, OtpPurpose
from pmcrms.models.otp import HSM_OTP_PLACEHOLDER, OtpVerification
from pmcrms.services import notification_service
from pmcrms.services.application_service import issue_certificate
from pmcrms.services.auth_service import get_officer_for_user
from pmcrms.services.document_service import render_recommended_form
from pmcrms.services.file_service import FileService
from pmcrms.services.roles import RoleLevel, classify_role
from pmcrms.services.stage_authorization import authorize_mutation
from pmcrms.services.stage_transitions import (
    Actor,
    Trigger,
    apply_transition,
    next_stage_after_signature,
    validate_transition,
)
from pmcrms.utils.helpers import utcnow

logger = logging.getLogger(__name__)

SIGNATURE_OTP_VALIDITY = timedelta(minutes=10)

# Signature box on the recommendation form, "llx,lly,urx,ury"
SIGNATURE_COORDINATES = {
    1: "117,383,236,324",
    2: "300,383,419,324",
    3: "117,300,236,241",
    4: "300,300,419,241",
}

_POSITION_BY_LEVEL = {
    RoleLevel.JUNIOR: 1,
    RoleLevel.ASSISTANT: 2,
    RoleLevel.EXECUTIVE: 3,
    RoleLevel.CITY_ENGINEER: 4,
}


def signature_coordinates(role: str | None) -> str:
    """Box for the officer's level; levels without a box sign in position 1."""
    position = _POSITION_BY_LEVEL.get(classify_role(role).level, 1)
    return SIGNATURE_COORDINATES[position]


def _gateway(gateway: HSMGateway | None) -> HSMGateway:
    return gateway or HSMGateway.from_config(current_app.config)


def _officer_context(officer_user_id: int):
    user = db.session.get(User, officer_user_id) if officer_user_id is not None else None
    if user is None:
        raise UnauthorizedError("User not found", authenticated=False)
    officer = get_officer_for_user(user.id)
    if not officer.key_label:
        raise ConfigurationError(f"Officer {officer.id} has no HSM key label configured")
    return user, officer


def _active_challenges(application_id: str, officer_id: int):
    return (
        OtpVerification.query
        .filter_by(application_id=application_id, officer_id=officer_id,
                   purpose=OtpPurpose.DIGITAL_SIGNATURE.value, is_used=False)
        .order_by(OtpVerification.id.desc())
    )


# ═════════════════════════════════════════════════════════════════════════════
# Step 1: OTP
# ═════════════════════════════════════════════════════════════════════════════

def generate_signature_otp(application_id: str, officer_user_id: int, *,
                           gateway: HSMGateway | None = None,
                           now: datetime | None = None) -> str:
    """Ask the HSM for a signing OTP. Returns the HSM's response body."""
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    user, officer = _officer_context(officer_user_id)
    authorize_mutation(user.role, application.current_stage, application.position_type)

    try:
        payload = _gateway(gateway).generate_otp(application.id, officer.key_label)
    except HSMError as exc:
        raise ExternalServiceError("HSM", f"Could not generate signing OTP: {exc}") from exc

    now = now or utcnow()
    # A new OTP supersedes any earlier unused one
    for previous in _active_challenges(application.id, officer.id):
        if previous.is_active(now):
            previous.expiry_time = now

    db.session.add(OtpVerification(
        purpose=OtpPurpose.DIGITAL_SIGNATURE.value,
        email=user.email,
        otp=HSM_OTP_PLACEHOLDER,
        application_id=application.id,
        officer_id=officer.id,
        retry_count=1,
        otp_generated_at=now,
        expiry_time=now + SIGNATURE_OTP_VALIDITY,
    ))
    write_audit(
        entity_type="application",
        entity_id=application.id,
        action="application.signature_otp",
        actor=user.email,
        actor_user_id=user.id,
        diff={"stage": application.current_stage},
    )
    db.session.commit()
    logger.info("Signature OTP issued for application %s", application.id,
                extra={"application_id": application.id, "officer_id": officer.id,
                       "stage": application.current_stage})
    return payload


# ═════════════════════════════════════════════════════════════════════════════
# Step 2: sign
# ═════════════════════════════════════════════════════════════════════════════

def _pending_document(application: Application, file_service: FileService) -> bytes:
    """Content of the document awaiting signature, rendering it on first use."""
    key = application.recommended_form_path
    if key and file_service.exists(key):
        return file_service.read(key)
    content = render_recommended_form(application)
    application.recommended_form_path = file_service.save(
        f"recommended_form_{application.id}.html", content,
    )
    return content


def apply_signature(application_id: str, otp: str, officer_user_id: int, *,
                    gateway: HSMGateway | None = None,
                    file_service: FileService | None = None,
                    now: datetime | None = None) -> Application:
    """Sign the pending document with *otp* and advance along the signature chain."""
    if not otp or not str(otp).strip():
        raise ValidationError("otp is required")
    now = now or utcnow()
    file_service = file_service or FileService.from_app()

    try:
        application = (
            db.session.query(Application)
            .filter(Application.id == application_id)
            .with_for_update()
            .first()
        )
        if application is None:
            raise NotFoundError("Application", application_id)
        user, officer = _officer_context(officer_user_id)

        target = next_stage_after_signature(application.current_stage)
        if target is None:
            raise InvalidTransitionError(application.current_stage, "signature",
                                         Trigger.SIGNATURE_COMPLETION.value)
        transition = validate_transition(application.current_stage, target,
                                         Trigger.SIGNATURE_COMPLETION)
        transition.authorize(Actor(user.id, user.role), application)

        challenge = next(
            (c for c in _active_challenges(application.id, officer.id) if c.is_active(now)),
            None,
        )
        if challenge is None:
            raise ValidationError("No active signature OTP; generate a new one")

        document = _pending_document(application, file_service)
        request = SignRequest(
            transaction_id=application.id,
            key_label=officer.key_label,
            document_base64=base64.b64encode(document).decode("ascii"),
            coordinates=signature_coordinates(user.role),
            otp=str(otp).strip(),
        )
        try:
            result = _gateway(gateway).sign_pdf(request)
            detail = result.detail
        except HSMError as exc:
            result, detail = None, str(exc)

        if result is None or not result.ok:
            challenge.expiry_time = now
            write_audit(
                entity_type="application",
                entity_id=application.id,
                action="application.signature_failed",
                actor=user.email,
                actor_user_id=user.id,
                diff={"stage": application.current_stage, "detail": detail},
            )
            db.session.commit()
            logger.warning("Signing failed for application %s: %s", application.id, detail,
                           extra={"application_id": application.id, "officer_id": officer.id})
            raise ExternalServiceError("HSM", "Digital signing failed; request a new OTP and retry")

        old_stage = application.current_stage
        application.recommended_form_path = file_service.save(
            f"{application.id}_signed.html", result.signed_document,
        )
        apply_transition(application, transition)
        application.is_digitally_signed = True
        application.signed_by = user.id
        application.digital_signature_date = now
        if transition.target is ApplicationStage.APPROVED:
            application.approval_date = now

        challenge.is_used = True
        challenge.used_at = now
        challenge.is_verified = True
        challenge.verified_at = now

        db.session.add(OfficerAssignment(
            application=application,
            officer_id=officer.id,
            stage=old_stage,
            to_stage=application.current_stage,
            is_digitally_signed=True,
            assigned_date=now,
            completed_date=now,
        ))
        write_audit(
            entity_type="application",
            entity_id=application.id,
            action="application.sign",
            actor=user.email,
            actor_user_id=user.id,
            diff={"current_stage": [old_stage, application.current_stage]},
        )
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError(
            "Application", "version", application_id,
            message="Application was modified by another officer; reload and retry",
        ) from exc

    new_stage = application.current_stage
    logger.info("Application %s signed by officer %s: %s → %s",
                application.id, officer.id, old_stage, new_stage,
                extra={"application_id": application.id, "officer_id": officer.id,
                       "stage": new_stage})

    if transition.target is ApplicationStage.APPROVED:
        issue_certificate(application)

    notification_service.dispatch(notification_service.notify_next_officers, application.id, new_stage)
    notification_service.dispatch(
        notification_service.notify_stage_change,
        application.id, old_stage, new_stage, user.role, None,
    )
    return application
