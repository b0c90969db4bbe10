"""
Notification Service — applicant and officer notifications.

Every notification runs AFTER the workflow commit through ``dispatch``:
failures are caught and logged, never propagated, so a broken mail server
can not undo or fail a stage transition. With NOTIFICATIONS_ASYNC the
call runs on a daemon thread inside its own app context (and therefore
its own DB session).

Usage:
    from pmcrms.services import notification_service as notify

    notify.dispatch(notify.notify_stage_change, app.id, old, new, officer.role)
"""

import html
import logging
import threading
from collections import namedtuple

from flask import current_app

from pmcrms.models import db
from pmcrms.models.application import Application
from pmcrms.models.auth import Officer, User
from pmcrms.models.enums import ApplicationStage
from pmcrms.services import roles
from pmcrms.services.email_service import EmailService
from pmcrms.services.stage_authorization import CATEGORY_SCOPED_LEVELS, owners_of

logger = logging.getLogger(__name__)

StageInfo = namedtuple("StageInfo", "title message next_steps")

S = ApplicationStage

STAGE_DISPLAY: dict[ApplicationStage, StageInfo] = {
    S.JUNIOR_ENGINEER_PENDING: StageInfo(
        "Junior Engineer Review",
        "Your application is currently being reviewed by our Junior Engineer team.",
        "Please wait for the review to be completed. You may be contacted for document verification.",
    ),
    S.DOCUMENT_VERIFICATION_PENDING: StageInfo(
        "Document Verification",
        "Your application is scheduled for document verification.",
        "Please attend the scheduled appointment with all required documents.",
    ),
    S.ASSISTANT_ENGINEER_PENDING: StageInfo(
        "Assistant Engineer Review",
        "Your application has been forwarded to our Assistant Engineer for technical review.",
        "The technical aspects of your application are being evaluated. This may take 3-5 business days.",
    ),
    S.EXECUTIVE_ENGINEER_PENDING: StageInfo(
        "Executive Engineer Review",
        "Your application is now under review by our Executive Engineer.",
        "The application is undergoing senior-level evaluation. Please allow 5-7 business days.",
    ),
    S.CITY_ENGINEER_PENDING: StageInfo(
        "City Engineer Review",
        "Your application has reached the City Engineer for final technical approval.",
        "This is the final technical review stage. It typically takes 5-10 business days.",
    ),
    S.PAYMENT_PENDING: StageInfo(
        "Payment Required",
        "Your application has been approved and payment is now required.",
        "Please pay the licence fee from your account to proceed with certificate generation.",
    ),
    S.CLERK_PENDING: StageInfo(
        "Administrative Processing",
        "Your payment has been received and the application is being processed administratively.",
        "The administrative formalities are being completed. Your certificate will be prepared soon.",
    ),
    S.EXECUTIVE_ENGINEER_SIGN_PENDING: StageInfo(
        "Executive Engineer Signature",
        "Your certificate is awaiting digital signature from the Executive Engineer.",
        "The certificate is in the final signing process. This typically takes 2-3 business days.",
    ),
    S.CITY_ENGINEER_SIGN_PENDING: StageInfo(
        "City Engineer Signature",
        "Your certificate is awaiting final digital signature from the City Engineer.",
        "This is the final step. Your certificate will be ready within 2-3 business days.",
    ),
    S.APPROVED: StageInfo(
        "Application Approved",
        "Congratulations! Your application has been successfully approved.",
        "Your certificate is now ready. You can download it from your account or collect it from our office.",
    ),
    S.REJECTED: StageInfo(
        "Application Rejected",
        "Unfortunately, your application has been rejected.",
        "Please review the rejection reasons and contact our office within 15 days if you wish to appeal.",
    ),
}

_UNKNOWN_STAGE = StageInfo(
    "Unknown Stage",
    "Your application is being processed.",
    "Please contact our support team for more information.",
)


def stage_info(stage) -> StageInfo:
    try:
        return STAGE_DISPLAY[ApplicationStage(stage)]
    except ValueError:
        return _UNKNOWN_STAGE


# ═══════════════════════════════════════════════════════════════════════════
#  Dispatch
# ═══════════════════════════════════════════════════════════════════════════

def _run_safely(fn, args, kwargs) -> None:
    try:
        fn(*args, **kwargs)
    except Exception:
        db.session.rollback()
        logger.exception("Notification %s failed", getattr(fn, "__name__", fn))


def _run_in_app_context(app, fn, args, kwargs) -> None:
    with app.app_context():
        _run_safely(fn, args, kwargs)


def dispatch(fn, *args, **kwargs) -> None:
    """Fire-and-forget *fn*; exceptions are logged, never raised."""
    if current_app.config.get("NOTIFICATIONS_ASYNC", False):
        app = current_app._get_current_object()
        t = threading.Thread(
            target=_run_in_app_context,
            args=(app, fn, args, kwargs),
            daemon=True,
        )
        t.start()
        return
    _run_safely(fn, args, kwargs)


# ═══════════════════════════════════════════════════════════════════════════
#  Notifications
# ═══════════════════════════════════════════════════════════════════════════

def _comments_block(comments: str | None) -> str:
    if not comments:
        return ""
    return f'<p style="color: #475569;"><strong>Officer remarks:</strong> {html.escape(comments)}</p>'


def _load(application_id: str) -> Application | None:
    application = db.session.get(Application, application_id)
    if application is None:
        logger.warning("Notification skipped: application %s not found", application_id)
    return application


def notify_stage_change(application_id: str, old_stage: str, new_stage: str,
                        officer_role: str | None, comments: str | None = None) -> None:
    """Email the applicant about a stage change."""
    application = _load(application_id)
    if application is None:
        return
    info = stage_info(new_stage)
    EmailService.send_from_template(
        to_email=application.email,
        to_name=application.applicant_name,
        template_name="stage_update",
        context={
            "applicant_name": application.applicant_name,
            "application_number": application.application_number,
            "stage_title": info.title,
            "stage_message": info.message,
            "next_steps": info.next_steps,
            "old_stage_title": stage_info(old_stage).title,
            "officer_title": roles.display_name(officer_role),
            "comments_block": _comments_block(comments),
        },
        application_id=application.id,
    )
    db.session.commit()


def notify_appointment_scheduled(application_id: str) -> None:
    application = _load(application_id)
    if application is None or application.appointment is None:
        return
    appt = application.appointment
    EmailService.send_from_template(
        to_email=application.email,
        to_name=application.applicant_name,
        template_name="appointment_scheduled",
        context={
            "applicant_name": application.applicant_name,
            "application_number": application.application_number,
            "appointment_date": appt.appointment_date.strftime("%d/%m/%Y %I:%M %p"),
            "place": appt.place,
            "room_number": appt.room_number or "-",
            "contact_person": appt.contact_person or "-",
            "comments_block": _comments_block(appt.comments),
        },
        application_id=application.id,
    )
    db.session.commit()


def notify_payment_received(application_id: str, order_id: str, amount) -> None:
    application = _load(application_id)
    if application is None:
        return
    EmailService.send_from_template(
        to_email=application.email,
        to_name=application.applicant_name,
        template_name="payment_received",
        context={
            "applicant_name": application.applicant_name,
            "application_number": application.application_number,
            "order_id": order_id,
            "amount": f"{float(amount):.2f}",
        },
        category="payment",
        application_id=application.id,
    )
    db.session.commit()


def send_login_otp(email: str, otp: str, validity_minutes: int) -> None:
    user = User.query.filter_by(email=email).first()
    EmailService.send_from_template(
        to_email=email,
        to_name=user.full_name if user else None,
        template_name="login_otp",
        context={
            "applicant_name": (user.full_name if user else None) or email,
            "otp": otp,
            "validity_minutes": validity_minutes,
        },
        category="auth",
    )
    db.session.commit()


def send_officer_invitation(user_id: int, token: str) -> None:
    user = db.session.get(User, user_id)
    if user is None:
        return
    EmailService.send_from_template(
        to_email=user.email,
        to_name=user.full_name,
        template_name="officer_invitation",
        context={
            "applicant_name": user.full_name or user.email,
            "officer_title": roles.display_name(user.role),
            "set_password_url": f"{current_app.config['SET_PASSWORD_URL']}?token={token}",
        },
        category="auth",
    )
    db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
#  Officer routing
# ═══════════════════════════════════════════════════════════════════════════

def officer_roles_for_stage(stage, category) -> list[str]:
    """Role strings of the officers who own *stage* for an application of *category*."""
    names = []
    for level in owners_of(stage):
        if level in CATEGORY_SCOPED_LEVELS:
            names.append(roles.role_name(level, category))
        else:
            names.append(roles.role_name(level))
    return names


def notify_next_officers(application_id: str, stage: str) -> list[int]:
    """Resolve the officers now responsible for *application_id* and log their task.

    Task creation is notification-only: nothing is persisted.
    """
    application = _load(application_id)
    if application is None:
        return []
    role_names = officer_roles_for_stage(stage, application.position_type)
    if not role_names:
        return []
    officers = (
        Officer.query.join(User, Officer.user_id == User.id)
        .filter(User.role.in_(role_names), User.status == "active")
        .all()
    )
    for officer in officers:
        logger.info(
            "Task assigned to officer %s for application %s at stage %s",
            officer.id, application.id, stage,
            extra={"application_id": application.id, "officer_id": officer.id, "stage": stage},
        )
    if not officers:
        logger.warning("No officers hold roles %s for application %s", role_names, application.id)
    return [o.id for o in officers]
