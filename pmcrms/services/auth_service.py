"""
Authentication & officer onboarding.

Rules:
  - db.session.commit() happens here, never in blueprints.
  - Emails are dispatched after commit and never fail the caller.
  - Officers are invited by an Admin (status "invited", no password) and
    get their Officer profile lazily, the first time they set a password.
  - Setting a password always needs the signed set-password token from
    the invitation e-mail; the token dies once a password is set with it.
"""

import logging

from email_validator import EmailNotValidError, validate_email

from pmcrms.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from pmcrms.models import db
from pmcrms.models.audit import write_audit
from pmcrms.models.auth import Officer, User
from pmcrms.services import notification_service, otp_attempt_service
from pmcrms.services.jwt_service import (
    generate_set_password_token,
    token_response,
    verify_set_password_token,
)
from pmcrms.services.roles import ADMIN_ROLE, APPLICANT_ROLE, classify_role
from pmcrms.utils.crypto import hash_password, verify_password
from pmcrms.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str | None) -> str:
    """Validate syntax and return the normalized address (no DNS lookup)."""
    if not email or not str(email).strip():
        raise ValidationError("email is required")
    try:
        return validate_email(str(email).strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email address: {exc}") from exc


def _check_password(password: str | None) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def _user_by_email(email: str) -> User | None:
    return User.query.filter_by(email=email).first()


# ═══════════════════════════════════════════════════════════════
# Applicants
# ═══════════════════════════════════════════════════════════════

def register_applicant(email: str, password: str, full_name: str | None = None,
                       phone_number: str | None = None) -> User:
    email = normalize_email(email)
    _check_password(password)
    if _user_by_email(email) is not None:
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=(full_name or "").strip() or None,
        phone_number=phone_number,
        role=APPLICANT_ROLE,
        status="active",
    )
    db.session.add(user)
    db.session.flush()
    write_audit(entity_type="user", entity_id=user.id, action="user.register",
                actor=email, actor_user_id=user.id)
    db.session.commit()
    logger.info("Applicant registered: user=%s", user.id)
    return user


def login(email: str, password: str) -> dict:
    """Email + password → access token response."""
    email = normalize_email(email)
    user = _user_by_email(email)
    if user is None or not verify_password(password or "", user.password_hash):
        raise UnauthorizedError("Invalid email or password", authenticated=False)
    if user.status != "active":
        raise UnauthorizedError(f"Account is {user.status}", authenticated=False)

    user.last_login_at = utcnow()
    db.session.commit()
    return token_response(user)


# ═══════════════════════════════════════════════════════════════
# Login OTP
# ═══════════════════════════════════════════════════════════════

def request_login_otp(email: str, *, otp_generator=None, now=None) -> dict:
    """Issue a login OTP to an existing user, subject to the request throttle."""
    email = normalize_email(email)
    if _user_by_email(email) is None:
        raise NotFoundError("User", email)

    otp = (otp_generator or otp_attempt_service.generate_otp)()
    row = otp_attempt_service.record_otp_request(email, otp, now=now)
    validity = int(otp_attempt_service.OTP_VALIDITY.total_seconds() // 60)
    notification_service.dispatch(notification_service.send_login_otp, email, otp, validity)
    return {"email": email, "expires_at": row.expiry_time.isoformat(), "retry_count": row.retry_count}


def verify_login_otp(email: str, otp: str, *, now=None) -> dict:
    email = normalize_email(email)
    if not otp_attempt_service.verify_otp(email, str(otp or ""), now=now):
        raise UnauthorizedError("Invalid or expired OTP", authenticated=False)
    user = _user_by_email(email)
    if user is None:
        raise NotFoundError("User", email)
    if user.status == "inactive":
        raise UnauthorizedError("Account is inactive", authenticated=False)

    user.last_login_at = utcnow()
    db.session.commit()
    return token_response(user)


# ═══════════════════════════════════════════════════════════════
# Officer onboarding
# ═══════════════════════════════════════════════════════════════

def invite_officer(email: str, role: str, full_name: str | None, *, admin_user_id: int) -> User:
    """Create an invited officer account. Only an Admin may invite."""
    admin = db.session.get(User, admin_user_id)
    if admin is None or admin.role != ADMIN_ROLE:
        raise UnauthorizedError("Only administrators can invite officers")

    info = classify_role(role)
    if not info.is_officer or role == ADMIN_ROLE:
        raise ValidationError(f"{role!r} is not an officer role")

    email = normalize_email(email)
    if _user_by_email(email) is not None:
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        full_name=(full_name or "").strip() or None,
        role=role,
        status="invited",
    )
    db.session.add(user)
    db.session.flush()
    write_audit(entity_type="user", entity_id=user.id, action="user.invite",
                actor=admin.email, actor_user_id=admin.id, diff={"role": role})
    db.session.commit()
    logger.info("Officer invited: user=%s role=%s", user.id, role)

    token = generate_set_password_token(user)
    notification_service.dispatch(notification_service.send_officer_invitation, user.id, token)
    return user


def set_password(email: str, password: str, key_label: str | None = None, *,
                 token: str | None = None) -> User:
    """Set the password with an invitation token.

    Officer roles get their Officer profile on first call. Unknown e-mails
    and bad tokens fail the same way so the endpoint does not reveal which
    accounts exist.
    """
    email = normalize_email(email)
    _check_password(password)
    user = _user_by_email(email)
    if user is None or not token or not verify_set_password_token(token, user):
        logger.warning("Set-password refused for %s", email)
        raise UnauthorizedError("Invalid or expired set-password link", authenticated=False)
    if user.status == "inactive":
        raise UnauthorizedError("Account is inactive", authenticated=False)

    user.password_hash = hash_password(password)
    if user.status == "invited":
        user.status = "active"

    info = classify_role(user.role)
    if info.is_officer and user.role != ADMIN_ROLE:
        officer = user.officer
        if officer is None:
            first, _, last = (user.full_name or "").partition(" ")
            officer = Officer(
                user=user,
                first_name=first or None,
                last_name=last or None,
                phone_number=user.phone_number,
                key_label=key_label,
            )
            db.session.add(officer)
            db.session.flush()
            write_audit(entity_type="officer", entity_id=officer.id, action="officer.create",
                        actor=email, actor_user_id=user.id)
            logger.info("Officer profile created: officer=%s user=%s", officer.id, user.id)
        elif key_label:
            officer.key_label = key_label

    write_audit(entity_type="user", entity_id=user.id, action="user.set_password",
                actor=email, actor_user_id=user.id)
    db.session.commit()
    return user


def get_officer_for_user(user_id: int | None) -> Officer:
    """Officer profile for *user_id*; ``UnauthorizedError`` when there is none."""
    officer = Officer.query.filter_by(user_id=user_id).first() if user_id is not None else None
    if officer is None:
        raise UnauthorizedError("Officer profile not found")
    return officer
