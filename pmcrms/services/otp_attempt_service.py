"""
OTP Attempt Throttle — login OTP issue and verification.

One LOGIN row per email address. On each request:

    retry_count ≥ 10 and last generation < 24 h ago  → OtpThrottledError
    last generation < 1 minute ago                   → retry_count += 1, OTP overwritten
    otherwise                                        → reset: new OTP, retry_count = 1,
                                                       generation time now, 10-minute expiry

The generation time is NOT moved by rapid re-requests, so a burst counts
against the same one-minute window. Clock and OTP generator are
injectable for tests.
"""

import logging
import secrets
from datetime import datetime, timedelta

from pmcrms.core.exceptions import OtpThrottledError
from pmcrms.models import db
from pmcrms.models.enums import OtpPurpose
from pmcrms.models.otp import OtpVerification
from pmcrms.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

MAX_RETRIES = 10
BLOCK_WINDOW = timedelta(days=1)
RESEND_WINDOW = timedelta(minutes=1)
OTP_VALIDITY = timedelta(minutes=10)
OTP_LENGTH = 6


def generate_otp() -> str:
    """Random numeric OTP of OTP_LENGTH digits."""
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


def _login_row(email: str) -> OtpVerification | None:
    return OtpVerification.query.filter_by(
        email=email, purpose=OtpPurpose.LOGIN.value,
    ).first()


def record_otp_request(email: str, otp: str, *, now: datetime | None = None) -> OtpVerification:
    """Apply the throttle and store *otp* for *email*. Commits."""
    now = now or utcnow()
    row = _login_row(email)

    if row is None:
        row = OtpVerification(
            purpose=OtpPurpose.LOGIN.value,
            email=email,
            otp=otp,
            retry_count=1,
            otp_generated_at=now,
            expiry_time=now + OTP_VALIDITY,
        )
        db.session.add(row)
        db.session.commit()
        return row

    generated_at = as_utc(row.otp_generated_at)
    if row.retry_count >= MAX_RETRIES and generated_at + BLOCK_WINDOW > now:
        logger.warning("OTP requests blocked for %s (retry_count=%s)", email, row.retry_count)
        raise OtpThrottledError("Account blocked for a day due to multiple requests.")

    if generated_at + RESEND_WINDOW > now:
        row.retry_count += 1
        row.otp = otp
    else:
        row.otp = otp
        row.otp_generated_at = now
        row.expiry_time = now + OTP_VALIDITY
        row.retry_count = 1
    row.is_verified = False
    row.verified_at = None
    db.session.commit()
    return row


def verify_otp(email: str, otp: str, *, now: datetime | None = None) -> bool:
    """True when (email, otp) matches an unexpired, not yet verified OTP. Commits on success."""
    now = now or utcnow()
    row = OtpVerification.query.filter_by(
        email=email, otp=otp, purpose=OtpPurpose.LOGIN.value,
    ).first()
    if row is None or row.is_verified:
        return False
    if as_utc(row.expiry_time) < now:
        return False
    row.is_verified = True
    row.verified_at = now
    db.session.commit()
    return True
