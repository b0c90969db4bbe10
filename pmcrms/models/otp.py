"""
PMC Licensing Workflow
OTP challenge records.

One table serves both purposes:
    - LOGIN:              one row per email; carries the OTP value and the
                          retry counter used by the request throttle
    - DIGITAL_SIGNATURE:  one row per HSM OTP issue for an application; the
                          OTP value is never stored (placeholder only)
"""

from datetime import datetime, timezone

from pmcrms.models import db
from pmcrms.models.enums import OtpPurpose, in_clause
from pmcrms.utils.helpers import as_utc

# Stored instead of the real value for HSM-issued OTPs
HSM_OTP_PLACEHOLDER = "HSM_GENERATED"


class OtpVerification(db.Model):
    __tablename__ = "otp_verifications"
    __table_args__ = (
        db.CheckConstraint(in_clause("purpose", OtpPurpose), name="ck_otp_purpose"),
        db.Index("idx_otp_email", "email"),
        db.Index("idx_otp_application", "application_id", "purpose"),
    )

    id = db.Column(db.Integer, primary_key=True)
    purpose = db.Column(db.String(30), nullable=False)
    email = db.Column(db.String(200))
    otp = db.Column(db.String(20), nullable=False)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"),
    )
    officer_id = db.Column(db.Integer, db.ForeignKey("officers.id", ondelete="CASCADE"))

    retry_count = db.Column(db.Integer, nullable=False, default=0)
    otp_generated_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    expiry_time = db.Column(db.DateTime, nullable=False)

    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    verified_at = db.Column(db.DateTime)
    is_used = db.Column(db.Boolean, nullable=False, default=False)
    used_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def is_expired(self, now: datetime) -> bool:
        return as_utc(self.expiry_time) <= now

    def is_active(self, now: datetime) -> bool:
        """Usable: not consumed and not past its expiry."""
        return not self.is_used and not self.is_expired(now)

    def to_dict(self):
        return {
            "id": self.id,
            "purpose": self.purpose,
            "application_id": self.application_id,
            "officer_id": self.officer_id,
            "retry_count": self.retry_count,
            "expiry_time": self.expiry_time.isoformat() if self.expiry_time else None,
            "is_verified": self.is_verified,
            "is_used": self.is_used,
        }

    def __repr__(self):
        return f"<OtpVerification {self.id}: {self.purpose} used={self.is_used}>"
