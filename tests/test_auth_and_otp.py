"""
Authentication, officer onboarding and login-OTP throttle tests.
"""

import re
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from werkzeug.security import generate_password_hash

from pmcrms.core.exceptions import (
    ConflictError,
    NotFoundError,
    OtpThrottledError,
    UnauthorizedError,
    ValidationError,
)
from pmcrms.models import db
from pmcrms.models.audit import AuditLog
from pmcrms.models.auth import Officer, User
from pmcrms.models.notification import EmailLog
from pmcrms.models.otp import OtpVerification
from pmcrms.services import auth_service, otp_attempt_service
from pmcrms.services.jwt_service import (
    decode_access_token,
    generate_access_token,
    generate_set_password_token,
)
from pmcrms.utils.crypto import hash_password, verify_password

T0 = datetime(2026, 9, 1, 8, 0, tzinfo=timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# 1. OTP throttle
# ═════════════════════════════════════════════════════════════════════════════


class TestOtpThrottle:
    EMAIL = "applicant@example.com"

    def test_first_request_creates_row(self):
        row = otp_attempt_service.record_otp_request(self.EMAIL, "111111", now=T0)
        assert row.retry_count == 1
        assert row.otp == "111111"
        assert row.expiry_time.replace(tzinfo=timezone.utc) == T0 + timedelta(minutes=10)

    def test_rapid_requests_count_against_same_window(self):
        otp_attempt_service.record_otp_request(self.EMAIL, "111111", now=T0)
        row = otp_attempt_service.record_otp_request(self.EMAIL, "222222", now=T0 + timedelta(seconds=30))
        assert row.retry_count == 2
        assert row.otp == "222222"
        assert OtpVerification.query.count() == 1

    def test_request_after_a_minute_resets(self):
        otp_attempt_service.record_otp_request(self.EMAIL, "111111", now=T0)
        otp_attempt_service.record_otp_request(self.EMAIL, "222222", now=T0 + timedelta(seconds=10))
        row = otp_attempt_service.record_otp_request(self.EMAIL, "333333", now=T0 + timedelta(minutes=2))
        assert row.retry_count == 1
        assert row.expiry_time.replace(tzinfo=timezone.utc) == T0 + timedelta(minutes=12)

    def test_blocked_after_ten_rapid_requests(self):
        for i in range(10):
            otp_attempt_service.record_otp_request(self.EMAIL, f"{i:06d}", now=T0 + timedelta(seconds=i))

        with pytest.raises(OtpThrottledError):
            otp_attempt_service.record_otp_request(self.EMAIL, "999999", now=T0 + timedelta(hours=5))

    def test_block_lifts_after_a_day(self):
        for i in range(10):
            otp_attempt_service.record_otp_request(self.EMAIL, f"{i:06d}", now=T0)
        row = otp_attempt_service.record_otp_request(self.EMAIL, "999999", now=T0 + timedelta(days=1, seconds=1))
        assert row.retry_count == 1

    def test_verify_is_single_use(self):
        otp_attempt_service.record_otp_request(self.EMAIL, "123456", now=T0)
        assert otp_attempt_service.verify_otp(self.EMAIL, "123456", now=T0 + timedelta(minutes=1))
        assert not otp_attempt_service.verify_otp(self.EMAIL, "123456", now=T0 + timedelta(minutes=2))

    def test_verify_rejects_wrong_and_expired(self):
        otp_attempt_service.record_otp_request(self.EMAIL, "123456", now=T0)
        assert not otp_attempt_service.verify_otp(self.EMAIL, "654321", now=T0)
        assert not otp_attempt_service.verify_otp(self.EMAIL, "123456", now=T0 + timedelta(minutes=11))

    def test_generated_otp_shape(self):
        otp = otp_attempt_service.generate_otp()
        assert len(otp) == 6 and otp.isdigit()


# ═════════════════════════════════════════════════════════════════════════════
# 2. Passwords & tokens
# ═════════════════════════════════════════════════════════════════════════════


class TestCrypto:
    def test_bcrypt_round_trip(self):
        hashed = hash_password("s3cret-pass")
        assert hashed.startswith("$2b$")
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong", hashed)

    def test_werkzeug_hash_supported(self):
        assert verify_password("legacy-pass", generate_password_hash("legacy-pass"))

    def test_no_hash(self):
        assert not verify_password("anything", None)


class TestJwt:
    def test_round_trip(self):
        payload = decode_access_token(generate_access_token(42, "Clerk"))
        assert payload["sub"] == "42"
        assert payload["role"] == "Clerk"

    def test_wrong_type_rejected(self, app):
        token = jwt.encode({"sub": "1", "type": "refresh"}, app.config["JWT_SECRET_KEY"], algorithm="HS256")
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)


# ═════════════════════════════════════════════════════════════════════════════
# 3. Applicant auth
# ═════════════════════════════════════════════════════════════════════════════


class TestApplicantAuth:
    def test_register_and_login(self):
        user = auth_service.register_applicant("New.User@Example.com", "password123", "New User")
        assert user.email == "new.user@example.com"
        assert user.role == "User"
        assert AuditLog.query.filter_by(action="user.register").count() == 1

        response = auth_service.login("new.user@example.com", "password123")
        assert response["token_type"] == "Bearer"
        assert decode_access_token(response["access_token"])["sub"] == str(user.id)

    def test_duplicate_email(self, applicant):
        with pytest.raises(ConflictError):
            auth_service.register_applicant("applicant@example.com", "password123")

    def test_short_password(self):
        with pytest.raises(ValidationError):
            auth_service.register_applicant("short@example.com", "abc")

    def test_bad_credentials(self, make_user):
        make_user(email="known@example.com", password_hash=hash_password("password123"))
        with pytest.raises(UnauthorizedError) as exc_info:
            auth_service.login("known@example.com", "nope-nope")
        assert exc_info.value.authenticated is False
        with pytest.raises(UnauthorizedError):
            auth_service.login("unknown@example.com", "password123")

    def test_otp_login(self, applicant):
        result = auth_service.request_login_otp("applicant@example.com",
                                                otp_generator=lambda: "246810", now=T0)
        assert result["retry_count"] == 1
        email = EmailLog.query.filter_by(template_name="login_otp").one()
        assert email.recipient_email == "applicant@example.com"

        response = auth_service.verify_login_otp("applicant@example.com", "246810",
                                                 now=T0 + timedelta(minutes=1))
        assert response["user"]["id"] == applicant.id

        with pytest.raises(UnauthorizedError):
            auth_service.verify_login_otp("applicant@example.com", "246810",
                                          now=T0 + timedelta(minutes=2))

    def test_otp_for_unknown_email(self):
        with pytest.raises(NotFoundError):
            auth_service.request_login_otp("ghost@example.com")


# ═════════════════════════════════════════════════════════════════════════════
# 4. Officer onboarding
# ═════════════════════════════════════════════════════════════════════════════


class TestOfficerOnboarding:
    @pytest.fixture()
    def invite(self, make_user, sent_emails):
        """Invite an officer and return the token from the e-mailed link."""
        def _invite(email="je.arch@pmc.gov.in"):
            admin = make_user(role="Admin")
            auth_service.invite_officer(email, "JuniorArchitect", "Meera Joshi", admin_user_id=admin.id)
            (mail,) = [m for m in sent_emails if m["to_email"] == email]
            assert mail["template_name"] == "officer_invitation"
            return re.search(r"token=([\w\-.]+)", mail["html_body"]).group(1)
        return _invite

    def test_invite_then_set_password_creates_officer(self, invite):
        token = invite()
        invited = User.query.filter_by(email="je.arch@pmc.gov.in").one()
        assert invited.status == "invited"
        assert invited.password_hash is None

        user = auth_service.set_password("je.arch@pmc.gov.in", "password123", key_label="JE-KEY",
                                         token=token)

        assert user.status == "active"
        officer = Officer.query.filter_by(user_id=user.id).one()
        assert (officer.first_name, officer.last_name) == ("Meera", "Joshi")
        assert officer.key_label == "JE-KEY"
        assert auth_service.get_officer_for_user(user.id).id == officer.id
        assert AuditLog.query.filter_by(action="user.set_password").count() == 1

    def test_invitation_link_is_single_use(self, invite):
        token = invite()
        auth_service.set_password("je.arch@pmc.gov.in", "password123", token=token)

        with pytest.raises(UnauthorizedError):
            auth_service.set_password("je.arch@pmc.gov.in", "attacker123", token=token)
        assert auth_service.login("je.arch@pmc.gov.in", "password123")["token_type"] == "Bearer"

    def test_token_required(self, invite):
        invite()
        with pytest.raises(UnauthorizedError) as exc_info:
            auth_service.set_password("je.arch@pmc.gov.in", "password123")
        assert exc_info.value.authenticated is False
        assert User.query.filter_by(email="je.arch@pmc.gov.in").one().password_hash is None

    def test_token_is_bound_to_its_account(self, invite):
        token = invite()
        invite(email="other@pmc.gov.in")
        with pytest.raises(UnauthorizedError):
            auth_service.set_password("other@pmc.gov.in", "password123", token=token)
        with pytest.raises(UnauthorizedError):
            auth_service.set_password("je.arch@pmc.gov.in", "password123", token="not-a-token")

    def test_access_token_is_not_a_set_password_token(self, invite):
        invite()
        user = User.query.filter_by(email="je.arch@pmc.gov.in").one()
        with pytest.raises(UnauthorizedError):
            auth_service.set_password(user.email, "password123",
                                      token=generate_access_token(user.id, user.role))

    def test_active_account_cannot_be_taken_over(self, make_user):
        admin = make_user(role="Admin", email="admin@pmc.gov.in",
                          password_hash=hash_password("OrigSecret1"))
        stale = generate_set_password_token(admin)
        admin.password_hash = hash_password("Rotated123")
        db.session.commit()

        for token in (None, stale):
            with pytest.raises(UnauthorizedError):
                auth_service.set_password("admin@pmc.gov.in", "attacker123", token=token)
        assert verify_password("Rotated123", admin.password_hash)

    def test_unknown_email_looks_like_bad_token(self):
        with pytest.raises(UnauthorizedError):
            auth_service.set_password("ghost@pmc.gov.in", "password123", token="anything")

    def test_set_password_again_keeps_single_profile(self, make_officer):
        officer = make_officer("Clerk", key_label="OLD")
        token = generate_set_password_token(officer.user)
        auth_service.set_password(officer.user.email, "password123", key_label="NEW", token=token)
        assert Officer.query.count() == 1
        assert Officer.query.one().key_label == "NEW"

    def test_applicant_gets_no_officer_profile(self, applicant):
        auth_service.set_password("applicant@example.com", "password123",
                                  token=generate_set_password_token(applicant))
        assert Officer.query.count() == 0

    def test_only_admin_invites(self, make_officer):
        executive = make_officer("ExecutiveEngineer")
        with pytest.raises(UnauthorizedError):
            auth_service.invite_officer("x@pmc.gov.in", "Clerk", None, admin_user_id=executive.user_id)

    @pytest.mark.parametrize("role", ["Admin", "User", "JuniorPlumber"])
    def test_invite_rejects_non_officer_roles(self, make_user, role):
        admin = make_user(role="Admin")
        with pytest.raises(ValidationError):
            auth_service.invite_officer("x@pmc.gov.in", role, None, admin_user_id=admin.id)
        assert User.query.filter_by(email="x@pmc.gov.in").count() == 0

    def test_get_officer_for_user_without_profile(self, applicant):
        with pytest.raises(UnauthorizedError):
            auth_service.get_officer_for_user(applicant.id)
