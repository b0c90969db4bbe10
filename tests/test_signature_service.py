"""
Digital signature coordinator tests.

The HSM gateway is a MagicMock; parsing of real HSM responses is covered
in test_hsm_gateway.py.
"""

import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from pmcrms.core.exceptions import (
    ConfigurationError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from pmcrms.integrations.hsm_gateway import HSMError, SignOutcome, SignResult
from pmcrms.models import db
from pmcrms.models.application import Application, OfficerAssignment
from pmcrms.models.audit import AuditLog
from pmcrms.models.otp import HSM_OTP_PLACEHOLDER, OtpVerification
from pmcrms.services import signature_service as svc
from pmcrms.services.file_service import FileService

NOW = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)
SIGNED = b"%PDF-signed"


def _gateway(result=None, otp_body='{"status": "sent"}'):
    gateway = MagicMock()
    gateway.generate_otp.return_value = otp_body
    gateway.sign_pdf.return_value = result or SignResult(SignOutcome.SUCCESS, signed_document=SIGNED)
    return gateway


def _challenges(application_id):
    return OtpVerification.query.filter_by(application_id=application_id).order_by(OtpVerification.id).all()


# ═════════════════════════════════════════════════════════════════════════════
# Coordinates
# ═════════════════════════════════════════════════════════════════════════════


class TestCoordinates:
    @pytest.mark.parametrize("role,box", [
        ("JuniorArchitect", "117,383,236,324"),
        ("AssistantSupervisor2", "300,383,419,324"),
        ("ExecutiveEngineer", "117,300,236,241"),
        ("CityEngineer", "300,300,419,241"),
        ("Clerk", "117,383,236,324"),
        ("Nobody", "117,383,236,324"),
    ])
    def test_box_per_level(self, role, box):
        assert svc.signature_coordinates(role) == box


# ═════════════════════════════════════════════════════════════════════════════
# Step 1: OTP
# ═════════════════════════════════════════════════════════════════════════════


class TestGenerateSignatureOtp:
    def test_stores_placeholder_challenge(self, make_application, make_officer):
        application = make_application(stage="EXECUTIVE_ENGINEER_PENDING")
        officer = make_officer("ExecutiveEngineer", key_label="EE-KEY")
        gateway = _gateway()

        payload = svc.generate_signature_otp(application.id, officer.user_id, gateway=gateway, now=NOW)

        assert payload == '{"status": "sent"}'
        gateway.generate_otp.assert_called_once_with(application.id, "EE-KEY")
        (challenge,) = _challenges(application.id)
        assert challenge.otp == HSM_OTP_PLACEHOLDER
        assert challenge.purpose == "DIGITAL_SIGNATURE"
        assert challenge.officer_id == officer.id
        assert challenge.is_active(NOW + timedelta(minutes=9))
        assert not challenge.is_active(NOW + timedelta(minutes=10))

    def test_new_otp_supersedes_previous(self, make_application, make_officer):
        application = make_application(stage="EXECUTIVE_ENGINEER_PENDING")
        officer = make_officer("ExecutiveEngineer")
        gateway = _gateway()

        svc.generate_signature_otp(application.id, officer.user_id, gateway=gateway, now=NOW)
        later = NOW + timedelta(minutes=2)
        svc.generate_signature_otp(application.id, officer.user_id, gateway=gateway, now=later)

        first, second = _challenges(application.id)
        assert not first.is_active(later)
        assert second.is_active(later)

    def test_hsm_error_is_external_service_error(self, make_application, make_officer):
        application = make_application(stage="CITY_ENGINEER_PENDING")
        officer = make_officer("CityEngineer")
        gateway = _gateway()
        gateway.generate_otp.side_effect = HSMError("HSM unreachable")

        with pytest.raises(ExternalServiceError):
            svc.generate_signature_otp(application.id, officer.user_id, gateway=gateway, now=NOW)
        assert _challenges(application.id) == []

    def test_requires_stage_rights(self, make_application, make_officer):
        application = make_application(stage="CITY_ENGINEER_PENDING")
        officer = make_officer("ExecutiveEngineer")
        gateway = _gateway()
        with pytest.raises(UnauthorizedError):
            svc.generate_signature_otp(application.id, officer.user_id, gateway=gateway)
        gateway.generate_otp.assert_not_called()

    def test_missing_key_label(self, make_application, make_officer):
        application = make_application(stage="CITY_ENGINEER_PENDING")
        officer = make_officer("CityEngineer", key_label=None)
        with pytest.raises(ConfigurationError):
            svc.generate_signature_otp(application.id, officer.user_id, gateway=_gateway())

    def test_missing_application(self, make_officer):
        officer = make_officer("CityEngineer")
        with pytest.raises(NotFoundError):
            svc.generate_signature_otp("nope", officer.user_id, gateway=_gateway())


# ═════════════════════════════════════════════════════════════════════════════
# Step 2: sign
# ═════════════════════════════════════════════════════════════════════════════


class TestApplySignature:
    @pytest.fixture()
    def signing(self, make_application, make_officer):
        """Executive-stage application with an issued signature OTP."""
        application = make_application(stage="EXECUTIVE_ENGINEER_PENDING", position_type="Supervisor1")
        officer = make_officer("ExecutiveEngineer", key_label="EE-KEY")
        svc.generate_signature_otp(application.id, officer.user_id, gateway=_gateway(), now=NOW)
        return application, officer

    def test_success_advances_one_step(self, signing):
        application, officer = signing
        gateway = _gateway()

        signed = svc.apply_signature(application.id, " 123456 ", officer.user_id,
                                     gateway=gateway, now=NOW + timedelta(minutes=1))

        assert signed.current_stage == "CITY_ENGINEER_PENDING"
        assert signed.status == "CityEngineerApproved"
        assert signed.is_digitally_signed
        assert signed.signed_by == officer.user_id

        request = gateway.sign_pdf.call_args.args[0]
        assert request.transaction_id == application.id
        assert request.key_label == "EE-KEY"
        assert request.coordinates == "117,300,236,241"
        assert request.otp == "123456"
        assert b"Recommendation for Licence" in base64.b64decode(request.document_base64)

        assert FileService.from_app().read(signed.recommended_form_path) == SIGNED
        (challenge,) = _challenges(application.id)
        assert challenge.is_used and challenge.is_verified
        assignment = OfficerAssignment.query.filter_by(application_id=application.id).one()
        assert assignment.is_digitally_signed
        assert assignment.to_stage == "CITY_ENGINEER_PENDING"

    def test_failure_keeps_stage_and_burns_otp(self, signing):
        application, officer = signing
        gateway = _gateway(SignResult(SignOutcome.FAILURE, detail="signer rejected the OTP"))
        at = NOW + timedelta(minutes=1)

        with pytest.raises(ExternalServiceError):
            svc.apply_signature(application.id, "000000", officer.user_id, gateway=gateway, now=at)

        db.session.expire_all()
        stored = db.session.get(Application, application.id)
        assert stored.current_stage == "EXECUTIVE_ENGINEER_PENDING"
        assert not stored.is_digitally_signed
        (challenge,) = _challenges(application.id)
        assert not challenge.is_active(at)
        assert AuditLog.query.filter_by(action="application.signature_failed").count() == 1

        # The burnt OTP cannot be retried
        with pytest.raises(ValidationError):
            svc.apply_signature(application.id, "000000", officer.user_id, gateway=gateway, now=at)
        assert gateway.sign_pdf.call_count == 1

    def test_used_otp_cannot_sign_again(self, signing):
        application, officer = signing
        gateway = _gateway()
        at = NOW + timedelta(minutes=1)
        svc.apply_signature(application.id, "123456", officer.user_id, gateway=gateway, now=at)

        # Put the application back where the same OTP would be valid again
        stored = db.session.get(Application, application.id)
        stored.current_stage = "EXECUTIVE_ENGINEER_PENDING"
        db.session.commit()

        with pytest.raises(ValidationError, match="No active signature OTP"):
            svc.apply_signature(application.id, "123456", officer.user_id,
                                gateway=gateway, now=at + timedelta(minutes=1))
        assert gateway.sign_pdf.call_count == 1

    def test_transport_error_counts_as_failure(self, signing):
        application, officer = signing
        gateway = _gateway()
        gateway.sign_pdf.side_effect = HSMError("HSM call failed with status 503")

        with pytest.raises(ExternalServiceError):
            svc.apply_signature(application.id, "123456", officer.user_id,
                                gateway=gateway, now=NOW + timedelta(minutes=1))
        assert db.session.get(Application, application.id).current_stage == "EXECUTIVE_ENGINEER_PENDING"

    def test_expired_otp(self, signing):
        application, officer = signing
        gateway = _gateway()
        with pytest.raises(ValidationError):
            svc.apply_signature(application.id, "123456", officer.user_id,
                                gateway=gateway, now=NOW + timedelta(minutes=11))
        gateway.sign_pdf.assert_not_called()

    def test_otp_required(self, signing):
        application, officer = signing
        with pytest.raises(ValidationError):
            svc.apply_signature(application.id, "  ", officer.user_id, gateway=_gateway())

    def test_no_signature_edge_from_document_verification(self, make_application, make_officer):
        application = make_application(stage="DOCUMENT_VERIFICATION_PENDING")
        officer = make_officer("JuniorArchitect")
        with pytest.raises(InvalidTransitionError):
            svc.apply_signature(application.id, "123456", officer.user_id, gateway=_gateway(), now=NOW)

    def test_wrong_officer_is_refused(self, signing, make_officer):
        application, _ = signing
        city = make_officer("CityEngineer")
        with pytest.raises(UnauthorizedError):
            svc.apply_signature(application.id, "123456", city.user_id,
                                gateway=_gateway(), now=NOW + timedelta(minutes=1))

    def test_final_signature_approves_and_issues_certificate(self, make_application, make_officer):
        application = make_application(stage="CITY_ENGINEER_SIGN_PENDING", position_type="Architect")
        officer = make_officer("CityEngineer", key_label="CE-KEY")
        svc.generate_signature_otp(application.id, officer.user_id, gateway=_gateway(), now=NOW)

        approved = svc.apply_signature(application.id, "654321", officer.user_id,
                                       gateway=_gateway(), now=NOW + timedelta(minutes=3))

        assert approved.current_stage == "APPROVED"
        assert approved.approval_date is not None
        assert approved.certificate_number.startswith("PMC/ARCH/")
