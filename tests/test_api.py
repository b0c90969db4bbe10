"""
HTTP API tests — blueprints, JWT middleware and the error mapping.

    401  no / invalid token, unsigned payment callback
    403  identity known but lacks rights
    404  unknown application
    400  invalid stage transition, missing fields
    409  duplicate registration
    502  HSM failure
"""

import base64
from unittest.mock import MagicMock, patch

import pytest

from pmcrms.integrations.hsm_gateway import SignOutcome, SignResult
from pmcrms.integrations.payment_gateway import sign_callback
from pmcrms.models import db
from pmcrms.models.application import Application
from pmcrms.models.payment import Transaction
from pmcrms.services.jwt_service import generate_set_password_token
from pmcrms.utils.crypto import hash_password


def _submission():
    return {
        "first_name": "Asha",
        "last_name": "Patil",
        "mobile_number": "9876543210",
        "email": "applicant@example.com",
        "position_type": "Architect",
        "permanent_address": {"address_line1": "12 FC Road", "city": "Pune",
                              "state": "Maharashtra", "pin_code": "411004"},
        "documents": [{"document_type": "Photo", "file_name": "photo.jpg",
                       "content_base64": base64.b64encode(b"JPEGDATA").decode()}],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Health & auth
# ═════════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_live_reports_database(self, client):
        body = client.get("/api/v1/health/live").get_json()
        assert body["checks"]["database"]["status"] == "ok"


class TestAuthEndpoints:
    def test_register_returns_token(self, client):
        res = client.post("/api/v1/auth/register",
                          json={"email": "new@example.com", "password": "password123"})
        assert res.status_code == 201
        body = res.get_json()
        assert body["token_type"] == "Bearer"
        assert body["user"]["role"] == "User"

    def test_duplicate_registration_is_409(self, client, applicant):
        res = client.post("/api/v1/auth/register",
                          json={"email": "applicant@example.com", "password": "password123"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_login_requires_fields(self, client):
        res = client.post("/api/v1/auth/login", json={"email": "a@example.com"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_bad_login_is_401(self, client, applicant):
        res = client.post("/api/v1/auth/login",
                          json={"email": "applicant@example.com", "password": "password123"})
        assert res.status_code == 401

    def test_otp_throttle_is_429(self, client, applicant):
        for _ in range(10):
            assert client.post("/api/v1/auth/otp/request",
                               json={"email": "applicant@example.com"}).status_code == 200
        res = client.post("/api/v1/auth/otp/request", json={"email": "applicant@example.com"})
        assert res.status_code == 429
        assert res.get_json()["code"] == "ERR_THROTTLED"

    def test_me(self, client, make_officer, auth_headers):
        officer = make_officer("CityEngineer")
        body = client.get("/api/v1/auth/me", headers=auth_headers(officer.user)).get_json()
        assert body["role"] == "CityEngineer"
        assert body["officer"]["has_key_label"] is True

    def test_invite_requires_admin(self, client, applicant, auth_headers):
        res = client.post("/api/v1/auth/invite", headers=auth_headers(applicant),
                          json={"email": "x@pmc.gov.in", "role": "Clerk"})
        assert res.status_code == 403

    def test_set_password_without_token_is_401(self, client, make_user):
        make_user(role="Admin", email="admin@pmc.gov.in", password_hash=hash_password("OrigSecret1"))
        res = client.post("/api/v1/auth/set-password",
                          json={"email": "admin@pmc.gov.in", "password": "attacker123"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

        res = client.post("/api/v1/auth/login",
                          json={"email": "admin@pmc.gov.in", "password": "attacker123"})
        assert res.status_code == 401

    def test_set_password_with_invitation_token(self, client, make_user):
        invited = make_user(role="Clerk", email="clerk@pmc.gov.in", status="invited")
        res = client.post("/api/v1/auth/set-password",
                          json={"email": "clerk@pmc.gov.in", "password": "password123",
                                "token": generate_set_password_token(invited)})
        assert res.status_code == 200
        assert res.get_json()["status"] == "active"


# ═════════════════════════════════════════════════════════════════════════════
# Applications
# ═════════════════════════════════════════════════════════════════════════════


class TestApplicationEndpoints:
    def test_requires_token(self, client):
        res = client.get("/api/v1/applications")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_garbage_token_is_401(self, client):
        res = client.get("/api/v1/applications", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401

    def test_submit_list_and_download(self, client, applicant, auth_headers):
        headers = auth_headers(applicant)
        res = client.post("/api/v1/applications", json=_submission(), headers=headers)
        assert res.status_code == 201
        created = res.get_json()
        assert created["application_number"].startswith("PMC_APPLICATION_")
        assert created["current_stage"] == "JUNIOR_ENGINEER_PENDING"

        listing = client.get("/api/v1/applications?page_size=5", headers=headers).get_json()
        assert listing["total"] == 1
        assert listing["items"][0]["id"] == created["id"]

        document_id = created["documents"][0]["id"]
        res = client.get(f"/api/v1/applications/{created['id']}/documents/{document_id}", headers=headers)
        assert res.status_code == 200
        assert res.data == b"JPEGDATA"

    def test_invalid_submission_is_400(self, client, applicant, auth_headers):
        payload = _submission()
        payload["position_type"] = "Astronaut"
        res = client.post("/api/v1/applications", json=payload, headers=auth_headers(applicant))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_unknown_application_is_404(self, client, applicant, auth_headers):
        res = client.get("/api/v1/applications/does-not-exist", headers=auth_headers(applicant))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_officer_decision(self, client, make_application, make_officer, auth_headers):
        application = make_application(stage="DOCUMENT_VERIFICATION_PENDING")
        officer = make_officer("JuniorArchitect")
        res = client.post(f"/api/v1/applications/{application.id}/stage",
                          json={"new_stage": "ASSISTANT_ENGINEER_PENDING", "comments": "Verified"},
                          headers=auth_headers(officer.user))
        assert res.status_code == 200
        assert res.get_json()["current_stage"] == "ASSISTANT_ENGINEER_PENDING"

    def test_invalid_transition_is_400_with_stages(self, client, make_application, make_officer, auth_headers):
        application = make_application(stage="JUNIOR_ENGINEER_PENDING")
        officer = make_officer("JuniorArchitect")
        res = client.post(f"/api/v1/applications/{application.id}/stage",
                          json={"new_stage": "APPROVED"}, headers=auth_headers(officer.user))
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_TRANSITION"
        assert body["details"] == {"current_stage": "JUNIOR_ENGINEER_PENDING", "attempted_stage": "APPROVED"}

    def test_wrong_category_is_403(self, client, make_application, make_officer, auth_headers):
        application = make_application(stage="JUNIOR_ENGINEER_PENDING", position_type="LicenceEngineer")
        officer = make_officer("JuniorArchitect")
        res = client.post(f"/api/v1/applications/{application.id}/stage",
                          json={"new_stage": "DOCUMENT_VERIFICATION_PENDING"},
                          headers=auth_headers(officer.user))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_missing_new_stage(self, client, make_application, make_officer, auth_headers):
        application = make_application()
        officer = make_officer("JuniorArchitect")
        res = client.post(f"/api/v1/applications/{application.id}/stage", json={},
                          headers=auth_headers(officer.user))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_schedule_appointment(self, client, make_application, make_officer, auth_headers):
        application = make_application()
        officer = make_officer("JuniorArchitect")
        res = client.post(f"/api/v1/applications/{application.id}/appointment",
                          json={"appointment_date": "2026-11-02T10:30:00", "place": "PMC Main Building"},
                          headers=auth_headers(officer.user))
        assert res.status_code == 201
        assert res.get_json()["place"] == "PMC Main Building"


class TestSignatureEndpoints:
    @pytest.fixture()
    def hsm(self):
        gateway = MagicMock()
        gateway.generate_otp.return_value = "OTP sent"
        with patch("pmcrms.services.signature_service.HSMGateway") as gateway_cls:
            gateway_cls.from_config.return_value = gateway
            yield gateway

    def test_sign_flow(self, client, hsm, make_application, make_officer, auth_headers):
        application = make_application(stage="ASSISTANT_ENGINEER_PENDING")
        officer = make_officer("AssistantArchitect")
        headers = auth_headers(officer.user)
        hsm.sign_pdf.return_value = SignResult(SignOutcome.SUCCESS, signed_document=b"signed")

        res = client.post(f"/api/v1/applications/{application.id}/signature/otp", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["hsm_response"] == "OTP sent"

        res = client.post(f"/api/v1/applications/{application.id}/signature",
                          json={"otp": "123456"}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["current_stage"] == "EXECUTIVE_ENGINEER_PENDING"

    def test_hsm_refusal_is_502(self, client, hsm, make_application, make_officer, auth_headers):
        application = make_application(stage="ASSISTANT_ENGINEER_PENDING")
        officer = make_officer("AssistantArchitect")
        headers = auth_headers(officer.user)
        hsm.sign_pdf.return_value = SignResult(SignOutcome.FAILURE, detail="signer rejected the OTP")

        client.post(f"/api/v1/applications/{application.id}/signature/otp", headers=headers)
        res = client.post(f"/api/v1/applications/{application.id}/signature",
                          json={"otp": "000000"}, headers=headers)

        assert res.status_code == 502
        assert res.get_json()["code"] == "ERR_EXTERNAL_SERVICE"
        assert db.session.get(Application, application.id).current_stage == "ASSISTANT_ENGINEER_PENDING"

    def test_signature_requires_otp(self, client, make_application, make_officer, auth_headers):
        application = make_application(stage="ASSISTANT_ENGINEER_PENDING")
        officer = make_officer("AssistantArchitect")
        res = client.post(f"/api/v1/applications/{application.id}/signature", json={},
                          headers=auth_headers(officer.user))
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Payments
# ═════════════════════════════════════════════════════════════════════════════


class TestPaymentEndpoints:
    SECRET = "test-payment-callback-secret"

    @pytest.fixture()
    def pending(self, make_application):
        application = make_application(stage="PAYMENT_PENDING")
        db.session.add(Transaction(transaction_id="PMC260101000000001", application_id=application.id,
                                   user_id=application.applicant_id, amount=3000))
        db.session.commit()
        return application

    @staticmethod
    def _fields():
        return {"orderid": "PMC260101000000001", "auth_status": "0300",
                "amount": "3000.00", "transactionid": "BD-TX-1"}

    def test_signed_callback_needs_no_token(self, client, pending):
        fields = self._fields()
        fields["signature"] = sign_callback(fields, self.SECRET)

        res = client.post("/api/v1/payments/callback", data=fields)

        assert res.status_code == 200
        assert res.get_json()["status"] == "SUCCESS"
        assert db.session.get(Application, pending.id).current_stage == "CLERK_PENDING"

    @pytest.mark.parametrize("signature", [None, "0" * 64, "forged"])
    def test_unsigned_or_forged_callback_is_401(self, client, pending, signature):
        fields = self._fields()
        if signature:
            fields["signature"] = signature

        res = client.post("/api/v1/payments/callback", data=fields)

        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"
        assert db.session.get(Application, pending.id).current_stage == "PAYMENT_PENDING"
        assert Transaction.query.filter_by(transaction_id="PMC260101000000001").one().status == "PENDING"

    def test_tampered_amount_is_401(self, client, pending):
        fields = self._fields()
        fields["signature"] = sign_callback(fields, self.SECRET)
        fields["amount"] = "1.00"

        res = client.post("/api/v1/payments/callback", data=fields)

        assert res.status_code == 401
        assert db.session.get(Application, pending.id).current_stage == "PAYMENT_PENDING"

    def test_challan_after_payment(self, client, make_application, applicant, auth_headers):
        application = make_application(stage="CLERK_PENDING", is_payment_complete=True)
        headers = auth_headers(applicant)

        created = client.post(f"/api/v1/payments/{application.id}/challan", headers=headers)
        fetched = client.get(f"/api/v1/payments/{application.id}/challan", headers=headers)

        assert created.status_code == 200
        assert fetched.get_json()["challan_number"] == created.get_json()["challan_number"]
        assert created.get_json()["amount_in_words"] == "Three Thousand Rupees Only"

    def test_initiate_wrong_stage_is_400(self, client, make_application, applicant, auth_headers):
        application = make_application(stage="CITY_ENGINEER_PENDING")
        res = client.post(f"/api/v1/payments/{application.id}/initiate", headers=auth_headers(applicant))
        assert res.status_code == 400
