"""
HSM gateway tests — response classification and HTTP calls via a mock session.
"""

import base64
from unittest.mock import MagicMock

import pytest
import requests

from pmcrms.integrations.hsm_gateway import (
    HSMError,
    HSMGateway,
    SignOutcome,
    SignRequest,
    parse_sign_response,
)

TXN = "0f7c2b0e-app"


def _envelope(payload):
    return (
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"><soap:Body>'
        f'<ns2:signPdfResponse xmlns:ns2="http://ds.ws.emas/"><return>{payload}</return>'
        "</ns2:signPdfResponse></soap:Body></soap:Envelope>"
    )


def _response(text="", status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.text = text
    return resp


def _request():
    return SignRequest(
        transaction_id=TXN,
        key_label="EE-KEY",
        document_base64=base64.b64encode(b"<html/>").decode(),
        coordinates="117,300,236,241",
        otp="123456",
    )


# ═════════════════════════════════════════════════════════════════════════════
# parse_sign_response
# ═════════════════════════════════════════════════════════════════════════════


class TestParseSignResponse:
    def test_success(self):
        signed = base64.b64encode(b"%PDF-1.7 signed").decode()
        result = parse_sign_response(_envelope(f"{TXN}~SUCCESS~{signed}"), TXN)
        assert result.ok
        assert result.signed_document == b"%PDF-1.7 signed"

    def test_explicit_failure(self):
        result = parse_sign_response(_envelope(f"{TXN}~FAILURE~failure"), TXN)
        assert result.outcome is SignOutcome.FAILURE
        assert not result.ok

    @pytest.mark.parametrize("text", [
        "",
        "<html>gateway timeout</html>",
        _envelope("other-txn~SUCCESS~UEs="),
        _envelope(f"{TXN}~SUCCESS~not base64!"),
        _envelope(f"{TXN}~SUCCESS~"),
    ])
    def test_malformed(self, text):
        result = parse_sign_response(text, TXN)
        assert result.outcome is SignOutcome.MALFORMED
        assert result.detail


# ═════════════════════════════════════════════════════════════════════════════
# HSMGateway
# ═════════════════════════════════════════════════════════════════════════════


class TestHSMGateway:
    def _gateway(self, session):
        return HSMGateway("http://hsm/otp", "http://hsm/sign", timeout=5, session=session)

    def test_generate_otp_posts_json(self):
        session = MagicMock()
        session.post.return_value = _response('{"status":"OTP sent"}')

        body = self._gateway(session).generate_otp(TXN, "EE-KEY")

        assert body == '{"status":"OTP sent"}'
        session.post.assert_called_once_with(
            "http://hsm/otp", timeout=5,
            json={"otptype": "single", "ptno": "1", "txn": TXN, "klabel": "EE-KEY"},
        )

    def test_sign_pdf_sends_soap_envelope(self):
        signed = base64.b64encode(b"signed").decode()
        session = MagicMock()
        session.post.return_value = _response(_envelope(f"{TXN}~SUCCESS~{signed}"))

        result = self._gateway(session).sign_pdf(_request())

        assert result.ok
        args, kwargs = session.post.call_args
        assert args == ("http://hsm/sign",)
        envelope = kwargs["data"].decode()
        assert "<signPdf" in envelope
        assert "<arg1 xmlns=\"\">EE-KEY</arg1>" in envelope
        assert "<arg4 xmlns=\"\">117,300,236,241</arg4>" in envelope
        assert "<arg9 xmlns=\"\">123456</arg9>" in envelope
        assert kwargs["headers"]["Content-Type"].startswith("application/xml")

    def test_http_error_raises(self):
        session = MagicMock()
        session.post.return_value = _response("busy", status=503)
        with pytest.raises(HSMError):
            self._gateway(session).sign_pdf(_request())

    def test_network_error_raises(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(HSMError):
            self._gateway(session).generate_otp(TXN, "EE-KEY")

    def test_from_config(self, app):
        gateway = HSMGateway.from_config(app.config)
        assert gateway.otp_url == app.config["HSM_OTP_URL"]
        assert gateway.sign_url == app.config["HSM_SIGN_URL"]
        assert gateway.timeout == app.config["HSM_TIMEOUT"]
