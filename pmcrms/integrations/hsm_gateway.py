"""
HSM Signing Gateway — OTP issue and PDF signing.

Two endpoints:
  - OTP:  JSON POST ``{"otptype": "single", "ptno": "1", "txn", "klabel"}``;
          the body returned is opaque and handed back to the caller.
  - Sign: SOAP ``signPdf`` envelope; the response carries
          ``<return>{txn}~SUCCESS~{base64 pdf}</return>`` or the literal
          ``{txn}~FAILURE~failure``.

Response parsing lives in ``parse_sign_response`` only.

Testability: pass a mock `session` to HSMGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum
from xml.sax.saxutils import escape

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 60

_SOAP_TEMPLATE = (
    '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/">'
    '<s:Body xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
    'xmlns:xsd="http://www.w3.org/2001/XMLSchema">'
    '<signPdf xmlns="http://ds.ws.emas/">'
    '<arg0 xmlns="">{transaction}</arg0>'
    '<arg1 xmlns="">{key_label}</arg1>'
    '<arg2 xmlns="">{document}</arg2>'
    '<arg3 xmlns=""/>'
    '<arg4 xmlns="">{coordinates}</arg4>'
    '<arg5 xmlns="">last</arg5>'
    '<arg6 xmlns=""/>'
    '<arg7 xmlns=""/>'
    '<arg8 xmlns="">True</arg8>'
    '<arg9 xmlns="">{otp}</arg9>'
    '<arg10 xmlns="">single</arg10>'
    '<arg11 xmlns=""/><arg12 xmlns=""/>'
    '</signPdf>'
    '</s:Body>'
    '</s:Envelope>'
)

_RETURN_RE = re.compile(r"<return>(.*?)</return>", re.DOTALL)


class HSMError(Exception):
    """Transport-level failure talking to the HSM (network or HTTP status)."""


class SignOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class SignRequest:
    transaction_id: str
    key_label: str
    document_base64: str
    coordinates: str
    otp: str

    def to_envelope(self) -> str:
        return _SOAP_TEMPLATE.format(
            transaction=escape(self.transaction_id),
            key_label=escape(self.key_label),
            document=self.document_base64,
            coordinates=escape(self.coordinates),
            otp=escape(self.otp),
        )


@dataclass(frozen=True)
class SignResult:
    outcome: SignOutcome
    signed_document: bytes | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is SignOutcome.SUCCESS


def parse_sign_response(text: str, transaction_id: str) -> SignResult:
    """Classify a ``signPdf`` response body.

    SUCCESS carries the decoded signed bytes; FAILURE is the HSM's explicit
    refusal (wrong or expired OTP); MALFORMED is anything else.
    """
    if not text:
        return SignResult(SignOutcome.MALFORMED, detail="empty response")
    if f"{transaction_id}~FAILURE~failure" in text:
        return SignResult(SignOutcome.FAILURE, detail="signer rejected the OTP")

    match = _RETURN_RE.search(text)
    if not match:
        return SignResult(SignOutcome.MALFORMED, detail="no <return> element")

    prefix = f"{transaction_id}~SUCCESS~"
    payload = match.group(1).strip()
    if not payload.startswith(prefix):
        return SignResult(SignOutcome.MALFORMED, detail="unexpected return payload")

    try:
        signed = base64.b64decode(payload[len(prefix):], validate=True)
    except (binascii.Error, ValueError):
        return SignResult(SignOutcome.MALFORMED, detail="signed document is not valid base64")
    if not signed:
        return SignResult(SignOutcome.MALFORMED, detail="signed document is empty")
    return SignResult(SignOutcome.SUCCESS, signed_document=signed)


class HSMGateway:
    """eMas HSM gateway.

    Usage:
        gateway = HSMGateway.from_config(current_app.config)
        body = gateway.generate_otp(application.id, officer.key_label)
        result = gateway.sign_pdf(SignRequest(...))
    """

    def __init__(
        self,
        otp_url: str,
        sign_url: str,
        *,
        timeout: int = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.otp_url = otp_url
        self.sign_url = sign_url
        self.timeout = timeout
        self._session: requests.Session | None = session

    @classmethod
    def from_config(cls, config, session: requests.Session | None = None) -> "HSMGateway":
        return cls(
            config["HSM_OTP_URL"],
            config["HSM_SIGN_URL"],
            timeout=config.get("HSM_TIMEOUT", _DEFAULT_TIMEOUT),
            session=session,
        )

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _post(self, url: str, **kwargs) -> requests.Response:
        t0 = time.monotonic()
        try:
            resp = self.session.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("HSM call failed url=%s error=%s", url, exc)
            raise HSMError(f"HSM unreachable: {exc}") from exc
        duration_ms = int((time.monotonic() - t0) * 1000)
        logger.info("HSM call url=%s status=%s duration_ms=%s", url, resp.status_code, duration_ms)
        if not resp.ok:
            raise HSMError(f"HSM call failed with status {resp.status_code}")
        return resp

    def generate_otp(self, transaction_id: str, key_label: str) -> str:
        """Ask the HSM to send a signing OTP to the key holder.

        Returns the raw response body (opaque to the workflow).
        """
        body = {
            "otptype": "single",
            "ptno": "1",
            "txn": str(transaction_id),
            "klabel": key_label,
        }
        resp = self._post(self.otp_url, json=body)
        return resp.text

    def sign_pdf(self, request: SignRequest) -> SignResult:
        """Submit a document for signing and classify the response."""
        resp = self._post(
            self.sign_url,
            data=request.to_envelope().encode("utf-8"),
            headers={"Content-Type": "application/xml; charset=utf-8"},
        )
        result = parse_sign_response(resp.text, request.transaction_id)
        if not result.ok:
            logger.warning("HSM signing %s txn=%s detail=%s",
                           result.outcome.value, request.transaction_id, result.detail)
        return result
