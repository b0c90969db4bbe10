"""
Payment Gateway — licence-fee order creation and callback parsing.

Order creation POSTs a JSON order to the gateway's ``orders/create``
endpoint and extracts the redirect parameters (``bdorderid``, ``rdata``)
from the ``links[rel=redirect]`` entry of the response. Message-level
encryption and signing of the gateway protocol are out of scope here;
the payload and response are treated as plain JSON. Callbacks carry a
``signature`` field: HMAC-SHA256 of the other fields under the shared
callback secret.

Testability: pass a mock `session` to PaymentGateway() in tests.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30
_CURRENCY_INR = "356"

# Gateway auth_status for a captured payment
_SUCCESS_AUTH_STATUS = "0300"

# Callback field carrying the hex HMAC-SHA256 of the other fields
CALLBACK_SIGNATURE_FIELD = "signature"


@dataclass(frozen=True)
class PaymentInitiation:
    order_id: str
    amount: Decimal
    application_id: str
    customer_email: str
    customer_mobile: str
    return_url: str

    def to_payload(self, merchant_id: str, order_date: datetime) -> dict:
        return {
            "mercid": merchant_id,
            "orderid": self.order_id,
            "amount": f"{self.amount:.2f}",
            "order_date": order_date.isoformat(timespec="seconds"),
            "currency": _CURRENCY_INR,
            "ru": self.return_url,
            "itemcode": "DIRECT",
            "additional_info": {
                "additional_info1": self.application_id,
                "additional_info2": self.customer_email,
                "additional_info3": self.customer_mobile,
            },
            "device": {"init_channel": "internet"},
        }


@dataclass(frozen=True)
class PaymentRedirect:
    ok: bool
    order_id: str
    gateway_order_id: str | None = None
    rdata: str | None = None
    gateway_url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "order_id": self.order_id,
            "gateway_order_id": self.gateway_order_id,
            "rdata": self.rdata,
            "gateway_url": self.gateway_url,
            "error": self.error,
        }


@dataclass(frozen=True)
class PaymentCallback:
    """Normalised gateway callback (form post or JSON)."""

    order_id: str
    success: bool
    gateway_reference: str | None = None
    amount: Decimal | None = None
    payment_mode: str | None = None
    card_type: str | None = None
    error_message: str | None = None
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_form(cls, form) -> "PaymentCallback":
        data = dict(form)
        status = str(data.get("status", "")).upper()
        auth_status = str(data.get("auth_status", ""))
        amount = data.get("amount") or data.get("charge_amount")
        try:
            amount = Decimal(str(amount)) if amount not in (None, "") else None
        except ArithmeticError:
            amount = None
        return cls(
            order_id=str(data.get("orderid") or data.get("order_id") or ""),
            success=status == "SUCCESS" or auth_status == _SUCCESS_AUTH_STATUS,
            gateway_reference=data.get("transactionid") or data.get("bdorderid"),
            amount=amount,
            payment_mode=data.get("payment_method_type") or data.get("mode"),
            card_type=data.get("card_type"),
            error_message=data.get("transaction_error_desc") or data.get("error"),
            raw=data,
        )


def sign_callback(fields, secret: str) -> str:
    """HMAC-SHA256 over ``key=value`` pairs sorted by key, joined by ``|``.

    The signature field itself is excluded.
    """
    message = "|".join(
        f"{key}={fields[key]}" for key in sorted(fields) if key != CALLBACK_SIGNATURE_FIELD
    )
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def verify_callback_signature(fields, secret: str) -> bool:
    supplied = fields.get(CALLBACK_SIGNATURE_FIELD)
    if not supplied:
        return False
    return hmac.compare_digest(str(supplied).lower(), sign_callback(fields, secret))


class PaymentGatewayError(Exception):
    """Transport-level failure talking to the payment gateway."""


class PaymentGateway:
    """Licence-fee payment gateway client.

    Usage:
        gateway = PaymentGateway.from_config(current_app.config)
        redirect = gateway.initiate(PaymentInitiation(...))
    """

    def __init__(
        self,
        create_order_url: str,
        merchant_id: str,
        *,
        timeout: int = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.create_order_url = create_order_url
        self.merchant_id = merchant_id
        self.timeout = timeout
        self._session: requests.Session | None = session

    @classmethod
    def from_config(cls, config, session: requests.Session | None = None) -> "PaymentGateway":
        return cls(
            config["PAYMENT_GATEWAY_URL"],
            config["PAYMENT_MERCHANT_ID"],
            timeout=config.get("PAYMENT_TIMEOUT", _DEFAULT_TIMEOUT),
            session=session,
        )

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def initiate(self, initiation: PaymentInitiation) -> PaymentRedirect:
        """Create a gateway order and return its redirect parameters."""
        now = datetime.now(timezone.utc)
        headers = {
            "BD-Traceid": uuid.uuid4().hex[:35],
            "BD-Timestamp": now.strftime("%Y%m%d%H%M%S"),
            "Accept": "application/json",
        }
        try:
            resp = self.session.post(
                self.create_order_url,
                json=initiation.to_payload(self.merchant_id, now),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Payment gateway unreachable order=%s error=%s", initiation.order_id, exc)
            raise PaymentGatewayError(f"Payment gateway unreachable: {exc}") from exc

        if not resp.ok:
            logger.error("Payment gateway order=%s status=%s", initiation.order_id, resp.status_code)
            return PaymentRedirect(ok=False, order_id=initiation.order_id,
                                   error=f"Gateway returned HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError:
            return PaymentRedirect(ok=False, order_id=initiation.order_id,
                                   error="Gateway response is not JSON")
        return self._extract_redirect(initiation.order_id, body)

    @staticmethod
    def _extract_redirect(order_id: str, body: dict) -> PaymentRedirect:
        for link in body.get("links") or []:
            if link.get("rel") != "redirect":
                continue
            params = link.get("parameters") or {}
            return PaymentRedirect(
                ok=True,
                order_id=order_id,
                gateway_order_id=params.get("bdorderid") or body.get("bdorderid"),
                rdata=params.get("rdata"),
                gateway_url=link.get("href"),
            )
        return PaymentRedirect(ok=False, order_id=order_id,
                               error="Gateway response has no redirect link")
