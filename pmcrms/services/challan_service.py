"""
Challan (payment receipt) generation.

At most one challan per application: generating again returns the
existing one. The receipt is rendered to HTML and kept in the blob store.

Challan number:  CH<yyyymmdd><HHMMSS><milliseconds>
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from html import escape

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from pmcrms.core.exceptions import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from pmcrms.models import db
from pmcrms.models.application import Application
from pmcrms.models.audit import write_audit
from pmcrms.models.auth import User
from pmcrms.models.payment import Challan, Payment
from pmcrms.services.document_service import position_title
from pmcrms.services.file_service import FileService
from pmcrms.services.stage_authorization import can_view_application
from pmcrms.utils.helpers import utcnow

logger = logging.getLogger(__name__)

_ONES = (
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine", "Ten",
    "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen", "Seventeen",
    "Eighteen", "Nineteen",
)
_TENS = ("", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety")

# Indian numbering: crore = 10^7, lakh = 10^5
_SCALES = ((10_000_000, "Crore"), (100_000, "Lakh"), (1_000, "Thousand"), (100, "Hundred"))

_RECEIPT = """<!DOCTYPE html>
<html lang="en"><head><meta charset="UTF-8"><title>Challan {challan_number}</title></head>
<body style="font-family: Arial, sans-serif;">
<h2>Pune Municipal Corporation</h2>
<h3>Licence Fee Challan</h3>
<table>
<tr><td>Challan No.</td><td>{challan_number}</td></tr>
<tr><td>Date</td><td>{challan_date}</td></tr>
<tr><td>Application No.</td><td>{application_number}</td></tr>
<tr><td>Name</td><td>{name}</td></tr>
<tr><td>Position</td><td>{position}</td></tr>
<tr><td>Mobile</td><td>{mobile}</td></tr>
<tr><td>Address</td><td>{address}</td></tr>
<tr><td>Amount</td><td>Rs. {amount}</td></tr>
<tr><td>Amount in words</td><td>{amount_in_words}</td></tr>
</table>
</body></html>
"""


def _below_thousand(n: int) -> list[str]:
    words = []
    if n >= 100:
        words += [_ONES[n // 100], "Hundred"]
        n %= 100
    if n >= 20:
        words.append(_TENS[n // 10])
        n %= 10
    if n:
        words.append(_ONES[n])
    return words


def _integer_words(n: int) -> list[str]:
    if n == 0:
        return ["Zero"]
    words = []
    for scale, name in _SCALES[:-1]:
        if n >= scale:
            count = n // scale
            words += (_integer_words(count) if count >= 100 else _below_thousand(count)) + [name]
            n %= scale
    return words + _below_thousand(n)


def amount_in_words(amount) -> str:
    """``3000`` → ``"Three Thousand Rupees Only"`` (Indian numbering)."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if value < 0:
        raise ValueError("amount must not be negative")
    rupees = int(value)
    paise = int((value - rupees) * 100)
    text = " ".join(_integer_words(rupees)) + " Rupees"
    if paise:
        text += " and " + " ".join(_below_thousand(paise)) + " Paise"
    return text + " Only"


def generate_challan_number(now: datetime) -> str:
    return f"CH{now:%Y%m%d%H%M%S}{now.microsecond // 1000:03d}"


def _fee_paid(application: Application):
    payment = (
        Payment.query.filter_by(application_id=application.id)
        .order_by(Payment.id.desc())
        .first()
    )
    if payment is not None:
        return payment.amount
    return Decimal(current_app.config["LICENCE_FEES"][application.position_type])


def _check_access(application: Application, user_id: int | None) -> None:
    if user_id is None:
        return
    user = db.session.get(User, user_id)
    if user is None or not can_view_application(user.id, user.role, application):
        raise UnauthorizedError("You are not allowed to access this challan")


def _render(challan: Challan, application: Application) -> bytes:
    return _RECEIPT.format(
        challan_number=escape(challan.challan_number),
        challan_date=challan.challan_date.strftime("%d/%m/%Y"),
        application_number=escape(application.application_number),
        name=escape(challan.name),
        position=escape(challan.position or ""),
        mobile=escape(challan.mobile_number or ""),
        address=escape(challan.address or ""),
        amount=f"{Decimal(challan.amount):.2f}",
        amount_in_words=escape(challan.amount_in_words or ""),
    ).encode("utf-8")


def generate_challan(application_id: str, *, user_id: int | None = None,
                     now: datetime | None = None,
                     file_service: FileService | None = None) -> Challan:
    """Create the challan for a paid application, or return the existing one.

    ``user_id=None`` is the system (payment callback).
    """
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    _check_access(application, user_id)

    existing = Challan.query.filter_by(application_id=application.id).first()
    if existing is not None:
        return existing
    if not application.is_payment_complete:
        raise ValidationError("Challan is available only after the licence fee is paid")

    now = now or utcnow()
    amount = _fee_paid(application)
    address = application.current_address or application.permanent_address
    challan = Challan(
        application_id=application.id,
        challan_number=generate_challan_number(now),
        name=application.applicant_name,
        position=position_title(application.position_type),
        amount=amount,
        amount_in_words=amount_in_words(amount),
        mobile_number=application.mobile_number,
        address=address.one_line() if address else None,
        challan_date=now,
    )
    challan.file_path = (file_service or FileService.from_app()).save(
        f"challan_{application.id}.html", _render(challan, application),
    )
    challan.is_generated = True
    application.is_challan_generated = True
    application.challan_path = challan.file_path

    db.session.add(challan)
    try:
        db.session.flush()
        write_audit(
            entity_type="challan",
            entity_id=challan.id,
            action="challan.generate",
            actor_user_id=user_id,
            diff={"application_id": application.id, "challan_number": challan.challan_number},
        )
        db.session.commit()
    except (IntegrityError, StaleDataError) as exc:
        db.session.rollback()
        existing = Challan.query.filter_by(application_id=application_id).first()
        if existing is not None:
            return existing
        raise ConflictError("Challan", "application_id", application_id) from exc

    logger.info("Challan %s generated for application %s", challan.challan_number, application.id,
                extra={"application_id": application.id})
    return challan


def get_challan(application_id: str, user_id: int | None = None) -> Challan:
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    _check_access(application, user_id)
    challan = Challan.query.filter_by(application_id=application.id).first()
    if challan is None:
        raise NotFoundError("Challan", application_id)
    return challan
