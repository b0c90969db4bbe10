"""
Licence-fee payment — order initiation and gateway callback handling.

    initiate_payment        applicant at PAYMENT_PENDING → Transaction PENDING
                            → gateway order → redirect parameters
    handle_payment_callback PENDING → SUCCESS: Payment row, fee flag, and the
                                      PAYMENT_PENDING → CLERK_PENDING edge
                                      in one commit; challan afterwards
                            PENDING → FAILED

Callbacks must be signed with PAYMENT_CALLBACK_SECRET (see
``parse_callback``) and are idempotent: a repeated success for a settled
transaction is acknowledged without side effects.
"""

import logging
import secrets
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from pmcrms.core.exceptions import (
    ConfigurationError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from pmcrms.integrations.payment_gateway import (
    PaymentCallback,
    PaymentGateway,
    PaymentGatewayError,
    PaymentInitiation,
    PaymentRedirect,
    verify_callback_signature,
)
from pmcrms.models import db
from pmcrms.models.application import Application
from pmcrms.models.audit import write_audit
from pmcrms.models.enums import ApplicationStage, TransactionStatus
from pmcrms.models.payment import Payment, Transaction
from pmcrms.services import challan_service, notification_service
from pmcrms.services.stage_transitions import (
    Actor,
    Trigger,
    apply_transition,
    validate_transition,
)
from pmcrms.utils.helpers import utcnow

logger = logging.getLogger(__name__)

S = ApplicationStage


def generate_order_id(now: datetime) -> str:
    """``PMC`` + yyMMddHHmmss + three random digits."""
    return f"PMC{now:%y%m%d%H%M%S}{secrets.randbelow(1000):03d}"


def licence_fee(position_type: str) -> Decimal:
    fees = current_app.config["LICENCE_FEES"]
    if position_type not in fees:
        raise ValidationError(f"No licence fee configured for {position_type}")
    return Decimal(fees[position_type])


def _fail(txn: Transaction, message: str) -> None:
    txn.status = TransactionStatus.FAILED.value
    txn.error_message = message
    write_audit(entity_type="transaction", entity_id=txn.id, action="transaction.failed",
                diff={"order_id": txn.transaction_id, "error": message})
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Initiate
# ═════════════════════════════════════════════════════════════════════════════

def initiate_payment(application_id: str, user_id: int, *,
                     gateway: PaymentGateway | None = None,
                     now: datetime | None = None) -> PaymentRedirect:
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    if application.applicant_id != user_id:
        raise UnauthorizedError("Only the applicant can pay the licence fee")
    if application.is_payment_complete:
        raise ConflictError("Payment", "application_id", application.id,
                            message="Licence fee has already been paid")
    if application.current_stage != S.PAYMENT_PENDING.value:
        raise InvalidTransitionError(application.current_stage, S.CLERK_PENDING.value,
                                     Trigger.PAYMENT_COMPLETION.value)

    now = now or utcnow()
    amount = licence_fee(application.position_type)
    txn = Transaction(
        transaction_id=generate_order_id(now),
        application_id=application.id,
        user_id=user_id,
        amount=amount,
        status=TransactionStatus.PENDING.value,
    )
    db.session.add(txn)
    db.session.flush()
    write_audit(entity_type="transaction", entity_id=txn.id, action="transaction.initiate",
                actor=application.email, actor_user_id=user_id,
                diff={"order_id": txn.transaction_id, "amount": amount})
    db.session.commit()

    gateway = gateway or PaymentGateway.from_config(current_app.config)
    initiation = PaymentInitiation(
        order_id=txn.transaction_id,
        amount=amount,
        application_id=application.id,
        customer_email=application.email,
        customer_mobile=application.mobile_number,
        return_url=current_app.config["PAYMENT_RETURN_URL"],
    )
    try:
        redirect = gateway.initiate(initiation)
    except PaymentGatewayError as exc:
        _fail(txn, str(exc))
        raise ExternalServiceError("payment_gateway", "Payment gateway is unavailable") from exc

    if not redirect.ok:
        _fail(txn, redirect.error or "order creation failed")
        raise ExternalServiceError("payment_gateway", f"Payment could not be initiated: {redirect.error}")

    txn.gateway_order_id = redirect.gateway_order_id
    db.session.commit()
    logger.info("Payment %s initiated for application %s", txn.transaction_id, application.id,
                extra={"application_id": application.id})
    return redirect


# ═════════════════════════════════════════════════════════════════════════════
# Callback
# ═════════════════════════════════════════════════════════════════════════════

def parse_callback(fields) -> PaymentCallback:
    """Verify the callback signature and normalise the fields."""
    secret = current_app.config.get("PAYMENT_CALLBACK_SECRET")
    if not secret:
        raise ConfigurationError("PAYMENT_CALLBACK_SECRET is not configured")
    if not verify_callback_signature(fields, secret):
        logger.warning("Payment callback refused: bad signature for order %s",
                       fields.get("orderid") or fields.get("order_id"))
        raise UnauthorizedError("Invalid payment callback signature", authenticated=False)
    return PaymentCallback.from_form(fields)


def handle_payment_callback(callback: PaymentCallback, *, now: datetime | None = None) -> Transaction:
    """Settle the transaction named by the gateway callback."""
    if not callback.order_id:
        raise ValidationError("order id is missing from the callback")
    txn = Transaction.query.filter_by(transaction_id=callback.order_id).first()
    if txn is None:
        raise NotFoundError("Transaction", callback.order_id)

    if txn.status != TransactionStatus.PENDING.value:
        logger.info("Callback for settled transaction %s (%s) ignored", txn.transaction_id, txn.status,
                    extra={"application_id": txn.application_id})
        return txn

    txn.gateway_reference = callback.gateway_reference
    txn.payment_mode = callback.payment_mode
    txn.card_type = callback.card_type

    if not callback.success:
        _fail(txn, callback.error_message or "payment declined")
        logger.info("Payment %s failed", txn.transaction_id,
                    extra={"application_id": txn.application_id})
        return txn

    if callback.amount is not None and callback.amount != Decimal(txn.amount):
        _fail(txn, f"amount mismatch: expected {txn.amount}, received {callback.amount}")
        logger.error("Payment %s amount mismatch", txn.transaction_id,
                     extra={"application_id": txn.application_id})
        return txn

    now = now or utcnow()
    try:
        application = (
            db.session.query(Application)
            .filter(Application.id == txn.application_id)
            .with_for_update()
            .first()
        )
        old_stage = application.current_stage
        transition = validate_transition(old_stage, S.CLERK_PENDING, Trigger.PAYMENT_COMPLETION)
        transition.authorize(Actor.system(), application)

        txn.status = TransactionStatus.SUCCESS.value
        txn.amount_paid = callback.amount if callback.amount is not None else txn.amount
        db.session.add(Payment(
            application_id=application.id,
            transaction_id=txn.id,
            amount=txn.amount_paid,
            payment_mode=callback.payment_mode,
            paid_at=now,
        ))
        application.is_payment_complete = True
        apply_transition(application, transition)
        write_audit(
            entity_type="transaction",
            entity_id=txn.id,
            action="transaction.success",
            diff={"order_id": txn.transaction_id,
                  "current_stage": [old_stage, application.current_stage]},
        )
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError(
            "Application", "version", txn.application_id,
            message="Application was modified concurrently; the callback can be retried",
        ) from exc

    logger.info("Payment %s captured; application %s moved to %s",
                txn.transaction_id, application.id, application.current_stage,
                extra={"application_id": application.id, "stage": application.current_stage})

    try:
        challan_service.generate_challan(application.id, now=now)
    except Exception:
        db.session.rollback()
        logger.exception("Challan generation failed for application %s", application.id,
                         extra={"application_id": application.id})

    notification_service.dispatch(
        notification_service.notify_payment_received,
        application.id, txn.transaction_id, txn.amount_paid,
    )
    notification_service.dispatch(
        notification_service.notify_next_officers, application.id, application.current_stage,
    )
    return txn
