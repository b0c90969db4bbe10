"""
PMC Licensing Workflow
Payment domain models.

Models:
    - Transaction:  one gateway round trip (PENDING → SUCCESS | FAILED)
    - Payment:      a completed licence-fee payment
    - Challan:      generated payment receipt, at most one per application

Lifecycle:
    Transaction:  PENDING → SUCCESS
                  PENDING → FAILED
"""

from datetime import datetime, timezone

from pmcrms.models import db
from pmcrms.models.enums import TransactionStatus, in_clause


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else None


TRANSACTION_TRANSITIONS = {
    TransactionStatus.PENDING.value: [TransactionStatus.SUCCESS.value, TransactionStatus.FAILED.value],
    TransactionStatus.SUCCESS.value: [],
    TransactionStatus.FAILED.value: [],
}


class Transaction(db.Model):
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint(in_clause("status", TransactionStatus), name="ck_transaction_status"),
        db.Index("idx_transaction_application", "application_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(40), nullable=False, unique=True, comment="Merchant order id")
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.PENDING.value)
    gateway_order_id = db.Column(db.String(100))
    gateway_reference = db.Column(db.String(100))
    amount_paid = db.Column(db.Numeric(12, 2))
    payment_mode = db.Column(db.String(50))
    card_type = db.Column(db.String(50))
    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "application_id": self.application_id,
            "amount": _money(self.amount),
            "status": self.status,
            "gateway_order_id": self.gateway_order_id,
            "gateway_reference": self.gateway_reference,
            "amount_paid": _money(self.amount_paid),
            "payment_mode": self.payment_mode,
            "card_type": self.card_type,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Transaction {self.transaction_id}: {self.status}>"


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id"), nullable=False, unique=True,
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_mode = db.Column(db.String(50))
    paid_at = db.Column(db.DateTime, default=_utcnow)

    transaction = db.relationship("Transaction")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "transaction_id": self.transaction.transaction_id if self.transaction else None,
            "amount": _money(self.amount),
            "payment_mode": self.payment_mode,
            "paid_at": _iso(self.paid_at),
        }


class Challan(db.Model):
    __tablename__ = "challans"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    challan_number = db.Column(db.String(40), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    position = db.Column(db.String(50))
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    amount_in_words = db.Column(db.String(300))
    mobile_number = db.Column(db.String(20))
    address = db.Column(db.String(500))
    challan_date = db.Column(db.DateTime, default=_utcnow)
    file_path = db.Column(db.String(500))
    is_generated = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "challan_number": self.challan_number,
            "name": self.name,
            "position": self.position,
            "amount": _money(self.amount),
            "amount_in_words": self.amount_in_words,
            "challan_date": _iso(self.challan_date),
            "file_path": self.file_path,
            "is_generated": self.is_generated,
        }

    def __repr__(self):
        return f"<Challan {self.challan_number} app={self.application_id}>"
