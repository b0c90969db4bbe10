"""
PMC Licensing Workflow
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for workflow events.
"""

import json
from datetime import datetime, timezone

from pmcrms.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"application", "officer", "user", "transaction", "challan"}

AUDIT_ACTIONS = {
    # Application lifecycle
    "application.create",
    "application.stage_change",
    "application.schedule_appointment",
    "application.signature_otp",
    "application.sign",
    "application.signature_failed",
    "application.certificate_number",
    # Payments
    "transaction.initiate",
    "transaction.success",
    "transaction.failed",
    "challan.generate",
    # Identity
    "user.register",
    "user.invite",
    "officer.create",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every workflow event.

    One row per action. ``diff_json`` carries the old→new snapshot for
    stage changes and the relevant context for everything else.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor_user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="application | officer | user | transaction | challan",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity (UUID or int-as-string)",
    )
    action = db.Column(
        db.String(60), nullable=False,
        comment="application.stage_change | transaction.success | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime, nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
