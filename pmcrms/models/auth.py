"""
PMC Licensing Workflow
Identity models.

Models:
    - User:     login identity; carries the role string (applicant "User"
                or one of the officer roles)
    - Officer:  one-to-one officer profile, created lazily the first time an
                invited officer sets a password; holds the HSM key label
"""

from datetime import datetime, timezone

from pmcrms.models import db

USER_STATUSES = {"active", "invited", "inactive"}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    password_hash = db.Column(db.String(256))  # NULL for invited-pending officers
    full_name = db.Column(db.String(200))
    phone_number = db.Column(db.String(20))
    role = db.Column(db.String(50), nullable=False, default="User")
    status = db.Column(db.String(20), default="active")  # active, invited, inactive
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_role", "role"),
    )

    officer = db.relationship("Officer", back_populates="user", uselist=False)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "phone_number": self.phone_number,
            "role": self.role,
            "status": self.status,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


class Officer(db.Model):
    __tablename__ = "officers"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    phone_number = db.Column(db.String(20))
    key_label = db.Column(db.String(100), comment="HSM key label used to route signing requests")
    digital_signature_path = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User", back_populates="officer")

    @property
    def role(self) -> str | None:
        return self.user.role if self.user else None

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p)
        return name or (self.user.full_name if self.user else "") or f"Officer {self.id}"

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone_number": self.phone_number,
            "role": self.role,
            "has_key_label": bool(self.key_label),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Officer {self.id}: user={self.user_id} role={self.role}>"
