"""
PMC Licensing Workflow
Application aggregate — licence application and its dependents.

Models:
    - Application:        aggregate root; carries the workflow stage and its
                          derived display status
    - Address:            permanent / current address of the applicant
    - Qualification:      education record submitted with the application
    - Experience:         professional experience record
    - Document:           uploaded supporting document (blob-store key)
    - Appointment:        document-verification appointment (one per application)
    - OfficerAssignment:  append-only history of officer actions per stage

Architecture:
    User ──1:N──▶ Application ──1:N──▶ Qualification / Experience / Document
    Application ──1:1──▶ Appointment
    Application ──1:N──▶ OfficerAssignment ◀──N:1── Officer

Lifecycle:
    Application.current_stage only changes through
    ``pmcrms.services.stage_transitions``; ``status`` is a pure function of
    the stage. ``version`` is the optimistic-lock counter.
"""

import uuid
from datetime import datetime, timezone

from pmcrms.models import db
from pmcrms.models.enums import (
    ApplicationStage,
    ApplicationStatus,
    AppointmentStatus,
    DocumentType,
    PositionType,
    in_clause,
)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Application
# ═════════════════════════════════════════════════════════════════════════════

class Application(db.Model):
    __tablename__ = "applications"
    __table_args__ = (
        db.UniqueConstraint("number_year", "number_sequence", name="uq_application_year_sequence"),
        db.CheckConstraint(in_clause("current_stage", ApplicationStage), name="ck_application_stage"),
        db.CheckConstraint(in_clause("status", ApplicationStatus), name="ck_application_status"),
        db.CheckConstraint(in_clause("position_type", PositionType), name="ck_application_position"),
        db.Index("idx_application_stage_position", "current_stage", "position_type"),
        db.Index("idx_application_applicant", "applicant_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    application_number = db.Column(db.String(64), nullable=False, unique=True)
    number_year = db.Column(db.Integer, nullable=False)
    number_sequence = db.Column(db.Integer, nullable=False)

    applicant_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
    )

    # ── Applicant facts ──────────────────────────────────────────────────
    first_name = db.Column(db.String(100), nullable=False)
    middle_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100), nullable=False)
    mother_name = db.Column(db.String(100))
    mobile_number = db.Column(db.String(20), nullable=False)
    email = db.Column(db.String(200), nullable=False)
    position_type = db.Column(db.String(30), nullable=False)
    gender = db.Column(db.String(20))
    date_of_birth = db.Column(db.Date)
    blood_group = db.Column(db.String(10))
    pan_card_number = db.Column(db.String(20))
    aadhar_card_number = db.Column(db.String(20))
    coa_card_number = db.Column(db.String(50))

    permanent_address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"))
    current_address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"))

    # ── Workflow state ───────────────────────────────────────────────────
    current_stage = db.Column(
        db.String(40), nullable=False, default=ApplicationStage.JUNIOR_ENGINEER_PENDING.value,
    )
    status = db.Column(db.String(40), nullable=False, default=ApplicationStatus.SUBMITTED.value)
    submitted_date = db.Column(db.DateTime, default=_utcnow)
    approval_date = db.Column(db.DateTime)
    remarks = db.Column(db.Text)

    is_digitally_signed = db.Column(db.Boolean, nullable=False, default=False)
    digital_signature_date = db.Column(db.DateTime)
    signed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    recommended_form_path = db.Column(db.String(500), comment="Blob key of the document pending signature")

    is_payment_complete = db.Column(db.Boolean, nullable=False, default=False)

    is_challan_generated = db.Column(db.Boolean, nullable=False, default=False)
    challan_path = db.Column(db.String(500))

    is_certificate_generated = db.Column(db.Boolean, nullable=False, default=False)
    certificate_number = db.Column(db.String(64), unique=True)
    certificate_generated_date = db.Column(db.DateTime)
    certificate_path = db.Column(db.String(500))

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    # ── Relationships ────────────────────────────────────────────────────
    applicant = db.relationship("User", foreign_keys=[applicant_id])
    permanent_address = db.relationship("Address", foreign_keys=[permanent_address_id])
    current_address = db.relationship("Address", foreign_keys=[current_address_id])
    qualifications = db.relationship(
        "Qualification", back_populates="application", cascade="all, delete-orphan",
    )
    experiences = db.relationship(
        "Experience", back_populates="application", cascade="all, delete-orphan",
    )
    documents = db.relationship(
        "Document", back_populates="application", cascade="all, delete-orphan",
    )
    appointment = db.relationship(
        "Appointment", back_populates="application", uselist=False, cascade="all, delete-orphan",
    )
    assignments = db.relationship(
        "OfficerAssignment", back_populates="application",
        order_by="OfficerAssignment.id", cascade="all, delete-orphan",
    )

    @property
    def applicant_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.middle_name, self.last_name) if p)

    def summary_dict(self):
        return {
            "id": self.id,
            "application_number": self.application_number,
            "applicant_name": self.applicant_name,
            "position_type": self.position_type,
            "current_stage": self.current_stage,
            "status": self.status,
            "submitted_date": _iso(self.submitted_date),
            "created_at": _iso(self.created_at),
        }

    def to_dict(self, include_children=False):
        d = {
            **self.summary_dict(),
            "applicant_id": self.applicant_id,
            "first_name": self.first_name,
            "middle_name": self.middle_name,
            "last_name": self.last_name,
            "mother_name": self.mother_name,
            "mobile_number": self.mobile_number,
            "email": self.email,
            "gender": self.gender,
            "date_of_birth": _iso(self.date_of_birth),
            "blood_group": self.blood_group,
            "pan_card_number": self.pan_card_number,
            "aadhar_card_number": self.aadhar_card_number,
            "coa_card_number": self.coa_card_number,
            "approval_date": _iso(self.approval_date),
            "is_digitally_signed": self.is_digitally_signed,
            "digital_signature_date": _iso(self.digital_signature_date),
            "signed_by": self.signed_by,
            "is_payment_complete": self.is_payment_complete,
            "is_challan_generated": self.is_challan_generated,
            "is_certificate_generated": self.is_certificate_generated,
            "certificate_number": self.certificate_number,
            "certificate_generated_date": _iso(self.certificate_generated_date),
            "version": self.version,
        }
        if include_children:
            d["permanent_address"] = self.permanent_address.to_dict() if self.permanent_address else None
            d["current_address"] = self.current_address.to_dict() if self.current_address else None
            d["qualifications"] = [q.to_dict() for q in self.qualifications]
            d["experiences"] = [e.to_dict() for e in self.experiences]
            d["documents"] = [doc.to_dict() for doc in self.documents]
            d["appointment"] = self.appointment.to_dict() if self.appointment else None
            d["assignments"] = [a.to_dict() for a in self.assignments]
        return d

    def __repr__(self):
        return f"<Application {self.application_number} [{self.current_stage}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Submitted details
# ═════════════════════════════════════════════════════════════════════════════

class Address(db.Model):
    __tablename__ = "addresses"

    id = db.Column(db.Integer, primary_key=True)
    address_line1 = db.Column(db.String(200), nullable=False)
    address_line2 = db.Column(db.String(200))
    address_line3 = db.Column(db.String(200))
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(100), nullable=False)
    country = db.Column(db.String(100), default="India")
    pin_code = db.Column(db.String(10), nullable=False)

    def one_line(self) -> str:
        parts = (self.address_line1, self.address_line2, self.address_line3,
                 self.city, self.state, self.pin_code, self.country)
        return ", ".join(p for p in parts if p)

    def to_dict(self):
        return {
            "id": self.id,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "address_line3": self.address_line3,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "pin_code": self.pin_code,
        }


class Qualification(db.Model):
    __tablename__ = "qualifications"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    institute_name = db.Column(db.String(200), nullable=False)
    university_name = db.Column(db.String(200))
    specialization = db.Column(db.String(30), comment="Diploma | Degree | SSC | HSC")
    degree_name = db.Column(db.String(200))
    passing_month = db.Column(db.Integer)
    year_of_passing = db.Column(db.Integer)

    application = db.relationship("Application", back_populates="qualifications")

    def to_dict(self):
        return {
            "id": self.id,
            "institute_name": self.institute_name,
            "university_name": self.university_name,
            "specialization": self.specialization,
            "degree_name": self.degree_name,
            "passing_month": self.passing_month,
            "year_of_passing": self.year_of_passing,
        }


class Experience(db.Model):
    __tablename__ = "experiences"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    company_name = db.Column(db.String(200), nullable=False)
    position = db.Column(db.String(100))
    years_of_experience = db.Column(db.Numeric(4, 1))
    from_date = db.Column(db.Date)
    to_date = db.Column(db.Date)

    application = db.relationship("Application", back_populates="experiences")

    def to_dict(self):
        return {
            "id": self.id,
            "company_name": self.company_name,
            "position": self.position,
            "years_of_experience": float(self.years_of_experience) if self.years_of_experience is not None else None,
            "from_date": _iso(self.from_date),
            "to_date": _iso(self.to_date),
        }


class Document(db.Model):
    __tablename__ = "documents"
    __table_args__ = (
        db.CheckConstraint(in_clause("document_type", DocumentType), name="ck_document_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    document_type = db.Column(db.String(40), nullable=False)
    file_path = db.Column(db.String(500), nullable=False, comment="Blob-store key")
    file_name = db.Column(db.String(255))
    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=_utcnow)

    application = db.relationship("Application", back_populates="documents")

    def to_dict(self):
        return {
            "id": self.id,
            "document_type": self.document_type,
            "file_name": self.file_name,
            "is_verified": self.is_verified,
            "created_at": _iso(self.created_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. Workflow records
# ═════════════════════════════════════════════════════════════════════════════

class Appointment(db.Model):
    __tablename__ = "appointments"
    __table_args__ = (
        db.CheckConstraint(in_clause("status", AppointmentStatus), name="ck_appointment_status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    scheduled_by_officer_id = db.Column(db.Integer, db.ForeignKey("officers.id"), nullable=False)
    appointment_date = db.Column(db.DateTime, nullable=False)
    place = db.Column(db.String(200), nullable=False)
    room_number = db.Column(db.String(50))
    contact_person = db.Column(db.String(100))
    comments = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default=AppointmentStatus.SCHEDULED.value)
    created_at = db.Column(db.DateTime, default=_utcnow)

    application = db.relationship("Application", back_populates="appointment")
    scheduled_by = db.relationship("Officer")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "scheduled_by_officer_id": self.scheduled_by_officer_id,
            "appointment_date": _iso(self.appointment_date),
            "place": self.place,
            "room_number": self.room_number,
            "contact_person": self.contact_person,
            "comments": self.comments,
            "status": self.status,
        }


class OfficerAssignment(db.Model):
    """Append-only: one row per officer action on an application."""

    __tablename__ = "officer_assignments"
    __table_args__ = (
        db.Index("idx_assignment_application", "application_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.String(36), db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False,
    )
    officer_id = db.Column(db.Integer, db.ForeignKey("officers.id"), nullable=False)
    stage = db.Column(db.String(40), nullable=False, comment="Stage the officer acted on")
    to_stage = db.Column(db.String(40), comment="Stage the application moved to")
    comments = db.Column(db.Text)
    is_digitally_signed = db.Column(db.Boolean, nullable=False, default=False)
    assigned_date = db.Column(db.DateTime, default=_utcnow)
    completed_date = db.Column(db.DateTime)

    application = db.relationship("Application", back_populates="assignments")
    officer = db.relationship("Officer")

    def to_dict(self):
        return {
            "id": self.id,
            "officer_id": self.officer_id,
            "officer_name": self.officer.display_name if self.officer else None,
            "stage": self.stage,
            "to_stage": self.to_stage,
            "comments": self.comments,
            "is_digitally_signed": self.is_digitally_signed,
            "assigned_date": _iso(self.assigned_date),
            "completed_date": _iso(self.completed_date),
        }

    def __repr__(self):
        return f"<OfficerAssignment {self.id}: officer={self.officer_id} {self.stage}→{self.to_stage}>"
