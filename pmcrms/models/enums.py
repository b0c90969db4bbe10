"""
Canonical string values for workflow columns.

Columns store the ``.value`` strings (guarded by CHECK constraints in the
model modules); services work with these enums.
"""

from enum import Enum


class ApplicationStage(str, Enum):
    JUNIOR_ENGINEER_PENDING = "JUNIOR_ENGINEER_PENDING"
    DOCUMENT_VERIFICATION_PENDING = "DOCUMENT_VERIFICATION_PENDING"
    ASSISTANT_ENGINEER_PENDING = "ASSISTANT_ENGINEER_PENDING"
    EXECUTIVE_ENGINEER_PENDING = "EXECUTIVE_ENGINEER_PENDING"
    CITY_ENGINEER_PENDING = "CITY_ENGINEER_PENDING"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    CLERK_PENDING = "CLERK_PENDING"
    EXECUTIVE_ENGINEER_SIGN_PENDING = "EXECUTIVE_ENGINEER_SIGN_PENDING"
    CITY_ENGINEER_SIGN_PENDING = "CITY_ENGINEER_SIGN_PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApplicationStatus(str, Enum):
    """Display status; always derived from the stage."""

    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    UNDER_REVIEW = "UnderReview"
    DOCUMENT_VERIFICATION_PENDING = "DocumentVerificationPending"
    DOCUMENT_VERIFIED = "DocumentVerified"
    APPOINTMENT_SCHEDULED = "AppointmentScheduled"
    APPOINTMENT_COMPLETED = "AppointmentCompleted"
    JUNIOR_ENGINEER_APPROVED = "JuniorEngineerApproved"
    ASSISTANT_ENGINEER_APPROVED = "AssistantEngineerApproved"
    EXECUTIVE_ENGINEER_APPROVED = "ExecutiveEngineerApproved"
    CITY_ENGINEER_APPROVED = "CityEngineerApproved"
    PAYMENT_PENDING = "PaymentPending"
    PAYMENT_COMPLETED = "PaymentCompleted"
    CLERK_APPROVED = "ClerkApproved"
    DIGITALLY_SIGNED_BY_EXECUTIVE = "DigitallySignedByExecutive"
    DIGITALLY_SIGNED_BY_CITY = "DigitallySignedByCity"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class PositionType(str, Enum):
    """Professional category an application is filed under."""

    ARCHITECT = "Architect"
    STRUCTURAL_ENGINEER = "StructuralEngineer"
    LICENCE_ENGINEER = "LicenceEngineer"
    SUPERVISOR1 = "Supervisor1"
    SUPERVISOR2 = "Supervisor2"


class DocumentType(str, Enum):
    PHOTO = "Photo"
    SIGNATURE = "Signature"
    PAN_CARD = "PanCard"
    AADHAR_CARD = "AadharCard"
    ADDRESS_PROOF = "AddressProof"
    QUALIFICATION_CERTIFICATE = "QualificationCertificate"
    EXPERIENCE_CERTIFICATE = "ExperienceCertificate"
    COA_CERTIFICATE = "CoaCertificate"
    OTHER = "Other"


class AppointmentStatus(str, Enum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    RESCHEDULED = "Rescheduled"


class OtpPurpose(str, Enum):
    LOGIN = "LOGIN"
    DIGITAL_SIGNATURE = "DIGITAL_SIGNATURE"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


def values(enum_cls) -> list[str]:
    """Return the stored string values of an enum, in declaration order."""
    return [member.value for member in enum_cls]


def in_clause(column: str, enum_cls) -> str:
    """Build the SQL text of a CHECK constraint restricting *column* to *enum_cls*."""
    quoted = ", ".join(f"'{v}'" for v in values(enum_cls))
    return f"{column} IN ({quoted})"
