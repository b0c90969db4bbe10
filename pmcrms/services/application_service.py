"""
Application Workflow Orchestrator.

Every workflow operation is one unit of work on ``db.session``:

    load (row lock) → authorize → validate edge → mutate → audit → commit
                                                                    │
                              notifications (fire-and-forget) ◀─────┘

Rules:
  - db.session.commit() happens only in the service layer.
  - Stage changes go through ``stage_transitions``; status is derived.
  - ``Application.version`` is the optimistic lock; a concurrent writer
    surfaces as ``ConflictError`` after rollback.
  - Application numbers are ``PMC_APPLICATION_<year>_<sequence>``; the
    (year, sequence) pair is unique and allocation retries on collision.
"""

import base64
import binascii
import logging
from datetime import datetime, time, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from pmcrms.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from pmcrms.models import db
from pmcrms.models.application import (
    Address,
    Application,
    Appointment,
    Document,
    Experience,
    OfficerAssignment,
    Qualification,
)
from pmcrms.models.audit import write_audit
from pmcrms.models.auth import User
from pmcrms.models.enums import ApplicationStage, ApplicationStatus, DocumentType, PositionType
from pmcrms.services import notification_service
from pmcrms.services.auth_service import get_officer_for_user, normalize_email
from pmcrms.services.certificate_service import assign_certificate_number
from pmcrms.services.file_service import FileService
from pmcrms.services.roles import classify_role
from pmcrms.services.stage_authorization import (
    CATEGORY_SCOPED_LEVELS,
    authorize_mutation,
    can_view_application,
    visible_stages,
)
from pmcrms.services.stage_transitions import (
    Actor,
    Trigger,
    apply_transition,
    is_terminal,
    validate_transition,
)
from pmcrms.utils.helpers import parse_date, parse_datetime, utcnow

logger = logging.getLogger(__name__)

S = ApplicationStage

MAX_NUMBER_ATTEMPTS = 5
MAX_CERTIFICATE_ATTEMPTS = 2
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

_REQUIRED_FIELDS = ("first_name", "last_name", "mobile_number", "email", "position_type")
_ADDRESS_REQUIRED = ("address_line1", "city", "state", "pin_code")


# ═════════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════════

def format_application_number(year: int, sequence: int) -> str:
    return f"PMC_APPLICATION_{year}_{sequence}"


def _next_sequence(year: int) -> int:
    current = (
        db.session.query(func.max(Application.number_sequence))
        .filter(Application.number_year == year)
        .scalar()
    )
    return (current or 0) + 1


def _load_for_update(application_id: str) -> Application:
    application = (
        db.session.query(Application)
        .filter(Application.id == application_id)
        .with_for_update()
        .first()
    )
    if application is None:
        raise NotFoundError("Application", application_id)
    return application


def _get_user(user_id: int | None) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None:
        raise UnauthorizedError("User not found", authenticated=False)
    return user


def _conflict(application_id: str) -> ConflictError:
    return ConflictError(
        "Application", "version", application_id,
        message="Application was modified by another officer; reload and retry",
    )


def _clean(value):
    if isinstance(value, str):
        value = value.strip()
    return value or None


# ── Form parsing ─────────────────────────────────────────────────────────────

def _parse_address(data, label: str) -> dict | None:
    if not data:
        return None
    if not isinstance(data, dict):
        raise ValidationError(f"{label} must be an object")
    missing = [f for f in _ADDRESS_REQUIRED if not _clean(data.get(f))]
    if missing:
        raise ValidationError(f"{label} is incomplete", details={label: missing})
    return {
        "address_line1": _clean(data.get("address_line1")),
        "address_line2": _clean(data.get("address_line2")),
        "address_line3": _clean(data.get("address_line3")),
        "city": _clean(data.get("city")),
        "state": _clean(data.get("state")),
        "country": _clean(data.get("country")) or "India",
        "pin_code": str(data.get("pin_code")).strip(),
    }


def _parse_qualifications(items) -> list[dict]:
    parsed = []
    for i, q in enumerate(items or []):
        if not _clean(q.get("institute_name")):
            raise ValidationError("institute_name is required", details={"qualifications": i})
        parsed.append({
            "institute_name": _clean(q.get("institute_name")),
            "university_name": _clean(q.get("university_name")),
            "specialization": _clean(q.get("specialization")),
            "degree_name": _clean(q.get("degree_name")),
            "passing_month": q.get("passing_month"),
            "year_of_passing": q.get("year_of_passing"),
        })
    return parsed


def _parse_experiences(items) -> list[dict]:
    parsed = []
    for i, e in enumerate(items or []):
        if not _clean(e.get("company_name")):
            raise ValidationError("company_name is required", details={"experiences": i})
        years = e.get("years_of_experience")
        try:
            years = Decimal(str(years)) if years not in (None, "") else None
        except InvalidOperation as exc:
            raise ValidationError("years_of_experience must be a number",
                                  details={"experiences": i}) from exc
        parsed.append({
            "company_name": _clean(e.get("company_name")),
            "position": _clean(e.get("position")),
            "years_of_experience": years,
            "from_date": parse_date(e.get("from_date")),
            "to_date": parse_date(e.get("to_date")),
        })
    return parsed


def _store_documents(items, file_service: FileService) -> list[dict]:
    """Validate uploaded documents and write their content to the blob store."""
    stored = []
    for i, d in enumerate(items or []):
        try:
            doc_type = DocumentType(d.get("document_type")).value
        except ValueError as exc:
            raise ValidationError(f"Unknown document_type {d.get('document_type')!r}",
                                  details={"documents": i}) from exc
        file_name = _clean(d.get("file_name")) or f"{doc_type}.bin"
        # Blob keys always come from this upload, never from the caller
        if not d.get("content_base64"):
            raise ValidationError("Document content is required", details={"documents": i})
        try:
            content = base64.b64decode(d["content_base64"], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("content_base64 is not valid base64",
                                  details={"documents": i}) from exc
        key = file_service.save(file_name, content)
        stored.append({"document_type": doc_type, "file_name": file_name, "file_path": key})
    return stored


def _parse_form(form_data: dict) -> dict:
    missing = [f for f in _REQUIRED_FIELDS if not _clean(form_data.get(f))]
    if missing:
        raise ValidationError("Required fields missing", details={"missing": missing})
    try:
        position = PositionType(form_data["position_type"]).value
    except ValueError as exc:
        raise ValidationError(f"Unknown position_type {form_data['position_type']!r}") from exc

    return {
        "first_name": _clean(form_data["first_name"]),
        "middle_name": _clean(form_data.get("middle_name")),
        "last_name": _clean(form_data["last_name"]),
        "mother_name": _clean(form_data.get("mother_name")),
        "mobile_number": _clean(form_data["mobile_number"]),
        "email": normalize_email(form_data["email"]),
        "position_type": position,
        "gender": _clean(form_data.get("gender")),
        "date_of_birth": parse_date(form_data.get("date_of_birth")),
        "blood_group": _clean(form_data.get("blood_group")),
        "pan_card_number": _clean(form_data.get("pan_card_number")),
        "aadhar_card_number": _clean(form_data.get("aadhar_card_number")),
        "coa_card_number": _clean(form_data.get("coa_card_number")),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════

def create_application(form_data: dict, applicant_id: int, *, now: datetime | None = None,
                       file_service: FileService | None = None) -> Application:
    """Submit a new licence application.

    Addresses, qualifications, experiences and documents are persisted in
    the same commit as the application. A number collision with a
    concurrent submission rolls back and retries with a fresh sequence.
    """
    applicant = db.session.get(User, applicant_id)
    if applicant is None:
        raise NotFoundError("User", applicant_id)

    fields = _parse_form(form_data or {})
    permanent = _parse_address(form_data.get("permanent_address"), "permanent_address")
    current = _parse_address(form_data.get("current_address"), "current_address")
    qualifications = _parse_qualifications(form_data.get("qualifications"))
    experiences = _parse_experiences(form_data.get("experiences"))
    documents = _store_documents(form_data.get("documents"),
                                 file_service or FileService.from_app())

    now = now or utcnow()
    year = now.year

    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        sequence = _next_sequence(year)
        application = Application(
            **fields,
            applicant_id=applicant.id,
            number_year=year,
            number_sequence=sequence,
            application_number=format_application_number(year, sequence),
            current_stage=S.JUNIOR_ENGINEER_PENDING.value,
            status=ApplicationStatus.SUBMITTED.value,
            submitted_date=now,
            permanent_address=Address(**permanent) if permanent else None,
            current_address=Address(**current) if current else None,
            qualifications=[Qualification(**q) for q in qualifications],
            experiences=[Experience(**e) for e in experiences],
            documents=[Document(**d) for d in documents],
        )
        db.session.add(application)
        try:
            db.session.flush()
            write_audit(
                entity_type="application",
                entity_id=application.id,
                action="application.create",
                actor=applicant.email,
                actor_user_id=applicant.id,
                diff={"application_number": application.application_number},
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.warning("Application number %s taken (attempt %d/%d)",
                           format_application_number(year, sequence), attempt, MAX_NUMBER_ATTEMPTS)
            continue

        logger.info("Application %s created", application.application_number,
                    extra={"application_id": application.id,
                           "stage": application.current_stage})
        notification_service.dispatch(
            notification_service.notify_next_officers, application.id, application.current_stage,
        )
        return application

    raise ConflictError(
        "Application", "application_number",
        message="Could not allocate an application number; please retry",
    )


# ═════════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════════

def _page_args(filters: dict) -> tuple[int, int]:
    try:
        page_number = max(int(filters.get("page_number") or 1), 1)
        page_size = int(filters.get("page_size") or DEFAULT_PAGE_SIZE)
    except (TypeError, ValueError) as exc:
        raise ValidationError("page_number and page_size must be integers") from exc
    return page_number, min(max(page_size, 1), MAX_PAGE_SIZE)


def list_applications(user_id: int, filters: dict | None = None) -> dict:
    """Applications visible to *user_id*, filtered and paginated.

    Officers see applications in the stages their level owns (Junior and
    Assistant officers only their own category); everyone else sees only
    the applications they submitted.
    """
    filters = filters or {}
    user = _get_user(user_id)
    info = classify_role(user.role)
    page_number, page_size = _page_args(filters)

    query = Application.query
    if info.is_officer:
        stages = [s.value for s in visible_stages(info.level)]
        if not stages:
            return {"items": [], "total": 0, "page_number": page_number, "page_size": page_size}
        query = query.filter(Application.current_stage.in_(stages))
        if info.level in CATEGORY_SCOPED_LEVELS:
            query = query.filter(Application.position_type == info.category.value)
    else:
        query = query.filter(Application.applicant_id == user.id)

    name = _clean(filters.get("applicant_name"))
    if name:
        full_name = Application.first_name + " " + Application.last_name
        query = query.filter(full_name.ilike(f"%{name}%"))
    status = _clean(filters.get("status"))
    if status:
        query = query.filter(Application.status == status)
    from_date = parse_date(filters.get("from_date"))
    if from_date:
        query = query.filter(Application.created_at >= datetime.combine(from_date, time.min))
    to_date = parse_date(filters.get("to_date"))
    if to_date:
        query = query.filter(
            Application.created_at < datetime.combine(to_date + timedelta(days=1), time.min)
        )

    total = query.count()
    items = (
        query.order_by(Application.created_at.desc(), Application.number_sequence.desc())
        .offset((page_number - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [a.summary_dict() for a in items],
        "total": total,
        "page_number": page_number,
        "page_size": page_size,
    }


def get_application(application_id: str, user_id: int) -> Application:
    """Application detail for its owner or an officer with rights at its stage."""
    application = db.session.get(Application, application_id)
    if application is None:
        raise NotFoundError("Application", application_id)
    user = _get_user(user_id)
    if not can_view_application(user.id, user.role, application):
        raise UnauthorizedError("You are not allowed to view this application")
    return application


def download_document(application_id: str, document_id: int, user_id: int, *,
                      file_service: FileService | None = None) -> tuple[str, bytes]:
    """(file name, content) of an uploaded document, after the view check."""
    application = get_application(application_id, user_id)
    document = next((d for d in application.documents if d.id == document_id), None)
    if document is None:
        raise NotFoundError("Document", document_id)
    content = (file_service or FileService.from_app()).read(document.file_path)
    return document.file_name or document.file_path, content


_OUTPUT_FILES = {
    "recommended-form": ("recommended_form_path", "recommended_form.html"),
    "certificate": ("certificate_path", "certificate.html"),
    "challan": ("challan_path", "challan.html"),
}


def download_output(application_id: str, kind: str, user_id: int, *,
                    file_service: FileService | None = None) -> tuple[str, bytes]:
    """Generated documents: recommendation form, certificate, challan."""
    if kind not in _OUTPUT_FILES:
        raise NotFoundError("Document", kind)
    application = get_application(application_id, user_id)
    attr, file_name = _OUTPUT_FILES[kind]
    key = getattr(application, attr)
    if not key:
        raise NotFoundError("Document", kind)
    content = (file_service or FileService.from_app()).read(key)
    return f"{application.application_number}_{file_name}", content


# ═════════════════════════════════════════════════════════════════════════════
# Stage changes
# ═════════════════════════════════════════════════════════════════════════════

def issue_certificate(application: Application, *, now: datetime | None = None) -> None:
    """Number and render the certificate of an approved application.

    Runs after the approval commit, so a failure is logged and leaves the
    approval in place. A serial taken by a concurrent approval is
    recomputed once.
    """
    for attempt in range(1, MAX_CERTIFICATE_ATTEMPTS + 1):
        try:
            assign_certificate_number(application, now=now)
            db.session.commit()
            return
        except IntegrityError:
            db.session.rollback()
            logger.warning("Certificate number taken for application %s (attempt %d/%d)",
                           application.id, attempt, MAX_CERTIFICATE_ATTEMPTS,
                           extra={"application_id": application.id})
        except Exception:
            db.session.rollback()
            logger.exception("Certificate numbering failed for application %s", application.id,
                             extra={"application_id": application.id})
            return
    logger.error("Certificate numbering gave up for application %s", application.id,
                 extra={"application_id": application.id})


def update_application_stage(application_id: str, new_stage: str, officer_user_id: int,
                             comments: str | None = None) -> Application:
    """Officer decision: move the application along an officer-decision edge."""
    try:
        application = _load_for_update(application_id)
        user = _get_user(officer_user_id)
        officer = get_officer_for_user(user.id)
        # Terminal stages have no owner, so check them before the rights check
        if is_terminal(application.current_stage):
            raise InvalidTransitionError(application.current_stage, new_stage,
                                         Trigger.OFFICER_DECISION.value)
        authorize_mutation(user.role, application.current_stage, application.position_type)
        transition = validate_transition(application.current_stage, new_stage,
                                         Trigger.OFFICER_DECISION)

        old_stage = application.current_stage
        now = utcnow()
        apply_transition(application, transition)
        if transition.target is S.APPROVED:
            application.approval_date = now
        if comments:
            application.remarks = comments
        db.session.add(OfficerAssignment(
            application=application,
            officer_id=officer.id,
            stage=old_stage,
            to_stage=application.current_stage,
            comments=comments,
            assigned_date=now,
            completed_date=now,
        ))
        write_audit(
            entity_type="application",
            entity_id=application.id,
            action="application.stage_change",
            actor=user.email,
            actor_user_id=user.id,
            diff={"current_stage": [old_stage, application.current_stage], "comments": comments},
        )
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent stage update on application %s", application_id,
                       extra={"application_id": application_id})
        raise _conflict(application_id) from exc

    new = application.current_stage
    logger.info("Application %s moved %s → %s", application.id, old_stage, new,
                extra={"application_id": application.id, "officer_id": officer.id, "stage": new})

    if transition.target is S.APPROVED:
        issue_certificate(application)

    notification_service.dispatch(
        notification_service.notify_stage_change,
        application.id, old_stage, new, user.role, comments,
    )
    notification_service.dispatch(notification_service.notify_next_officers, application.id, new)
    return application


def schedule_appointment(application_id: str, details: dict, officer_user_id: int) -> Appointment:
    """Junior officer books the document-verification appointment.

    The appointment and the move to DOCUMENT_VERIFICATION_PENDING commit together.
    """
    details = details or {}
    try:
        application = _load_for_update(application_id)
        if application.current_stage != S.JUNIOR_ENGINEER_PENDING.value:
            raise InvalidTransitionError(application.current_stage,
                                         S.DOCUMENT_VERIFICATION_PENDING.value,
                                         Trigger.APPOINTMENT_SCHEDULING.value)
        user = _get_user(officer_user_id)
        officer = get_officer_for_user(user.id)
        transition = validate_transition(application.current_stage,
                                         S.DOCUMENT_VERIFICATION_PENDING,
                                         Trigger.APPOINTMENT_SCHEDULING)
        transition.authorize(Actor(user.id, user.role), application)

        appointment_date = parse_datetime(details.get("appointment_date"))
        place = _clean(details.get("place"))
        if appointment_date is None or not place:
            raise ValidationError("appointment_date and place are required")
        if application.appointment is not None:
            raise ConflictError("Appointment", "application_id", application.id)

        old_stage = application.current_stage
        now = utcnow()
        appointment = Appointment(
            application=application,
            scheduled_by_officer_id=officer.id,
            appointment_date=appointment_date,
            place=place,
            room_number=_clean(details.get("room_number")),
            contact_person=_clean(details.get("contact_person")),
            comments=_clean(details.get("comments")),
        )
        db.session.add(appointment)
        apply_transition(application, transition)
        db.session.add(OfficerAssignment(
            application=application,
            officer_id=officer.id,
            stage=old_stage,
            to_stage=application.current_stage,
            comments=appointment.comments,
            assigned_date=now,
            completed_date=now,
        ))
        write_audit(
            entity_type="application",
            entity_id=application.id,
            action="application.schedule_appointment",
            actor=user.email,
            actor_user_id=user.id,
            diff={"appointment_date": appointment_date, "place": place},
        )
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise _conflict(application_id) from exc

    logger.info("Appointment scheduled for application %s", application.id,
                extra={"application_id": application.id, "officer_id": officer.id})
    notification_service.dispatch(notification_service.notify_appointment_scheduled, application.id)
    notification_service.dispatch(
        notification_service.notify_next_officers, application.id, application.current_stage,
    )
    return appointment
