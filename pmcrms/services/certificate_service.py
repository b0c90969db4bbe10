"""
Certificate numbering and issue for approved applications.

Number format:  PMC/<prefix>/<n>/<year>-<year+3>

    prefix  ARCH | STR.ENGG | LIC.ENGG | SUPER1 | SUPER2 (by position type)
    n       certificates already issued that day + 1
    years   three-year licence validity starting in the issue year

Assignment is idempotent: an application that already carries a number
keeps it.
"""

import logging
from datetime import datetime, timedelta

from pmcrms.models import db
from pmcrms.models.application import Application
from pmcrms.models.audit import write_audit
from pmcrms.services.document_service import render_certificate
from pmcrms.services.file_service import FileService
from pmcrms.utils.helpers import utcnow

logger = logging.getLogger(__name__)

CERTIFICATE_PREFIXES = {
    "Architect": "ARCH",
    "StructuralEngineer": "STR.ENGG",
    "LicenceEngineer": "LIC.ENGG",
    "Supervisor1": "SUPER1",
    "Supervisor2": "SUPER2",
}

LICENCE_VALIDITY_YEARS = 3


def _add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 February
        return value.replace(year=value.year + years, day=28)


def _issued_on(day_start: datetime) -> int:
    return (
        Application.query
        .filter(Application.certificate_generated_date >= day_start)
        .filter(Application.certificate_generated_date < day_start + timedelta(days=1))
        .count()
    )


def format_certificate_number(position_type: str, serial: int, year: int) -> str:
    prefix = CERTIFICATE_PREFIXES.get(position_type, "ARCH")
    return f"PMC/{prefix}/{serial}/{year}-{year + LICENCE_VALIDITY_YEARS}"


def assign_certificate_number(application: Application, *, now: datetime | None = None,
                              file_service: FileService | None = None) -> str:
    """Give *application* its certificate number and render the certificate.

    Flushes but does not commit.
    """
    if application.certificate_number:
        return application.certificate_number

    now = now or utcnow()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    serial = _issued_on(day_start) + 1
    number = format_certificate_number(application.position_type, serial, now.year)

    application.certificate_number = number
    application.certificate_generated_date = now
    application.is_certificate_generated = True

    file_service = file_service or FileService.from_app()
    validity = f"{now:%d/%m/%Y} to {_add_years(now, LICENCE_VALIDITY_YEARS):%d/%m/%Y}"
    application.certificate_path = file_service.save(
        f"certificate_{application.id}.html",
        render_certificate(application, validity),
    )

    write_audit(
        entity_type="application",
        entity_id=application.id,
        action="application.certificate_number",
        diff={"certificate_number": number},
    )
    logger.info("Certificate %s assigned to application %s", number, application.id,
                extra={"application_id": application.id})
    return number
