"""
Document rendering — recommendation form and licence certificate.

Documents are rendered as self-contained HTML payloads and stored in the
blob store; PDF conversion is out of scope. The recommendation form is
the document officers sign through the HSM.
"""

from datetime import datetime, timezone
from html import escape

_RECOMMENDED_FORM = """<!DOCTYPE html>
<html lang="en"><head><meta charset="UTF-8"><title>Recommendation {application_number}</title></head>
<body style="font-family: Arial, sans-serif;">
<h2>Pune Municipal Corporation</h2>
<h3>Recommendation for Licence: {position}</h3>
<table>
<tr><td>Application No.</td><td>{application_number}</td></tr>
<tr><td>Name</td><td>{name}</td></tr>
<tr><td>Address</td><td>{address}</td></tr>
<tr><td>Mobile</td><td>{mobile}</td></tr>
<tr><td>Email</td><td>{email}</td></tr>
<tr><td>Qualifications</td><td>{qualifications}</td></tr>
<tr><td>Experience</td><td>{experience}</td></tr>
<tr><td>Submitted</td><td>{submitted}</td></tr>
</table>
<p>The applicant is recommended for the licence of {position} subject to the approval of
the competent authority.</p>
<div>Junior Engineer</div><div>Assistant Engineer</div>
<div>Executive Engineer</div><div>City Engineer</div>
</body></html>
"""

_CERTIFICATE = """<!DOCTYPE html>
<html lang="en"><head><meta charset="UTF-8"><title>Certificate {certificate_number}</title></head>
<body style="font-family: Arial, sans-serif;">
<h2>Pune Municipal Corporation</h2>
<h3>Licence Certificate</h3>
<p>Certificate No. <strong>{certificate_number}</strong></p>
<p>This is to certify that <strong>{name}</strong> is licensed as <strong>{position}</strong>
with the Pune Municipal Corporation for the period {validity}.</p>
<p>Application No. {application_number}. Issued on {issued}.</p>
</body></html>
"""

POSITION_TITLES = {
    "Architect": "Architect",
    "StructuralEngineer": "Structural Engineer",
    "LicenceEngineer": "Licence Engineer",
    "Supervisor1": "Supervisor (Category 1)",
    "Supervisor2": "Supervisor (Category 2)",
}


def position_title(position_type: str) -> str:
    return POSITION_TITLES.get(position_type, position_type)


def _address(application) -> str:
    addr = application.current_address or application.permanent_address
    return addr.one_line() if addr else ""


def render_recommended_form(application) -> bytes:
    qualifications = "; ".join(
        f"{q.degree_name or q.specialization or ''} ({q.institute_name}, {q.year_of_passing or '-'})"
        for q in application.qualifications
    )
    experience = "; ".join(
        f"{e.position or ''} at {e.company_name}" for e in application.experiences
    )
    submitted = application.submitted_date or datetime.now(timezone.utc)
    html = _RECOMMENDED_FORM.format(
        application_number=escape(application.application_number),
        position=escape(position_title(application.position_type)),
        name=escape(application.applicant_name),
        address=escape(_address(application)),
        mobile=escape(application.mobile_number or ""),
        email=escape(application.email or ""),
        qualifications=escape(qualifications or "-"),
        experience=escape(experience or "-"),
        submitted=submitted.strftime("%d/%m/%Y"),
    )
    return html.encode("utf-8")


def render_certificate(application, validity: str) -> bytes:
    issued = application.certificate_generated_date or datetime.now(timezone.utc)
    html = _CERTIFICATE.format(
        certificate_number=escape(application.certificate_number or ""),
        name=escape(application.applicant_name),
        position=escape(position_title(application.position_type)),
        validity=escape(validity),
        application_number=escape(application.application_number),
        issued=issued.strftime("%d/%m/%Y"),
    )
    return html.encode("utf-8")
