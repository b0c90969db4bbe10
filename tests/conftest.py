"""
Shared pytest fixtures for the PMC licensing workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_officer / make_application: ORM factories that
      bypass the API to set arbitrary starting states
    - auth_headers: Bearer header for a user
    - sent_emails: records what EmailService.send was given
"""

import itertools

import pytest

from pmcrms import create_app
from pmcrms.models import db as _db
from pmcrms.models.application import Address, Application
from pmcrms.models.auth import Officer, User
from pmcrms.services.email_service import EmailService
from pmcrms.services.jwt_service import generate_access_token
from pmcrms.services.stage_transitions import status_for_stage


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db, tmp_path):
    """Per-test: open app context, isolated blob store, rollback + recreate tables."""
    app.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────

_seq = itertools.count(1)


@pytest.fixture()
def make_user():
    def _make(role="User", email=None, status="active", full_name="Test User", password_hash=None):
        n = next(_seq)
        user = User(
            email=email or f"user{n}@example.com",
            full_name=full_name,
            role=role,
            status=status,
            password_hash=password_hash,
        )
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def make_officer(make_user):
    def _make(role, key_label="KEY-1", email=None):
        user = make_user(role=role, email=email, full_name=f"{role} Officer")
        officer = Officer(user=user, first_name=role, last_name="Officer", key_label=key_label)
        _db.session.add(officer)
        _db.session.commit()
        return officer
    return _make


@pytest.fixture()
def applicant(make_user):
    return make_user(role="User", email="applicant@example.com", full_name="Asha Patil")


@pytest.fixture()
def make_application(applicant):
    counter = itertools.count(1)

    def _make(stage="JUNIOR_ENGINEER_PENDING", position_type="Architect", applicant_id=None,
              first_name="Asha", last_name="Patil", year=2026, **extra):
        seq = next(counter)
        application = Application(
            application_number=f"PMC_APPLICATION_{year}_{seq}",
            number_year=year,
            number_sequence=seq,
            applicant_id=applicant_id or applicant.id,
            first_name=first_name,
            last_name=last_name,
            mobile_number="9876543210",
            email="applicant@example.com",
            position_type=position_type,
            current_stage=stage,
            status=status_for_stage(stage).value,
            permanent_address=Address(address_line1="12 FC Road", city="Pune",
                                      state="Maharashtra", pin_code="411004"),
            **extra,
        )
        _db.session.add(application)
        _db.session.commit()
        return application
    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user):
        token = generate_access_token(user.id, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture()
def sent_emails(monkeypatch):
    """Keyword arguments of every EmailService.send call, in order."""
    sent = []
    original = EmailService.send

    def _record(**kwargs):
        sent.append(kwargs)
        return original(**kwargs)

    monkeypatch.setattr(EmailService, "send", _record)
    return sent
