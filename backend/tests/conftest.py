import importlib
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# Ensure JWT_SECRET exists before importing jobboard.main (it calls require_jwt_secret() at import time).
os.environ.setdefault("JWT_SECRET", "test_jwt_secret")
# Keep the module-level engine off Postgres; tests bind their own in-memory engine.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jobboard.core.base import Base
from jobboard.core import config as app_config

# Import models so they register with SQLAlchemy metadata.
from jobboard.models.user import User  # noqa: F401
from jobboard.models.job import Job  # noqa: F401
from jobboard.models.application import Application  # noqa: F401
from jobboard.models.application_note import ApplicationNote  # noqa: F401
from jobboard.models.calendar_credential import CalendarCredential  # noqa: F401
from jobboard.models.interview_token import InterviewToken  # noqa: F401
from jobboard.models.interview_reschedule_request import InterviewRescheduleRequest  # noqa: F401

from jobboard.core.database import get_db
from jobboard.dependencies.auth import get_current_user
from jobboard.dependencies.interviews import get_interview_scheduler, get_response_handler
from jobboard.services.calendar import CalendarEvent, Credential, CredentialStore, EventSpec
from jobboard.services.calendar_credentials import CalendarCredentialStore
from jobboard.services.email import DeliveryResult, DeliveryStatus
from jobboard.services.interview_responses import InterviewResponseHandler
from jobboard.services.interview_scheduler import InterviewScheduler

# 2025-02-20 12:00 UTC; every scheduling test books a slot after this.
FIXED_NOW = datetime(2025, 2, 20, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@dataclass
class SentEmail:
    to: str
    subject: str
    html_body: str
    text_body: str


class FakeEmailSender:
    """Stands in for EmailSender; records sends and answers with a configurable status."""

    def __init__(self, status: DeliveryStatus = DeliveryStatus.sent, error: str | None = None):
        self.status = status
        self.error = error
        self.sent: list[SentEmail] = []

    def send(self, to: str, subject: str, html_body: str, text_body: str) -> DeliveryResult:
        self.sent.append(SentEmail(to=to, subject=subject, html_body=html_body, text_body=text_body))
        return DeliveryResult(status=self.status, provider="fake", message_id="msg_test_123", error=self.error)


@dataclass
class FakeCalendarProvider:
    """In-memory calendar; records hold events instead of calling a real API."""

    store: CredentialStore | None = None
    name: str = "google"
    meeting_link: str | None = "https://meet.google.com/abc-defg-hij"
    fail_with: Exception | None = None
    events: list[EventSpec] = field(default_factory=list)
    refreshed: list[Credential] = field(default_factory=list)

    def ensure_fresh_credentials(self, credential: Credential) -> Credential:
        self.refreshed.append(credential)
        return credential

    def create_hold_event(self, credential: Credential, spec: EventSpec) -> CalendarEvent:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(spec)
        return CalendarEvent(
            id=f"evt_{len(self.events)}",
            html_link=f"https://calendar.example.invalid/evt_{len(self.events)}",
            meeting_link=self.meeting_link if spec.request_meeting_link else None,
            start=spec.start,
            end=spec.end,
        )


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # Important: because we use an in-memory SQLite DB with StaticPool, the DB
    # persists across tests. Reset schema per test to avoid cross-test coupling.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests sometimes tweak global settings (app_config.settings.*). Because that object is
    process-global, we must restore values after each test to avoid cross-test coupling.
    """
    keys = [
        "EMAIL_ENABLED",
        "EMAIL_PROVIDER",
        "FRONTEND_BASE_URL",
        "INTERVIEW_TOKEN_TTL_DAYS",
        "DEFAULT_INTERVIEW_TIMEZONE",
        "ENABLE_RATE_LIMITING",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)
        # Default all tests to "rate limiting disabled" unless a test explicitly reloads routes with it enabled.
        app_config.settings.ENABLE_RATE_LIMITING = False


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def email_sender():
    return FakeEmailSender()


@pytest.fixture()
def calendar():
    return FakeCalendarProvider()


@pytest.fixture()
def manager(db_session):
    user = User(email="manager@co.com", first_name="Hannah", last_name="Manager", is_active=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def job(db_session, manager):
    row = Job(title="Backend Engineer", created_by_id=manager.id)
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.fixture()
def application(db_session, job):
    row = Application(job_id=job.id, name="Alice Candidate", email="alice@candidate.com", status="Reviewing")
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.fixture()
def connected_calendar(db_session, manager):
    return CalendarCredentialStore(db_session).save_calendar_credential(
        manager.id,
        Credential(
            user_id=manager.id,
            provider="google",
            access_token="ya29.access",
            refresh_token="1//refresh",
            expires_at=FIXED_NOW + timedelta(hours=1),
        ),
    )


@pytest.fixture()
def scheduler(db_session, calendar, email_sender, clock):
    def provider_factory(name, store):
        calendar.store = store
        return calendar

    return InterviewScheduler(
        db_session,
        email_sender=email_sender,
        provider_factory=provider_factory,
        clock=clock,
    )


@pytest.fixture()
def response_handler(db_session, email_sender, clock):
    return InterviewResponseHandler(db_session, email_sender=email_sender, clock=clock)


@pytest.fixture()
def app(db_session, scheduler, response_handler):
    # Ensure settings has a JWT secret even if imported earlier.
    app_config.settings.JWT_SECRET = app_config.settings.JWT_SECRET or "test_jwt_secret"
    app_config.settings.ENABLE_RATE_LIMITING = False

    # SlowAPI decorators bind at import time, so we reload the public routes + app with rate
    # limiting disabled (the rate limiting test reloads modules with it enabled).
    import jobboard.routes.interview_links as interview_links_routes
    import jobboard.main as main

    importlib.reload(interview_links_routes)
    importlib.reload(main)
    fastapi_app = main.app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_interview_scheduler] = lambda: scheduler
    fastapi_app.dependency_overrides[get_response_handler] = lambda: response_handler
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app, manager):
    """
    Default client authenticated as the hiring manager.
    """
    app.dependency_overrides[get_current_user] = lambda: manager
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture()
def public_client(app):
    """Unauthenticated client, as a candidate following an email link."""
    with TestClient(app) as c:
        yield c

