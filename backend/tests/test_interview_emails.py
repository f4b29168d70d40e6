from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jobboard.core import config as app_config
from jobboard.models.application import Application
from jobboard.models.interview_reschedule_request import InterviewRescheduleRequest
from jobboard.models.interview_token import InterviewToken
from jobboard.models.job import Job
from jobboard.services.interview_emails import (
    candidate_invitation,
    format_when,
    hiring_manager_accepted,
    hiring_manager_reschedule,
)


def _application(name="Alice Candidate") -> Application:
    return Application(id=7, name=name, email="alice@candidate.com", job=Job(title="Backend Engineer"))


def _token(**overrides) -> InterviewToken:
    data = dict(
        id=3,
        acceptance_token="a" * 64,
        reschedule_token="b" * 64,
        scheduled_at=datetime(2025, 3, 1, 15, 0, tzinfo=timezone.utc),
        timezone="America/New_York",
        duration_minutes=45,
        interview_type="video",
        interviewers=[],
        meeting_link="https://meet.google.com/abc-defg-hij",
        expires_at=datetime(2025, 2, 27, 12, 0, tzinfo=timezone.utc),
        agenda="Intro\nSystem design",
    )
    data.update(overrides)
    return InterviewToken(**data)


def test_format_when_uses_interview_timezone():
    assert format_when(datetime(2025, 3, 1, 15, 0), "America/New_York") == "Saturday, March 1, 2025 at 10:00 AM EST"


def test_invitation_links_use_frontend_base_url(monkeypatch):
    monkeypatch.setattr(app_config.settings, "FRONTEND_BASE_URL", "https://jobs.co.com")

    content = candidate_invitation(_application(), _token())

    assert content.subject == "Interview Invitation: Backend Engineer Position"
    assert f"https://jobs.co.com/interview/accept/{'a' * 64}" in content.text_body
    assert f"https://jobs.co.com/interview/reschedule/{'b' * 64}" in content.text_body
    assert f'href="https://jobs.co.com/interview/accept/{"a" * 64}"' in content.html_body
    assert "Saturday, March 1, 2025 at 10:00 AM EST" in content.text_body
    assert "Meeting Link: https://meet.google.com/abc-defg-hij" in content.text_body
    assert "Please respond by February 27, 2025." in content.text_body
    assert "Interview Agenda:\nIntro\nSystem design" in content.text_body


def test_invitation_escapes_html():
    content = candidate_invitation(_application(name="<script>alert(1)</script>"), _token(notes="Bring <b>ID</b>"))

    assert "<script>" not in content.html_body
    assert "&lt;script&gt;" in content.html_body
    assert "Bring &lt;b&gt;ID&lt;/b&gt;" in content.html_body
    # Plain text is left as written.
    assert "Hi <script>alert(1)</script>," in content.text_body


def test_reminder_subject():
    content = candidate_invitation(_application(), _token(), reminder=True)

    assert content.subject == "Interview Invitation Reminder: Backend Engineer Position"
    assert "Interview Invitation Reminder" in content.text_body


def test_in_person_invitation_lists_location():
    token = _token(interview_type="in-person", meeting_link=None, location="100 King St W")

    content = candidate_invitation(_application(), token)

    assert "Location: 100 King St W" in content.text_body
    assert "Meeting Link" not in content.text_body
    assert "In-person Interview" in content.text_body


def test_hiring_manager_accepted_links_application(monkeypatch):
    monkeypatch.setattr(app_config.settings, "FRONTEND_BASE_URL", "https://jobs.co.com")

    content = hiring_manager_accepted(_application(), _token())

    assert content.subject == "Interview Accepted: Alice Candidate - Backend Engineer"
    assert "View Application: https://jobs.co.com/admin/applications/7" in content.text_body
    assert "Candidate: Alice Candidate" in content.text_body


def test_hiring_manager_reschedule_includes_candidate_preferences():
    request = InterviewRescheduleRequest(
        response_type="alternative_times",
        alternative_times=[{"date": "2025-03-03", "time": "09:30"}, {"date": "2025-03-04", "time": "14:00"}],
        written_response="Mornings are best",
        reason="Travelling <that> week",
    )

    content = hiring_manager_reschedule(_application(), _token(), request)

    assert content.subject == "Interview Reschedule Request: Alice Candidate - Backend Engineer"
    assert "Suggested times:\n1. 2025-03-03 09:30\n2. 2025-03-04 14:00" in content.text_body
    assert "<li>2025-03-03 09:30</li>" in content.html_body
    assert "Candidate's availability:\nMornings are best" in content.text_body
    assert "Travelling &lt;that&gt; week" in content.html_body
    assert "Original Time: Saturday, March 1, 2025 at 10:00 AM EST" in content.text_body


def test_respond_by_follows_expiry():
    expires = datetime(2025, 2, 20, 12, 0, tzinfo=timezone.utc) + timedelta(days=7)

    content = candidate_invitation(_application(), _token(expires_at=expires))

    assert "Please respond by February 27, 2025." in content.text_body
