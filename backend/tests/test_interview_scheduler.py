from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import OperationalError

from jobboard.core.clock import as_utc
from jobboard.models.application import Application
from jobboard.models.application_note import ApplicationNote
from jobboard.models.interview_token import InterviewToken
from jobboard.schemas.interview import InPersonInterview, PhoneInterview, TimeSlot, VideoInterview
from jobboard.services.applications import ApplicationNotFound
from jobboard.services.calendar import AuthenticationExpired, CalendarWriteFailed, CredentialMissing
from jobboard.services.email import DeliveryStatus
from jobboard.services.interview_scheduler import (
    InvalidInterviewState,
    NotificationOutcome,
    PersistenceError,
    ScheduleValidationError,
)

NY = ZoneInfo("America/New_York")


def _slot(day=date(2025, 3, 1), at=time(10, 0), tz="America/New_York") -> TimeSlot:
    return TimeSlot(date=day, time=at, timezone=tz)


def _video(**overrides) -> VideoInterview:
    data = {"type": "video", "duration": 45, "interviewers": [{"name": "Bob", "email": "bob@co.com"}]}
    data.update(overrides)
    return VideoInterview(**data)


def _tokens(db_session, application_id):
    return (
        db_session.query(InterviewToken)
        .filter(InterviewToken.application_id == application_id)
        .order_by(InterviewToken.id)
        .all()
    )


def _note_types(db_session, application_id):
    notes = db_session.query(ApplicationNote).filter(ApplicationNote.application_id == application_id).all()
    return [n.type for n in notes]


def test_schedule_end_to_end(scheduler, db_session, application, manager, connected_calendar, calendar, email_sender, clock):
    result = scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)

    # Calendar hold covers 10:00-10:45 in New York.
    assert len(calendar.events) == 1
    spec = calendar.events[0]
    assert spec.start == datetime(2025, 3, 1, 10, 0, tzinfo=NY)
    assert spec.end == datetime(2025, 3, 1, 10, 45, tzinfo=NY)
    assert spec.private is True
    assert spec.request_meeting_link is True

    tokens = _tokens(db_session, application.id)
    assert len(tokens) == 1
    token = tokens[0]
    assert token.status == "pending"
    assert as_utc(token.expires_at) == clock.now + timedelta(days=7)
    assert as_utc(token.scheduled_at) == datetime(2025, 3, 1, 15, 0, tzinfo=ZoneInfo("UTC"))
    assert token.calendar_event_id == "evt_1"
    assert token.meeting_link == "https://meet.google.com/abc-defg-hij"
    assert token.meeting_provider == "google"
    assert token.invitation_sent_at is not None

    db_session.refresh(application)
    assert application.status == "Interview"

    assert result.status == "pending"
    assert result.notification == NotificationOutcome.sent
    assert result.acceptance_token == token.acceptance_token
    assert result.reschedule_token == token.reschedule_token
    assert result.calendar_event.id == "evt_1"

    assert [e.to for e in email_sender.sent] == ["alice@candidate.com"]
    assert token.acceptance_token in email_sender.sent[0].text_body
    assert token.reschedule_token in email_sender.sent[0].text_body
    assert "interview_scheduled" in _note_types(db_session, application.id)


def test_creator_is_first_and_interviewers_are_deduplicated(scheduler, db_session, application, manager, connected_calendar):
    interview = _video(
        interviewers=[
            {"name": "Bob", "email": "bob@co.com"},
            {"name": "Me Again", "email": "MANAGER@co.com"},
            {"name": "Bobby", "email": "Bob@CO.com"},
            {"name": "Carol", "email": "carol@co.com"},
        ]
    )

    scheduler.schedule(application.id, _slot(), interview, notify_candidate=True, scheduled_by=manager)

    token = _tokens(db_session, application.id)[0]
    assert [i["email"].lower() for i in token.interviewers] == ["manager@co.com", "bob@co.com", "carol@co.com"]
    assert [i["is_creator"] for i in token.interviewers] == [True, False, False]


def test_candidate_is_never_a_calendar_attendee(scheduler, application, manager, connected_calendar, calendar):
    interview = _video(
        interviewers=[
            {"name": "Bob", "email": "bob@co.com"},
            {"name": "Alice", "email": "Alice@Candidate.com"},
        ]
    )

    scheduler.schedule(application.id, _slot(), interview, notify_candidate=True, scheduled_by=manager)

    attendees = [a.email.lower() for a in calendar.events[0].attendees]
    assert "alice@candidate.com" not in attendees
    assert attendees == ["manager@co.com", "bob@co.com"]


def test_no_notification_means_accepted_without_email(scheduler, db_session, application, manager, connected_calendar, email_sender, clock):
    result = scheduler.schedule(application.id, _slot(), _video(), notify_candidate=False, scheduled_by=manager)

    token = _tokens(db_session, application.id)[0]
    assert token.status == "accepted"
    assert as_utc(token.responded_at) == clock.now
    assert token.invitation_sent_at is None
    assert email_sender.sent == []
    assert result.notification == NotificationOutcome.not_requested


def test_rescheduling_cancels_previous_live_token(scheduler, db_session, application, manager, connected_calendar):
    scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)
    scheduler.schedule(application.id, _slot(at=time(14, 0)), _video(), notify_candidate=True, scheduled_by=manager)

    first, second = _tokens(db_session, application.id)
    assert first.status == "cancelled"
    assert second.status == "pending"

    note = (
        db_session.query(ApplicationNote)
        .filter(ApplicationNote.type == "interview_scheduled")
        .order_by(ApplicationNote.id.desc())
        .first()
    )
    assert note.data["superseded_token_ids"] == [first.id]


def test_new_schedule_supersedes_confirmed_interview(scheduler, db_session, application, manager, connected_calendar):
    scheduler.schedule(application.id, _slot(), _video(), notify_candidate=False, scheduled_by=manager)
    scheduler.schedule(application.id, _slot(at=time(14, 0)), _video(), notify_candidate=True, scheduled_by=manager)

    first, second = _tokens(db_session, application.id)
    assert first.status == "cancelled"
    assert second.status == "pending"
    live = [t for t in _tokens(db_session, application.id) if t.status != "cancelled"]
    assert len(live) == 1


def test_completed_interview_is_kept_when_scheduling_next_round(scheduler, db_session, application, manager, connected_calendar):
    scheduler.schedule(application.id, _slot(), _video(), notify_candidate=False, scheduled_by=manager)
    scheduler.mark_completed(_tokens(db_session, application.id)[0].id, completed_by=manager)

    scheduler.schedule(application.id, _slot(day=date(2025, 3, 8)), _video(), notify_candidate=True, scheduled_by=manager)

    first, second = _tokens(db_session, application.id)
    assert first.status == "accepted"
    assert first.is_completed is True
    assert second.status == "pending"


def test_duration_is_elapsed_time_across_dst_fall_back(scheduler, db_session, application, manager, connected_calendar, calendar):
    # 01:30 EDT on 2025-11-02; clocks fall back to 01:00 EST half an hour later.
    scheduler.schedule(
        application.id, _slot(day=date(2025, 11, 2), at=time(1, 30)), _video(duration=60),
        notify_candidate=True, scheduled_by=manager,
    )

    spec = calendar.events[0]
    assert spec.end.astimezone(timezone.utc) - spec.start.astimezone(timezone.utc) == timedelta(minutes=60)
    assert spec.end.astimezone(timezone.utc) == datetime(2025, 11, 2, 6, 30, tzinfo=timezone.utc)
    assert spec.end.utcoffset() == timedelta(hours=-5)


def test_wall_time_skipped_by_dst_is_rejected():
    with pytest.raises(ValueError, match="does not exist in America/New_York"):
        TimeSlot(date=date(2025, 3, 9), time=time(2, 30), timezone="America/New_York")


def test_wall_time_just_after_dst_gap_is_accepted():
    slot = TimeSlot(date=date(2025, 3, 9), time=time(3, 0), timezone="America/New_York")

    assert slot.start().utcoffset() == timedelta(hours=-4)


def test_slot_in_the_past_is_rejected(scheduler, db_session, application, manager, connected_calendar, calendar):
    with pytest.raises(ScheduleValidationError):
        scheduler.schedule(
            application.id, _slot(day=date(2025, 2, 19)), _video(), notify_candidate=True, scheduled_by=manager
        )

    assert calendar.events == []
    assert _tokens(db_session, application.id) == []


def test_unknown_application(scheduler, manager, connected_calendar):
    with pytest.raises(ApplicationNotFound):
        scheduler.schedule(999, _slot(), _video(), notify_candidate=True, scheduled_by=manager)


def test_missing_calendar_connection(scheduler, db_session, application, manager, calendar):
    with pytest.raises(CredentialMissing):
        scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)

    assert calendar.events == []
    assert _tokens(db_session, application.id) == []


@pytest.mark.parametrize(
    "error",
    [CalendarWriteFailed("calendar rejected the event"), AuthenticationExpired("calendar access expired")],
)
def test_calendar_failure_leaves_nothing_behind(scheduler, db_session, application, manager, connected_calendar, calendar, email_sender, error):
    calendar.fail_with = error

    with pytest.raises(type(error)):
        scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)

    assert _tokens(db_session, application.id) == []
    assert email_sender.sent == []
    db_session.refresh(application)
    assert application.status == "Reviewing"


def test_email_failure_is_soft(scheduler, db_session, application, manager, connected_calendar, email_sender):
    email_sender.status = DeliveryStatus.failed
    email_sender.error = "SMTP send failed"

    result = scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)

    assert result.notification == NotificationOutcome.failed
    assert result.notification_degraded is True
    assert result.notification_error == "SMTP send failed"
    token = _tokens(db_session, application.id)[0]
    assert token.status == "pending"
    assert token.invitation_sent_at is None
    db_session.refresh(application)
    assert application.status == "Interview"
    assert "interview_invitation_failed" in _note_types(db_session, application.id)


def test_disabled_email_counts_as_degraded(scheduler, application, manager, connected_calendar, email_sender):
    email_sender.status = DeliveryStatus.skipped

    result = scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)

    assert result.notification == NotificationOutcome.failed


def test_persistence_failure_after_calendar_write_is_logged(scheduler, db_session, application, manager, connected_calendar, calendar, monkeypatch, caplog):
    def _broken_commit():
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "commit", _broken_commit)

    with caplog.at_level(logging.CRITICAL, logger="jobboard.services.interview_scheduler"):
        with pytest.raises(PersistenceError):
            scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)

    monkeypatch.undo()
    assert len(calendar.events) == 1
    assert any("evt_1" in r.getMessage() and r.levelno == logging.CRITICAL for r in caplog.records)
    assert _tokens(db_session, application.id) == []


def test_manual_meeting_link_skips_generated_conference(scheduler, db_session, application, manager, connected_calendar, calendar):
    interview = _video(meeting_link="https://zoom.us/j/123")

    scheduler.schedule(application.id, _slot(), interview, notify_candidate=True, scheduled_by=manager)

    assert calendar.events[0].request_meeting_link is False
    token = _tokens(db_session, application.id)[0]
    assert token.meeting_link == "https://zoom.us/j/123"
    assert token.meeting_provider == "manual"


def test_in_person_interview_carries_location(scheduler, db_session, application, manager, connected_calendar, calendar):
    interview = InPersonInterview(
        type="in-person",
        duration=60,
        interviewers=[{"name": "Bob", "email": "bob@co.com"}],
        location="100 King St W, Toronto",
    )

    scheduler.schedule(application.id, _slot(), interview, notify_candidate=True, scheduled_by=manager)

    assert calendar.events[0].location == "100 King St W, Toronto"
    assert calendar.events[0].request_meeting_link is False
    token = _tokens(db_session, application.id)[0]
    assert token.location == "100 King St W, Toronto"
    assert token.meeting_provider == "manual"


def test_default_timezone_applies_when_slot_has_none(scheduler, db_session, application, manager, connected_calendar, calendar):
    interview = PhoneInterview(type="phone", duration=30, interviewers=[{"name": "Bob", "email": "bob@co.com"}])

    scheduler.schedule(application.id, _slot(tz=None), interview, notify_candidate=True, scheduled_by=manager)

    assert calendar.events[0].timezone == "America/Toronto"
    assert _tokens(db_session, application.id)[0].timezone == "America/Toronto"


def test_resend_invitation_for_pending_interview(scheduler, db_session, application, manager, connected_calendar, email_sender):
    scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)
    token = _tokens(db_session, application.id)[0]

    outcome = scheduler.resend_invitation(token.id, requested_by=manager)

    assert outcome == NotificationOutcome.sent
    assert len(email_sender.sent) == 2
    assert "Reminder" in email_sender.sent[-1].subject
    assert "interview_invitation_resent" in _note_types(db_session, application.id)


def test_resend_rejected_once_answered_or_expired(scheduler, db_session, application, manager, connected_calendar, clock):
    scheduler.schedule(application.id, _slot(), _video(), notify_candidate=False, scheduled_by=manager)
    token = _tokens(db_session, application.id)[0]

    with pytest.raises(InvalidInterviewState):
        scheduler.resend_invitation(token.id, requested_by=manager)

    scheduler.schedule(application.id, _slot(at=time(15, 0)), _video(), notify_candidate=True, scheduled_by=manager)
    pending = _tokens(db_session, application.id)[-1]
    clock.advance(days=8)

    with pytest.raises(InvalidInterviewState):
        scheduler.resend_invitation(pending.id, requested_by=manager)


def test_mark_completed(scheduler, db_session, application, manager, connected_calendar, clock):
    scheduler.schedule(application.id, _slot(), _video(), notify_candidate=False, scheduled_by=manager)
    token = _tokens(db_session, application.id)[0]

    completed = scheduler.mark_completed(token.id, completed_by=manager)

    assert completed.is_completed is True
    assert as_utc(completed.completed_at) == clock.now
    assert "interview_completed" in _note_types(db_session, application.id)
    with pytest.raises(InvalidInterviewState):
        scheduler.mark_completed(token.id, completed_by=manager)


def test_second_application_is_independent(scheduler, db_session, application, job, manager, connected_calendar):
    other = Application(job_id=job.id, name="Dana", email="dana@candidate.com", status="Applied")
    db_session.add(other)
    db_session.commit()

    scheduler.schedule(application.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)
    scheduler.schedule(other.id, _slot(), _video(), notify_candidate=True, scheduled_by=manager)

    assert _tokens(db_session, application.id)[0].status == "pending"
    assert _tokens(db_session, other.id)[0].status == "pending"
