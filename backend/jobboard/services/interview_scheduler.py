from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobboard.core.clock import Clock, as_utc, utcnow
from jobboard.core.config import settings
from jobboard.models.application import Application, ApplicationStatus
from jobboard.models.interview_token import (
    RESPONDABLE_STATUSES,
    InterviewToken,
    InterviewTokenStatus,
    MeetingProvider,
)
from jobboard.models.user import User
from jobboard.schemas.interview import InterviewData, InterviewerIn, TimeSlot
from jobboard.services.applications import ApplicationRepository
from jobboard.services.calendar import (
    CalendarEvent,
    CalendarProvider,
    CredentialMissing,
    CredentialStore,
    EventAttendee,
    EventSpec,
    get_calendar_provider,
)
from jobboard.services.calendar_credentials import CalendarCredentialStore
from jobboard.services.email import DeliveryStatus, EmailSender
from jobboard.services.interview_emails import candidate_invitation, format_type, format_when
from jobboard.services.tokens import TokenIssuer

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, CredentialStore], CalendarProvider]


class SchedulingError(Exception):
    """Base error for interview scheduling."""


class ScheduleValidationError(SchedulingError):
    pass


class PersistenceError(SchedulingError):
    pass


class InterviewNotFound(SchedulingError):
    pass


class InvalidInterviewState(SchedulingError):
    pass


class NotificationOutcome(str, Enum):
    sent = "sent"
    not_requested = "not_requested"
    failed = "failed"


@dataclass(frozen=True)
class ScheduleResult:
    interview_token_id: int
    status: str
    acceptance_token: str
    reschedule_token: str
    expires_at: datetime
    calendar_event: CalendarEvent
    notification: NotificationOutcome
    notification_error: str | None = None

    @property
    def notification_degraded(self) -> bool:
        return self.notification == NotificationOutcome.failed


def build_interviewer_list(creator: User, interviewers: Sequence[InterviewerIn]) -> list[dict[str, Any]]:
    """
    Creator first and exactly once; remaining entries de-duplicated by email
    (case-insensitive), keeping caller order.
    """
    out: list[dict[str, Any]] = [{"name": creator.display_name, "email": creator.email, "is_creator": True}]
    seen = {creator.email.strip().lower()}
    for interviewer in interviewers:
        email = str(interviewer.email).strip()
        key = email.lower()
        if not email or key in seen:
            continue
        seen.add(key)
        out.append({"name": interviewer.name, "email": email, "is_creator": False})
    return out


def _event_description(
    application: Application,
    interview: InterviewData,
    start: datetime,
    tz_name: str,
    meeting_link: str | None,
) -> str:
    lines = [
        f"Candidate: {application.name} ({application.email})",
        f"Position: {application.job_title}",
        f"Format: {format_type(interview.type)} Interview",
        f"When: {format_when(start, tz_name)}",
        f"Duration: {interview.duration} minutes",
    ]
    if getattr(interview, "location", None):
        lines.append(f"Location: {interview.location}")
    if meeting_link:
        lines.append(f"Meeting link: {meeting_link}")
    if interview.agenda:
        lines += ["", "Agenda:", interview.agenda]
    if interview.notes:
        lines += ["", "Notes:", interview.notes]
    lines += [
        "",
        "Hold for internal interviewers. The candidate is not on this invite and confirms through their invitation email.",
    ]
    return "\n".join(lines)


class InterviewScheduler:
    """
    Orchestrates scheduling: validate, refresh calendar credentials, create
    the calendar hold, persist the interview token, notify the candidate and
    move the application to Interview.

    The calendar write happens before anything durable is stored locally, so
    a failed write never leaves a token behind. Email is the only soft step.
    """

    def __init__(
        self,
        db: Session,
        *,
        email_sender: EmailSender | None = None,
        token_issuer: TokenIssuer | None = None,
        provider_factory: ProviderFactory = get_calendar_provider,
        clock: Clock = utcnow,
        token_ttl_days: int | None = None,
    ):
        self.db = db
        self.applications = ApplicationRepository(db)
        self.credentials = CalendarCredentialStore(db)
        self.email_sender = email_sender
        self.token_issuer = token_issuer or TokenIssuer()
        self.provider_factory = provider_factory
        self.clock = clock
        self.token_ttl_days = token_ttl_days if token_ttl_days is not None else settings.INTERVIEW_TOKEN_TTL_DAYS

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _validate(self, interview: InterviewData, end: datetime, now: datetime) -> None:
        if interview.duration <= 0:
            raise ScheduleValidationError("Duration must be a positive number of minutes")
        if not interview.interviewers:
            raise ScheduleValidationError("At least one interviewer is required")
        if interview.type == "in-person" and not (getattr(interview, "location", None) or "").strip():
            raise ScheduleValidationError("Location is required for in-person interviews")
        if end <= now:
            raise ScheduleValidationError("Interview time is in the past")

    def _cancel_live_tokens(self, application_id: int) -> list[int]:
        live = (
            self.db.query(InterviewToken)
            .filter(
                InterviewToken.application_id == application_id,
                or_(
                    InterviewToken.status.in_(RESPONDABLE_STATUSES),
                    and_(
                        InterviewToken.status == InterviewTokenStatus.accepted.value,
                        InterviewToken.is_completed.is_(False),
                    ),
                ),
            )
            .all()
        )
        for token in live:
            token.status = InterviewTokenStatus.cancelled.value
        self.db.flush()
        return [t.id for t in live]

    def schedule(
        self,
        application_id: int,
        time_slot: TimeSlot,
        interview: InterviewData,
        *,
        notify_candidate: bool,
        scheduled_by: User,
    ) -> ScheduleResult:
        now = self.clock()
        application = self.applications.get_application(application_id)

        start = time_slot.start()
        # Duration is elapsed time, not wall-clock time.
        end = (start.astimezone(timezone.utc) + timedelta(minutes=interview.duration)).astimezone(start.tzinfo)
        tz_name = time_slot.timezone_name
        self._validate(interview, end, now)

        interviewers = build_interviewer_list(scheduled_by, interview.interviewers)

        credential = self.credentials.get_calendar_credential(scheduled_by.id)
        if credential is None:
            raise CredentialMissing("Calendar not connected. Please connect your calendar in settings.")
        provider = self.provider_factory(credential.provider, self.credentials)
        # Abort here on credential problems; nothing has been written yet.
        credential = provider.ensure_fresh_credentials(credential)

        tokens = self.token_issuer.issue()

        manual_link = getattr(interview, "meeting_link", None)
        candidate_email = application.email.strip().lower()
        spec = EventSpec(
            summary=f"{format_type(interview.type)} Interview: {application.name} - {application.job_title}",
            description=_event_description(application, interview, start, tz_name, manual_link),
            start=start,
            end=end,
            timezone=tz_name,
            attendees=tuple(
                EventAttendee(email=i["email"], name=i["name"])
                for i in interviewers
                if i["email"].strip().lower() != candidate_email
            ),
            location=getattr(interview, "location", None) or None,
            request_meeting_link=interview.type == "video" and not manual_link,
            request_id=f"interview-{application.id}-{uuid.uuid4().hex}",
            private=True,
        )
        event = provider.create_hold_event(credential, spec)

        meeting_link = manual_link or event.meeting_link
        if manual_link or not event.meeting_link:
            meeting_provider = MeetingProvider.manual.value
        else:
            meeting_provider = provider.name
        if interview.type == "video" and not meeting_link:
            logger.warning("Video interview for application %s has no meeting link", application.id)

        status = InterviewTokenStatus.pending if notify_candidate else InterviewTokenStatus.accepted
        expires_at = now + timedelta(days=self.token_ttl_days)

        try:
            superseded = self._cancel_live_tokens(application.id)
            token = InterviewToken(
                application_id=application.id,
                scheduled_by_id=scheduled_by.id,
                acceptance_token=tokens.acceptance_token,
                reschedule_token=tokens.reschedule_token,
                scheduled_at=start.astimezone(timezone.utc),
                timezone=tz_name,
                duration_minutes=interview.duration,
                interview_type=interview.type,
                interviewers=interviewers,
                location=getattr(interview, "location", None) or None,
                agenda=interview.agenda,
                notes=interview.notes,
                calendar_event_id=event.id,
                calendar_html_link=event.html_link,
                meeting_link=meeting_link,
                meeting_provider=meeting_provider,
                status=status.value,
                expires_at=expires_at,
                # Not emailing the candidate means a human confirmed out of band.
                responded_at=None if notify_candidate else now,
            )
            self.db.add(token)
            self.db.flush()

            self.applications.append_application_note(
                application.id,
                type="interview_scheduled",
                body=(
                    f"Interview scheduled for {format_when(start, tz_name)} "
                    f"({interview.type} interview, {interview.duration} minutes)"
                ),
                author=scheduled_by,
                data={
                    "interview_token_id": token.id,
                    "calendar_event_id": event.id,
                    "calendar_provider": provider.name,
                    "interview_type": interview.type,
                    "duration": interview.duration,
                    "interviewers": interviewers,
                    "meeting_link": meeting_link,
                    "notify_candidate": notify_candidate,
                    "superseded_token_ids": superseded,
                },
            )

            if application.status != ApplicationStatus.interview.value:
                self.applications.update_application_status(application.id, ApplicationStatus.interview.value)

            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.critical(
                "Orphan calendar hold needs manual cleanup: %s event %s was created for application %s "
                "but the interview token could not be saved",
                provider.name,
                event.id,
                application.id,
            )
            raise PersistenceError("The interview could not be saved") from exc

        self.db.refresh(token)
        logger.info(
            "Scheduled interview %s for application %s by user %s (status=%s, superseded=%s)",
            token.id,
            application.id,
            scheduled_by.id,
            token.status,
            superseded,
        )

        notification = NotificationOutcome.not_requested
        notification_error = None
        if notify_candidate:
            notification, notification_error = self._send_invitation(application, token, scheduled_by)

        return ScheduleResult(
            interview_token_id=token.id,
            status=token.status,
            acceptance_token=token.acceptance_token,
            reschedule_token=token.reschedule_token,
            expires_at=expires_at,
            calendar_event=event,
            notification=notification,
            notification_error=notification_error,
        )

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------
    def _send_invitation(
        self,
        application: Application,
        token: InterviewToken,
        sender: User,
        *,
        reminder: bool = False,
    ) -> tuple[NotificationOutcome, str | None]:
        if self.email_sender is None:
            logger.warning("No email sender configured; invitation for interview %s not sent", token.id)
            outcome, error = NotificationOutcome.failed, "Email sender is not configured"
        else:
            content = candidate_invitation(application, token, reminder=reminder)
            result = self.email_sender.send(application.email, content.subject, content.html_body, content.text_body)
            if result.status == DeliveryStatus.sent:
                outcome, error = NotificationOutcome.sent, None
            elif result.status == DeliveryStatus.skipped:
                outcome, error = NotificationOutcome.failed, "Email delivery is disabled"
            else:
                outcome, error = NotificationOutcome.failed, result.error or "Email delivery failed"

        try:
            if outcome == NotificationOutcome.sent:
                token.invitation_sent_at = self.clock()
            else:
                logger.warning(
                    "Interview %s invitation to %s not delivered: %s (interview stays scheduled)",
                    token.id,
                    application.email,
                    error,
                )
                self.applications.append_application_note(
                    application.id,
                    type="interview_invitation_failed",
                    body=f"Interview invitation could not be emailed to {application.email}",
                    author=sender,
                    data={"interview_token_id": token.id, "error": error, "reminder": reminder},
                    system=True,
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to record invitation outcome for interview %s", token.id)

        return outcome, error

    def _get_token(self, token_id: int) -> InterviewToken:
        token = self.db.get(InterviewToken, token_id)
        if not token:
            raise InterviewNotFound("Interview not found")
        return token

    def resend_invitation(self, token_id: int, *, requested_by: User) -> NotificationOutcome:
        """Re-send the candidate invitation for a pending, unexpired interview."""
        token = self._get_token(token_id)
        if token.status != InterviewTokenStatus.pending.value:
            raise InvalidInterviewState("Can only resend invitations for pending interviews")
        if as_utc(token.expires_at) <= self.clock():
            raise InvalidInterviewState("Interview token has expired. Please schedule a new interview.")

        application = token.application
        outcome, error = self._send_invitation(application, token, requested_by, reminder=True)
        if outcome == NotificationOutcome.sent:
            self.applications.append_application_note(
                application.id,
                type="interview_invitation_resent",
                body=f"Interview invitation resent to {application.email}",
                author=requested_by,
                data={"interview_token_id": token.id},
            )
            self.db.commit()
        return outcome

    def mark_completed(self, token_id: int, *, completed_by: User) -> InterviewToken:
        token = self._get_token(token_id)
        if token.is_completed:
            raise InvalidInterviewState("Interview is already marked as completed")
        if token.status == InterviewTokenStatus.cancelled.value:
            raise InvalidInterviewState("Cancelled interviews cannot be completed")

        now = self.clock()
        token.is_completed = True
        token.completed_at = now
        self.applications.append_application_note(
            token.application_id,
            type="interview_completed",
            body=f"Interview completed - {token.interview_type} interview for {token.application.job_title}",
            author=completed_by,
            data={
                "interview_token_id": token.id,
                "interview_type": token.interview_type,
                "duration": token.duration_minutes,
            },
        )
        self.db.commit()
        self.db.refresh(token)
        return token
