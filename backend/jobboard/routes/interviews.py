from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import desc
from sqlalchemy.orm import Session

from jobboard.core.clock import as_utc
from jobboard.core.database import get_db
from jobboard.dependencies.auth import get_current_user
from jobboard.dependencies.interviews import get_interview_scheduler
from jobboard.models.interview_token import InterviewToken
from jobboard.models.user import User
from jobboard.schemas.interview import (
    CalendarEventOut,
    InterviewOut,
    InterviewerOut,
    RescheduleRequestOut,
    ResendInvitationOut,
    ScheduleInterviewIn,
    ScheduleResultOut,
)
from jobboard.services.interview_scheduler import InterviewScheduler, NotificationOutcome


router = APIRouter(tags=["interviews"], dependencies=[Depends(get_current_user)])


def interview_out(token: InterviewToken) -> InterviewOut:
    application = token.application
    latest = token.reschedule_requests[0] if token.reschedule_requests else None
    return InterviewOut(
        id=token.id,
        application_id=token.application_id,
        candidate_name=application.name,
        candidate_email=application.email,
        job_title=application.job_title,
        scheduled_at=as_utc(token.scheduled_at),
        timezone=token.timezone,
        duration_minutes=token.duration_minutes,
        interview_type=token.interview_type,
        interviewers=[InterviewerOut(**i) for i in (token.interviewers or [])],
        location=token.location,
        agenda=token.agenda,
        notes=token.notes,
        calendar_event_id=token.calendar_event_id,
        meeting_link=token.meeting_link,
        meeting_provider=token.meeting_provider,
        status=token.status,
        expires_at=as_utc(token.expires_at),
        responded_at=as_utc(token.responded_at),
        invitation_sent_at=as_utc(token.invitation_sent_at),
        is_completed=bool(token.is_completed),
        completed_at=as_utc(token.completed_at),
        latest_reschedule_request=RescheduleRequestOut.model_validate(latest) if latest else None,
    )


@router.post("/schedule", response_model=ScheduleResultOut)
def schedule_interview(
    payload: ScheduleInterviewIn,
    user: User = Depends(get_current_user),
    scheduler: InterviewScheduler = Depends(get_interview_scheduler),
):
    result = scheduler.schedule(
        payload.application_id,
        payload.selected_time_slot,
        payload.interview_data,
        notify_candidate=payload.send_email_notification,
        scheduled_by=user,
    )

    if result.notification == NotificationOutcome.sent:
        message = "Interview scheduled and invitation sent to candidate"
    elif result.notification == NotificationOutcome.failed:
        message = "Interview scheduled, but the invitation email could not be sent"
    else:
        message = "Interview scheduled"

    event = result.calendar_event
    return ScheduleResultOut(
        message=message,
        interview_token_id=result.interview_token_id,
        status=result.status,
        acceptance_token=result.acceptance_token,
        reschedule_token=result.reschedule_token,
        expires_at=result.expires_at,
        calendar_event=CalendarEventOut(
            id=event.id,
            html_link=event.html_link,
            meeting_link=event.meeting_link,
            start_time=event.start,
            end_time=event.end,
        ),
        notification=result.notification.value,
        notification_error=result.notification_error,
    )


@router.get("/interviews", response_model=list[InterviewOut])
def list_interviews(
    status: Optional[str] = Query(default=None, max_length=30),
    type: Optional[str] = Query(default=None, max_length=20),
    application_id: Optional[int] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    q = db.query(InterviewToken)
    if status:
        q = q.filter(InterviewToken.status == status.strip().lower())
    if type:
        q = q.filter(InterviewToken.interview_type == type.strip().lower())
    if application_id is not None:
        q = q.filter(InterviewToken.application_id == application_id)

    tokens = q.order_by(desc(InterviewToken.scheduled_at), desc(InterviewToken.id)).limit(limit).all()
    return [interview_out(t) for t in tokens]


@router.post("/interviews/{interview_id}/resend", response_model=ResendInvitationOut)
def resend_invitation(
    interview_id: int,
    user: User = Depends(get_current_user),
    scheduler: InterviewScheduler = Depends(get_interview_scheduler),
):
    outcome = scheduler.resend_invitation(interview_id, requested_by=user)
    if outcome == NotificationOutcome.sent:
        return ResendInvitationOut(success=True, message="Interview invitation resent", notification=outcome.value)
    return ResendInvitationOut(
        success=False,
        message="The invitation email could not be sent",
        notification=outcome.value,
    )


@router.patch("/interviews/{interview_id}/complete", response_model=InterviewOut)
def complete_interview(
    interview_id: int,
    user: User = Depends(get_current_user),
    scheduler: InterviewScheduler = Depends(get_interview_scheduler),
):
    token = scheduler.mark_completed(interview_id, completed_by=user)
    return interview_out(token)
