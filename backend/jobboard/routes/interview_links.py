from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from jobboard.core.clock import as_utc
from jobboard.core.config import settings
from jobboard.core.rate_limit import limiter
from jobboard.dependencies.interviews import get_response_handler
from jobboard.models.interview_token import InterviewToken
from jobboard.schemas.interview import (
    InterviewResponseOut,
    InterviewerOut,
    PublicInterviewOut,
    RescheduleRequestIn,
)
from jobboard.services.interview_responses import InterviewResponseHandler, ResponseAction

# Unauthenticated: the token in the path is the only credential.
router = APIRouter(prefix="/interview", tags=["interview-links"])


def _maybe_limit(rule: str):
    if not settings.ENABLE_RATE_LIMITING:
        def passthrough(fn):
            return fn
        return passthrough
    return limiter.limit(rule)


def public_interview_out(token: InterviewToken) -> PublicInterviewOut:
    application = token.application
    return PublicInterviewOut(
        job_title=application.job_title,
        candidate_name=application.name,
        scheduled_at=as_utc(token.scheduled_at),
        timezone=token.timezone,
        duration_minutes=token.duration_minutes,
        interview_type=token.interview_type,
        interviewers=[InterviewerOut(**i) for i in (token.interviewers or [])],
        location=token.location,
        agenda=token.agenda,
        notes=token.notes,
        meeting_link=token.meeting_link,
        status=token.status,
        expires_at=as_utc(token.expires_at),
    )


@router.get("/accept/{token}", response_model=PublicInterviewOut)
@_maybe_limit(settings.PUBLIC_LINK_RATE_LIMIT)
def view_acceptance(
    request: Request,
    token: str,
    handler: InterviewResponseHandler = Depends(get_response_handler),
):
    return public_interview_out(handler.lookup(token, ResponseAction.accept))


@router.post("/accept/{token}", response_model=InterviewResponseOut)
@_maybe_limit(settings.PUBLIC_LINK_RATE_LIMIT)
def accept_interview(
    request: Request,
    token: str,
    handler: InterviewResponseHandler = Depends(get_response_handler),
):
    result = handler.respond(token, ResponseAction.accept)
    message = (
        "Interview accepted. We look forward to speaking with you!"
        if result.changed
        else "You have already accepted this interview."
    )
    return InterviewResponseOut(
        message=message,
        status=result.status,
        changed=result.changed,
        interview=public_interview_out(result.token),
    )


@router.get("/reschedule/{token}", response_model=PublicInterviewOut)
@_maybe_limit(settings.PUBLIC_LINK_RATE_LIMIT)
def view_reschedule(
    request: Request,
    token: str,
    handler: InterviewResponseHandler = Depends(get_response_handler),
):
    return public_interview_out(handler.lookup(token, ResponseAction.reschedule))


@router.post("/reschedule/{token}", response_model=InterviewResponseOut)
@_maybe_limit(settings.PUBLIC_LINK_RATE_LIMIT)
def request_reschedule(
    request: Request,
    token: str,
    payload: RescheduleRequestIn,
    handler: InterviewResponseHandler = Depends(get_response_handler),
):
    result = handler.respond(token, ResponseAction.reschedule, payload)
    return InterviewResponseOut(
        message="Reschedule request submitted. The hiring team will follow up with new times.",
        status=result.status,
        changed=result.changed,
        interview=public_interview_out(result.token),
    )
