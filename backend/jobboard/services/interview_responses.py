from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from jobboard.core.clock import Clock, as_utc, utcnow
from jobboard.models.interview_reschedule_request import InterviewRescheduleRequest
from jobboard.models.interview_token import RESPONDABLE_STATUSES, InterviewToken, InterviewTokenStatus
from jobboard.models.job import Job
from jobboard.models.user import User
from jobboard.schemas.interview import RescheduleRequestIn
from jobboard.services.applications import ApplicationRepository
from jobboard.services.email import EmailSender
from jobboard.services.interview_emails import EmailContent, hiring_manager_accepted, hiring_manager_reschedule

logger = logging.getLogger(__name__)

MAX_TOKEN_LENGTH = 128


class TokenResponseError(Exception):
    """Base error for candidate responses to an interview link."""


class TokenNotFound(TokenResponseError):
    pass


class TokenExpired(TokenResponseError):
    pass


class TokenAlreadyTerminal(TokenResponseError):
    def __init__(self, status: str):
        super().__init__(f"Interview already {status}")
        self.status = status


class ResponseAction(str, Enum):
    accept = "accept"
    reschedule = "reschedule"


@dataclass(frozen=True)
class ResponseResult:
    token: InterviewToken
    action: ResponseAction
    status: str
    changed: bool
    reschedule_request_id: Optional[int] = None


class InterviewResponseHandler:
    """
    Moves an interview token through its lifecycle when the candidate follows
    a link from their invitation.

    Each token value only works for its own action: an acceptance token can
    never be used to reschedule and the other way round. Status changes are
    compare-and-swap updates so two concurrent clicks cannot both win.
    """

    def __init__(self, db: Session, *, email_sender: EmailSender | None = None, clock: Clock = utcnow):
        self.db = db
        self.applications = ApplicationRepository(db)
        self.email_sender = email_sender
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def _find(self, token_value: str, action: ResponseAction) -> InterviewToken:
        value = (token_value or "").strip()
        if not value or len(value) > MAX_TOKEN_LENGTH:
            raise TokenNotFound("Interview link not found")

        column = InterviewToken.acceptance_token if action == ResponseAction.accept else InterviewToken.reschedule_token
        token = self.db.query(InterviewToken).filter(column == value).populate_existing().first()
        if not token:
            raise TokenNotFound("Interview link not found")
        return token

    def _reload(self, token_id: int) -> InterviewToken:
        return self.db.query(InterviewToken).filter(InterviewToken.id == token_id).populate_existing().one()

    def _transition(self, token: InterviewToken, *, expected: str, values: dict) -> bool:
        updated = (
            self.db.query(InterviewToken)
            .filter(InterviewToken.id == token.id, InterviewToken.status == expected)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    def _expire_if_stale(self, token: InterviewToken, now: datetime) -> None:
        # A past window always wins over the stored status.
        if as_utc(token.expires_at) >= now:
            return
        if token.status in RESPONDABLE_STATUSES and self._transition(
            token, expected=token.status, values={"status": InterviewTokenStatus.expired.value}
        ):
            logger.info("Interview token %s expired on access", token.id)
        self.db.commit()
        raise TokenExpired("Interview link has expired")

    def lookup(self, token_value: str, action: ResponseAction | str) -> InterviewToken:
        """Resolve a link for display, expiring it lazily if its window has passed."""
        action = ResponseAction(action)
        token = self._find(token_value, action)
        self._expire_if_stale(token, self.clock())
        return token

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------
    def respond(
        self,
        token_value: str,
        action: ResponseAction | str,
        payload: RescheduleRequestIn | None = None,
    ) -> ResponseResult:
        action = ResponseAction(action)
        now = self.clock()
        token = self._find(token_value, action)
        self._expire_if_stale(token, now)

        if action == ResponseAction.accept:
            return self._accept(token, now)
        return self._reschedule(token, payload, now)

    def _accept(self, token: InterviewToken, now: datetime) -> ResponseResult:
        if token.status == InterviewTokenStatus.accepted.value:
            return ResponseResult(token=token, action=ResponseAction.accept, status=token.status, changed=False)
        if token.status not in RESPONDABLE_STATUSES:
            raise TokenAlreadyTerminal(token.status)

        swapped = self._transition(
            token,
            expected=token.status,
            values={"status": InterviewTokenStatus.accepted.value, "responded_at": now},
        )
        if not swapped:
            self.db.rollback()
            current = self._reload(token.id)
            if current.status == InterviewTokenStatus.accepted.value:
                return ResponseResult(token=current, action=ResponseAction.accept, status=current.status, changed=False)
            raise TokenAlreadyTerminal(current.status)

        self.applications.append_application_note(
            token.application_id,
            type="interview_accepted",
            body="Candidate accepted the interview invitation",
            author_name=token.application.name,
            data={"interview_token_id": token.id},
            system=True,
        )
        self.db.commit()
        token = self._reload(token.id)
        logger.info("Interview token %s accepted", token.id)

        self._notify_hiring_manager(token, hiring_manager_accepted(token.application, token))
        return ResponseResult(token=token, action=ResponseAction.accept, status=token.status, changed=True)

    def _store_request(
        self,
        token: InterviewToken,
        payload: RescheduleRequestIn | None,
    ) -> InterviewRescheduleRequest:
        if payload is None:
            response_type, alternative_times, written_response, reason = "reason", None, None, None
        else:
            response_type = payload.response_type or "reason"
            alternative_times = (
                [{"date": t.date.isoformat(), "time": t.time.strftime("%H:%M")} for t in payload.alternative_times]
                if payload.alternative_times
                else None
            )
            written_response = payload.written_response
            reason = payload.reason

        request = InterviewRescheduleRequest(
            interview_token_id=token.id,
            application_id=token.application_id,
            response_type=response_type,
            alternative_times=alternative_times,
            written_response=written_response,
            reason=reason,
        )
        self.db.add(request)
        self.db.flush()

        self.applications.append_application_note(
            token.application_id,
            type="interview_reschedule_requested",
            body="Candidate requested to reschedule the interview",
            author_name=token.application.name,
            data={
                "interview_token_id": token.id,
                "reschedule_request_id": request.id,
                "response_type": response_type,
                "alternative_times": alternative_times,
                "written_response": written_response,
                "reason": reason,
            },
            system=True,
        )
        return request

    def _reschedule(
        self,
        token: InterviewToken,
        payload: RescheduleRequestIn | None,
        now: datetime,
    ) -> ResponseResult:
        if token.status not in RESPONDABLE_STATUSES:
            raise TokenAlreadyTerminal(token.status)

        changed = False
        if token.status == InterviewTokenStatus.pending.value:
            changed = self._transition(
                token,
                expected=InterviewTokenStatus.pending.value,
                values={"status": InterviewTokenStatus.reschedule_requested.value, "responded_at": now},
            )
            if not changed:
                self.db.rollback()
                current = self._reload(token.id)
                if current.status != InterviewTokenStatus.reschedule_requested.value:
                    raise TokenAlreadyTerminal(current.status)
                token = current
        elif not self._transition(
            token,
            expected=InterviewTokenStatus.reschedule_requested.value,
            values={"status": InterviewTokenStatus.reschedule_requested.value},
        ):
            # Answered or withdrawn since it was read.
            self.db.rollback()
            raise TokenAlreadyTerminal(self._reload(token.id).status)

        # Repeat requests keep the first response time but record the new preferences.
        request = self._store_request(token, payload)
        self.db.commit()
        token = self._reload(token.id)
        logger.info("Interview token %s reschedule requested (request %s, first=%s)", token.id, request.id, changed)

        if changed:
            self._notify_hiring_manager(token, hiring_manager_reschedule(token.application, token, request))
        return ResponseResult(
            token=token,
            action=ResponseAction.reschedule,
            status=token.status,
            changed=changed,
            reschedule_request_id=request.id,
        )

    def _hiring_manager(self, token: InterviewToken) -> User | None:
        if token.scheduled_by is not None:
            return token.scheduled_by
        job = self.db.get(Job, token.application.job_id)
        return job.creator if job is not None else None

    def _notify_hiring_manager(self, token: InterviewToken, content: EmailContent) -> None:
        if self.email_sender is None:
            return
        manager = self._hiring_manager(token)
        if manager is None or not manager.email:
            logger.warning("No hiring manager to notify for interview token %s", token.id)
            return
        result = self.email_sender.send(manager.email, content.subject, content.html_body, content.text_body)
        if not result.ok:
            logger.warning(
                "Hiring manager notification for interview token %s not delivered: %s",
                token.id,
                result.error or result.status.value,
            )


def expire_stale_tokens(db: Session, now: datetime | None = None) -> int:
    """Bulk-expire respondable tokens past their window. Returns the number expired."""
    now = now or utcnow()
    count = (
        db.query(InterviewToken)
        .filter(
            InterviewToken.status.in_(RESPONDABLE_STATUSES),
            InterviewToken.expires_at < now,
        )
        .update({"status": InterviewTokenStatus.expired.value}, synchronize_session=False)
    )
    db.commit()
    if count:
        logger.info("Expired %s stale interview tokens", count)
    return count
