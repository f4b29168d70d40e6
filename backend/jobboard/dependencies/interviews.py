from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from jobboard.core.database import get_db
from jobboard.services.email import EmailSender, get_email_sender
from jobboard.services.interview_responses import InterviewResponseHandler
from jobboard.services.interview_scheduler import InterviewScheduler


def get_interview_scheduler(
    db: Session = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
) -> InterviewScheduler:
    return InterviewScheduler(db, email_sender=email_sender)


def get_response_handler(
    db: Session = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
) -> InterviewResponseHandler:
    return InterviewResponseHandler(db, email_sender=email_sender)
