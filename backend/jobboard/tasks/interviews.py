from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jobboard.celery_app import celery_app
from jobboard.core.database import SessionLocal

# Import models so they register with SQLAlchemy metadata.
from jobboard.models.application_note import ApplicationNote  # noqa: F401
from jobboard.models.calendar_credential import CalendarCredential  # noqa: F401
from jobboard.models.interview_reschedule_request import InterviewRescheduleRequest  # noqa: F401
from jobboard.models.job import Job  # noqa: F401
from jobboard.services.interview_responses import expire_stale_tokens as expire_tokens


logger = logging.getLogger(__name__)


def _with_db_session() -> Session:
    return SessionLocal()


@celery_app.task(name="interviews.expire_stale_tokens", max_retries=3)
def expire_stale_tokens() -> int:
    """Periodic sweep; lazy expiry on access covers anything between runs."""
    db = _with_db_session()
    try:
        return expire_tokens(db)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Interview token expiry sweep failed")
        raise
    finally:
        db.close()
