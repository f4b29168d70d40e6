from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from jobboard.models.application import Application
from jobboard.models.application_note import ApplicationNote
from jobboard.models.user import User


class ApplicationNotFound(LookupError):
    pass


class ApplicationRepository:
    """
    The slice of the application store the interview core needs: read an
    application, move its status and append to its audit trail.

    Writes are flushed, never committed; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_application(self, application_id: int) -> Application:
        application = self.db.get(Application, application_id)
        if not application:
            raise ApplicationNotFound("Application not found")
        return application

    def update_application_status(self, application_id: int, status: str) -> Application:
        application = self.get_application(application_id)
        application.status = status
        self.db.flush()
        return application

    def append_application_note(
        self,
        application_id: int,
        *,
        type: str,
        body: str,
        author: Optional[User] = None,
        author_name: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        system: bool = False,
    ) -> ApplicationNote:
        note = ApplicationNote(
            application_id=application_id,
            type=type,
            body=body,
            author_id=author.id if author is not None else None,
            author_name=author.display_name if author is not None else author_name,
            is_system_generated=system,
            data=data,
        )
        self.db.add(note)
        # Let caller decide commit timing; flush so `id`/`created_at` can be used.
        self.db.flush()
        return note
