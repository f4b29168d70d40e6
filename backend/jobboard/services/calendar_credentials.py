from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from jobboard.core.clock import as_utc
from jobboard.models.calendar_credential import CalendarCredential
from jobboard.services.calendar.base import Credential, CredentialMissing

logger = logging.getLogger(__name__)


def _to_credential(row: CalendarCredential) -> Credential:
    return Credential(
        user_id=row.user_id,
        provider=row.provider,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=as_utc(row.expires_at),
        version=int(row.version or 0),
    )


class CalendarCredentialStore:
    """
    Persistence for per-user calendar credentials.

    Refresh results are written with a compare-and-swap on `version`, so two
    requests refreshing the same user's token at once cannot clobber each other:
    the loser discards its result and adopts whatever is stored.
    """

    def __init__(self, db: Session):
        self.db = db

    def _row(self, user_id: int) -> CalendarCredential | None:
        return (
            self.db.query(CalendarCredential)
            .filter(CalendarCredential.user_id == user_id)
            .populate_existing()
            .first()
        )

    def get_calendar_credential(self, user_id: int) -> Credential | None:
        row = self._row(user_id)
        if not row or not row.enabled or not row.access_token:
            return None
        return _to_credential(row)

    def save_calendar_credential(self, user_id: int, credential: Credential) -> Credential:
        """Store a credential from the connect (OAuth callback) flow, replacing any previous one."""
        row = self._row(user_id)
        if row is None:
            row = CalendarCredential(user_id=user_id, version=0)
            self.db.add(row)
        row.provider = credential.provider
        row.access_token = credential.access_token
        row.refresh_token = credential.refresh_token
        row.expires_at = credential.expires_at
        row.enabled = True
        row.version = int(row.version or 0) + 1
        self.db.commit()
        self.db.refresh(row)
        return _to_credential(row)

    def save_refreshed(self, previous: Credential, refreshed: Credential) -> Credential:
        updated = (
            self.db.query(CalendarCredential)
            .filter(
                CalendarCredential.user_id == previous.user_id,
                CalendarCredential.version == previous.version,
            )
            .update(
                {
                    CalendarCredential.access_token: refreshed.access_token,
                    CalendarCredential.refresh_token: refreshed.refresh_token,
                    CalendarCredential.expires_at: refreshed.expires_at,
                    CalendarCredential.version: previous.version + 1,
                },
                synchronize_session=False,
            )
        )
        if updated:
            self.db.commit()
            return refreshed

        current = self.get_calendar_credential(previous.user_id)
        if current is None:
            # Disconnected while we were refreshing; nothing usable is stored.
            raise CredentialMissing("Calendar integration was disconnected")
        logger.info(
            "Discarding calendar refresh for user %s: version %s already superseded by %s",
            previous.user_id,
            previous.version,
            current.version,
        )
        return current
