from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from jobboard.models.calendar_credential import CalendarCredential
from jobboard.services.calendar import CredentialMissing
from jobboard.services.calendar_credentials import CalendarCredentialStore


def test_get_returns_none_when_not_connected(db_session, manager):
    assert CalendarCredentialStore(db_session).get_calendar_credential(manager.id) is None


def test_disabled_credential_is_treated_as_missing(db_session, manager, connected_calendar):
    row = db_session.query(CalendarCredential).filter(CalendarCredential.user_id == manager.id).one()
    row.enabled = False
    db_session.commit()

    assert CalendarCredentialStore(db_session).get_calendar_credential(manager.id) is None


def test_save_replaces_previous_connection(db_session, manager, connected_calendar):
    store = CalendarCredentialStore(db_session)
    again = store.save_calendar_credential(manager.id, replace(connected_calendar, access_token="second"))

    assert again.access_token == "second"
    assert again.version == connected_calendar.version + 1
    assert db_session.query(CalendarCredential).count() == 1


def test_save_refreshed_writes_when_version_matches(db_session, manager, connected_calendar):
    store = CalendarCredentialStore(db_session)
    refreshed = replace(
        connected_calendar,
        access_token="refreshed",
        expires_at=connected_calendar.expires_at + timedelta(hours=1),
        version=connected_calendar.version + 1,
    )

    result = store.save_refreshed(connected_calendar, refreshed)

    assert result == refreshed
    stored = store.get_calendar_credential(manager.id)
    assert stored.access_token == "refreshed"
    assert stored.version == connected_calendar.version + 1
    assert stored.expires_at == refreshed.expires_at


def test_concurrent_refresh_loser_adopts_stored_credential(db_session, manager, connected_calendar):
    store = CalendarCredentialStore(db_session)
    first = replace(connected_calendar, access_token="winner", version=connected_calendar.version + 1)
    second = replace(connected_calendar, access_token="loser", version=connected_calendar.version + 1)

    # Both requests observed the same version; only the first write lands.
    assert store.save_refreshed(connected_calendar, first).access_token == "winner"
    result = store.save_refreshed(connected_calendar, second)

    assert result.access_token == "winner"
    assert store.get_calendar_credential(manager.id).access_token == "winner"


def test_refresh_after_disconnect_raises_missing(db_session, manager, connected_calendar):
    db_session.query(CalendarCredential).delete()
    db_session.commit()

    with pytest.raises(CredentialMissing):
        CalendarCredentialStore(db_session).save_refreshed(
            connected_calendar, replace(connected_calendar, access_token="x", version=connected_calendar.version + 1)
        )
