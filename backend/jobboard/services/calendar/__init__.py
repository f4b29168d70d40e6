# jobboard/services/calendar/__init__.py
"""
External calendar integrations.

- base.py: provider contract, value objects and error taxonomy
- google.py: Google Calendar API adapter
- microsoft.py: Microsoft Graph adapter
"""
from __future__ import annotations

from jobboard.core.config import settings
from jobboard.services.calendar.base import (
    AuthenticationExpired,
    CalendarError,
    CalendarEvent,
    CalendarProvider,
    CalendarWriteFailed,
    Credential,
    CredentialExpired,
    CredentialMissing,
    CredentialRefreshFailed,
    CredentialStore,
    EventAttendee,
    EventSpec,
)
from jobboard.services.calendar.google import GoogleCalendarProvider
from jobboard.services.calendar.microsoft import MicrosoftCalendarProvider

PROVIDERS: dict[str, type[CalendarProvider]] = {
    "google": GoogleCalendarProvider,
    "microsoft": MicrosoftCalendarProvider,
}


def get_calendar_provider(name: str, store: CredentialStore, **kwargs) -> CalendarProvider:
    provider_cls = PROVIDERS.get((name or "").strip().lower())
    if provider_cls is None:
        raise CredentialMissing(f"Unsupported calendar provider: {name!r}")
    client_id, client_secret = settings.calendar_client_config(provider_cls.name)
    return provider_cls(store, client_id=client_id, client_secret=client_secret, **kwargs)


__all__ = [
    "AuthenticationExpired",
    "CalendarError",
    "CalendarEvent",
    "CalendarProvider",
    "CalendarWriteFailed",
    "Credential",
    "CredentialExpired",
    "CredentialMissing",
    "CredentialRefreshFailed",
    "CredentialStore",
    "EventAttendee",
    "EventSpec",
    "GoogleCalendarProvider",
    "MicrosoftCalendarProvider",
    "get_calendar_provider",
]
