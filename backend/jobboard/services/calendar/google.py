from __future__ import annotations

from datetime import datetime
from typing import Any

from jobboard.services.calendar.base import CalendarEvent, CalendarProvider, EventSpec

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


def _parse_datetime(value: Any, fallback: datetime) -> datetime:
    if not isinstance(value, str) or not value:
        return fallback
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return fallback


def _meeting_link(payload: dict[str, Any]) -> str | None:
    conference = payload.get("conferenceData") or {}
    for entry in conference.get("entryPoints") or []:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    return payload.get("hangoutLink") or None


class GoogleCalendarProvider(CalendarProvider):
    name = "google"
    token_url = GOOGLE_TOKEN_URL

    def __init__(self, *args, calendar_id: str = "primary", **kwargs):
        super().__init__(*args, **kwargs)
        self.calendar_id = calendar_id

    def events_url(self) -> str:
        return f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}/events"

    def event_params(self, spec: EventSpec) -> dict[str, Any]:
        return {
            "conferenceDataVersion": 1 if spec.request_meeting_link else 0,
            # Attendees are internal interviewers only.
            "sendUpdates": "all",
        }

    def build_event_body(self, spec: EventSpec) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": spec.summary,
            "description": spec.description,
            "start": {"dateTime": spec.start.isoformat(), "timeZone": spec.timezone},
            "end": {"dateTime": spec.end.isoformat(), "timeZone": spec.timezone},
            "attendees": [
                {"email": a.email, "displayName": a.name, "responseStatus": "accepted"}
                for a in spec.attendees
            ],
            "transparency": "opaque",
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }
        if spec.private:
            body["visibility"] = "private"
            body["guestsCanInviteOthers"] = False
        if spec.location:
            body["location"] = spec.location
        if spec.request_meeting_link:
            body["conferenceData"] = {
                "createRequest": {
                    "requestId": spec.request_id,
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            }
        return body

    def parse_event(self, payload: dict[str, Any], spec: EventSpec) -> CalendarEvent:
        start = payload.get("start") or {}
        end = payload.get("end") or {}
        return CalendarEvent(
            id=str(payload["id"]),
            html_link=payload.get("htmlLink"),
            meeting_link=_meeting_link(payload),
            start=_parse_datetime(start.get("dateTime"), spec.start),
            end=_parse_datetime(end.get("dateTime"), spec.end),
        )
