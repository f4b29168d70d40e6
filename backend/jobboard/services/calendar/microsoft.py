from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jobboard.core.config import settings
from jobboard.services.calendar.base import CalendarEvent, CalendarProvider, EventSpec

GRAPH_API = "https://graph.microsoft.com/v1.0"
MICROSOFT_SCOPES = "offline_access Calendars.ReadWrite User.Read"


def _local_wall_time(value: datetime, tz_name: str) -> str:
    # Graph wants the wall-clock time paired with a separate timeZone field.
    try:
        return value.astimezone(ZoneInfo(tz_name)).replace(tzinfo=None).isoformat()
    except ZoneInfoNotFoundError:
        return value.replace(tzinfo=None).isoformat()


def _parse_graph_datetime(block: dict[str, Any], fallback: datetime) -> datetime:
    raw = block.get("dateTime")
    if not isinstance(raw, str) or not raw:
        return fallback
    # Graph returns up to 7 fractional digits; fromisoformat accepts at most 6.
    head, dot, frac = raw.partition(".")
    text = f"{head}.{frac[:6]}" if dot else head
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return fallback
    if parsed.tzinfo is None:
        try:
            parsed = parsed.replace(tzinfo=ZoneInfo(block.get("timeZone") or "UTC"))
        except ZoneInfoNotFoundError:
            return fallback
    return parsed


class MicrosoftCalendarProvider(CalendarProvider):
    name = "microsoft"

    def __init__(self, *args, tenant: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.tenant = tenant or settings.MICROSOFT_TENANT
        self.token_url = f"https://login.microsoftonline.com/{self.tenant}/oauth2/v2.0/token"

    def _refresh_params(self) -> dict[str, str]:
        return {"scope": MICROSOFT_SCOPES}

    def events_url(self) -> str:
        return f"{GRAPH_API}/me/calendar/events"

    def build_event_body(self, spec: EventSpec) -> dict[str, Any]:
        body: dict[str, Any] = {
            "subject": spec.summary,
            "body": {"contentType": "text", "content": spec.description},
            "start": {"dateTime": _local_wall_time(spec.start, spec.timezone), "timeZone": spec.timezone},
            "end": {"dateTime": _local_wall_time(spec.end, spec.timezone), "timeZone": spec.timezone},
            "attendees": [
                {"emailAddress": {"address": a.email, "name": a.name or a.email}, "type": "required"}
                for a in spec.attendees
            ],
            "showAs": "busy",
            "isReminderOn": True,
            "reminderMinutesBeforeStart": 30,
            "allowNewTimeProposals": False,
        }
        if spec.private:
            body["sensitivity"] = "private"
        if spec.request_id:
            body["transactionId"] = spec.request_id
        if spec.location:
            body["location"] = {"displayName": spec.location}
        if spec.request_meeting_link:
            body["isOnlineMeeting"] = True
            body["onlineMeetingProvider"] = "teamsForBusiness"
        return body

    def parse_event(self, payload: dict[str, Any], spec: EventSpec) -> CalendarEvent:
        online = payload.get("onlineMeeting") or {}
        return CalendarEvent(
            id=str(payload["id"]),
            html_link=payload.get("webLink"),
            meeting_link=online.get("joinUrl") or payload.get("onlineMeetingUrl") or None,
            start=_parse_graph_datetime(payload.get("start") or {}, spec.start),
            end=_parse_graph_datetime(payload.get("end") or {}, spec.end),
        )
