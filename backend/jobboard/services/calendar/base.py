from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Iterator, Protocol

import httpx

from jobboard.core.clock import Clock, as_utc, utcnow
from jobboard.core.config import settings

logger = logging.getLogger(__name__)


class CalendarError(Exception):
    """Base error for calendar integration failures."""


class CredentialMissing(CalendarError):
    """The user has no connected (and enabled) calendar integration."""


class CredentialExpired(CalendarError):
    """The stored refresh token was rejected or is absent; the user must reconnect."""


class CredentialRefreshFailed(CalendarError):
    """The token endpoint could not be reached or answered with an unexpected error."""


class AuthenticationExpired(CalendarError):
    """The provider rejected the access token (401 / invalid_grant) during a write."""


class CalendarWriteFailed(CalendarError):
    """The provider did not create the event (timeout, transport error, non-2xx)."""


@dataclass(frozen=True)
class Credential:
    user_id: int
    provider: str
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    version: int = 0

    def needs_refresh(self, now: datetime, window_seconds: int) -> bool:
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return True
        return expires_at <= now + timedelta(seconds=window_seconds)


@dataclass(frozen=True)
class EventAttendee:
    email: str
    name: str | None = None


@dataclass(frozen=True)
class EventSpec:
    summary: str
    description: str
    start: datetime
    end: datetime
    timezone: str
    attendees: tuple[EventAttendee, ...]
    location: str | None = None
    request_meeting_link: bool = False
    # Stable id for provider-side conference creation / write idempotency.
    request_id: str = ""
    private: bool = True


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    html_link: str | None
    meeting_link: str | None
    start: datetime
    end: datetime


class CredentialStore(Protocol):
    def save_refreshed(self, previous: Credential, refreshed: Credential) -> Credential:
        ...


def _mentions_invalid_grant(response: httpx.Response) -> bool:
    try:
        return "invalid_grant" in response.text
    except Exception:  # noqa: BLE001 - undecodable body is simply "no"
        return False


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class CalendarProvider(ABC):
    """
    Shared contract for external calendar services.

    Concrete adapters supply endpoint URLs and translate `EventSpec` to and
    from the provider's event payloads. Token refresh and error
    classification live here so both adapters behave identically.
    """

    name: str = ""
    token_url: str = ""

    def __init__(
        self,
        store: CredentialStore,
        *,
        client_id: str,
        client_secret: str,
        http_client: httpx.Client | None = None,
        timeout: float | None = None,
        refresh_window_seconds: int | None = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = http_client
        self.timeout = timeout if timeout is not None else settings.CALENDAR_HTTP_TIMEOUT_SECONDS
        self.refresh_window_seconds = (
            refresh_window_seconds
            if refresh_window_seconds is not None
            else settings.CALENDAR_REFRESH_WINDOW_SECONDS
        )
        self.clock = clock

    @contextmanager
    def _client(self) -> Iterator[httpx.Client]:
        if self._http is not None:
            yield self._http
            return
        with httpx.Client(timeout=self.timeout) as client:
            yield client

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    def ensure_fresh_credentials(self, credential: Credential) -> Credential:
        """
        Return a credential whose access token is valid for at least the
        refresh window. Safe to call repeatedly: a fresh credential is
        returned unchanged without touching the network.
        """
        now = self.clock()
        if not credential.needs_refresh(now, self.refresh_window_seconds):
            return credential

        if not credential.refresh_token:
            raise CredentialExpired(f"No {self.name} refresh token available")

        payload = self._exchange_refresh_token(credential.refresh_token)

        expires_in = payload.get("expires_in")
        try:
            lifetime = int(expires_in) if expires_in is not None else 3600
        except (TypeError, ValueError):
            lifetime = 3600

        refreshed = replace(
            credential,
            access_token=str(payload["access_token"]),
            expires_at=now + timedelta(seconds=lifetime),
            refresh_token=payload.get("refresh_token") or credential.refresh_token,
            version=credential.version + 1,
        )
        logger.info("Refreshed %s calendar token for user %s", self.name, credential.user_id)
        return self.store.save_refreshed(credential, refreshed)

    def _refresh_params(self) -> dict[str, str]:
        return {}

    def _exchange_refresh_token(self, refresh_token: str) -> dict[str, Any]:
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **self._refresh_params(),
        }
        try:
            with self._client() as client:
                response = client.post(self.token_url, data=data, timeout=self.timeout)
        except httpx.HTTPError as exc:
            logger.exception("%s token refresh request failed", self.name)
            raise CredentialRefreshFailed(f"Unable to reach {self.name} token endpoint") from exc

        if response.status_code in (400, 401) or _mentions_invalid_grant(response):
            logger.warning("%s rejected refresh token: status=%s", self.name, response.status_code)
            raise CredentialExpired(f"{self.name} refresh token was rejected")
        if not response.is_success:
            raise CredentialRefreshFailed(f"{self.name} token refresh failed: HTTP {response.status_code}")

        payload = _json_body(response)
        if not payload.get("access_token"):
            raise CredentialRefreshFailed(f"{self.name} token refresh returned no access token")
        return payload

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def create_hold_event(self, credential: Credential, spec: EventSpec) -> CalendarEvent:
        """
        Create a private, busy event for the internal attendees in `spec`.
        One write, no retry; failures surface to the caller.
        """
        headers = {"Authorization": f"Bearer {credential.access_token}"}
        try:
            with self._client() as client:
                response = client.post(
                    self.events_url(),
                    params=self.event_params(spec),
                    json=self.build_event_body(spec),
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.TimeoutException as exc:
            logger.error("%s calendar write timed out after %ss", self.name, self.timeout)
            raise CalendarWriteFailed(f"{self.name} calendar did not respond in time") from exc
        except httpx.HTTPError as exc:
            logger.exception("%s calendar write failed", self.name)
            raise CalendarWriteFailed(f"Unable to reach {self.name} calendar") from exc

        if response.status_code == 401 or _mentions_invalid_grant(response):
            raise AuthenticationExpired(f"{self.name} calendar access expired")
        if not response.is_success:
            logger.error(
                "%s calendar rejected event: status=%s body=%s",
                self.name,
                response.status_code,
                response.text[:500],
            )
            raise CalendarWriteFailed(f"{self.name} calendar rejected the event (HTTP {response.status_code})")

        payload = _json_body(response)
        if not payload.get("id"):
            raise CalendarWriteFailed(f"{self.name} calendar returned no event id")
        return self.parse_event(payload, spec)

    @abstractmethod
    def events_url(self) -> str:
        ...

    def event_params(self, spec: EventSpec) -> dict[str, Any]:
        return {}

    @abstractmethod
    def build_event_body(self, spec: EventSpec) -> dict[str, Any]:
        ...

    @abstractmethod
    def parse_event(self, payload: dict[str, Any], spec: EventSpec) -> CalendarEvent:
        ...
