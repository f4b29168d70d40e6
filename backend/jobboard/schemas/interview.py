from __future__ import annotations

from datetime import date as date_type, datetime, time as time_type
from typing import Annotated, Any, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from jobboard.core.config import settings


class TimeSlot(BaseModel):
    date: date_type
    time: time_type
    timezone: Optional[str] = Field(default=None, max_length=64)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @model_validator(mode="after")
    def _wall_time_exists(self) -> "TimeSlot":
        # Spring-forward gaps have no instant; a UTC round trip lands on a different wall time.
        start = self.start()
        if start.astimezone(ZoneInfo("UTC")).astimezone(start.tzinfo).replace(tzinfo=None) != start.replace(tzinfo=None):
            raise ValueError(
                f"{self.date.isoformat()} {self.time.strftime('%H:%M')} does not exist in {self.timezone_name} "
                "(daylight saving change)"
            )
        return self

    @property
    def timezone_name(self) -> str:
        return self.timezone or settings.DEFAULT_INTERVIEW_TIMEZONE

    def start(self) -> datetime:
        naive = datetime.combine(self.date, self.time.replace(tzinfo=None))
        return naive.replace(tzinfo=ZoneInfo(self.timezone_name))


class InterviewerIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Interviewer name is required")
        return v


class _InterviewBase(BaseModel):
    duration: int = Field(gt=0, le=480, description="Length in minutes")
    interviewers: list[InterviewerIn] = Field(min_length=1)
    agenda: Optional[str] = Field(default=None, max_length=5000)
    notes: Optional[str] = Field(default=None, max_length=5000)


def _reject_location(v: Optional[str]) -> None:
    if v is not None and v.strip():
        raise ValueError("location is only allowed for in-person interviews")
    return None


NoLocation = Annotated[Optional[str], AfterValidator(_reject_location)]


class VideoInterview(_InterviewBase):
    type: Literal["video"]
    # Supplied link means the meeting is managed by hand; otherwise the calendar provider generates one.
    meeting_link: Optional[str] = Field(default=None, max_length=1000)
    location: NoLocation = None

    @field_validator("meeting_link")
    @classmethod
    def _http_link(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not v.startswith(("https://", "http://")):
            raise ValueError("meeting_link must be an http(s) URL")
        return v


class PhoneInterview(_InterviewBase):
    type: Literal["phone"]
    location: NoLocation = None


class InPersonInterview(_InterviewBase):
    type: Literal["in-person"]
    location: str = Field(min_length=1, max_length=500)

    @field_validator("location")
    @classmethod
    def _strip_location(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("location is required for in-person interviews")
        return v


InterviewData = Annotated[
    Union[VideoInterview, PhoneInterview, InPersonInterview],
    Field(discriminator="type"),
]


class ScheduleInterviewIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    application_id: int = Field(alias="applicationId")
    selected_time_slot: TimeSlot = Field(alias="selectedTimeSlot")
    interview_data: InterviewData = Field(alias="interviewData")
    send_email_notification: bool = Field(default=True, alias="sendEmailNotification")


class CalendarEventOut(BaseModel):
    id: str
    html_link: Optional[str] = None
    meeting_link: Optional[str] = None
    start_time: datetime
    end_time: datetime


class ScheduleResultOut(BaseModel):
    success: bool = True
    message: str
    interview_token_id: int
    status: str
    acceptance_token: str
    reschedule_token: str
    expires_at: datetime
    calendar_event: CalendarEventOut
    notification: str
    notification_error: Optional[str] = None


class InterviewerOut(BaseModel):
    name: str
    email: str
    is_creator: bool = False


class RescheduleRequestOut(BaseModel):
    id: int
    response_type: str
    alternative_times: Optional[list[dict[str, Any]]] = None
    written_response: Optional[str] = None
    reason: Optional[str] = None
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InterviewOut(BaseModel):
    id: int
    application_id: int
    candidate_name: str
    candidate_email: str
    job_title: str
    scheduled_at: datetime
    timezone: str
    duration_minutes: int
    interview_type: str
    interviewers: list[InterviewerOut]
    location: Optional[str] = None
    agenda: Optional[str] = None
    notes: Optional[str] = None
    calendar_event_id: Optional[str] = None
    meeting_link: Optional[str] = None
    meeting_provider: str
    status: str
    expires_at: datetime
    responded_at: Optional[datetime] = None
    invitation_sent_at: Optional[datetime] = None
    is_completed: bool
    completed_at: Optional[datetime] = None
    latest_reschedule_request: Optional[RescheduleRequestOut] = None


class AlternativeTime(BaseModel):
    date: date_type
    time: time_type


class RescheduleRequestIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response_type: Optional[Literal["alternative_times", "written_response", "reason"]] = Field(
        default=None, alias="responseType"
    )
    alternative_times: Optional[list[AlternativeTime]] = Field(default=None, alias="alternativeTimes", max_length=10)
    written_response: Optional[str] = Field(default=None, alias="writtenResponse", max_length=5000)
    reason: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _matches_response_type(self) -> "RescheduleRequestIn":
        if self.response_type is None:
            if self.alternative_times:
                self.response_type = "alternative_times"
            elif (self.written_response or "").strip():
                self.response_type = "written_response"
            elif (self.reason or "").strip():
                self.response_type = "reason"
            else:
                raise ValueError("Provide alternativeTimes, writtenResponse or a reason")
        if self.response_type == "alternative_times" and not self.alternative_times:
            raise ValueError("alternativeTimes is required for alternative_times responses")
        if self.response_type == "written_response" and not (self.written_response or "").strip():
            raise ValueError("writtenResponse is required for written_response responses")
        if self.response_type == "reason" and not (self.reason or "").strip():
            raise ValueError("reason is required for reason responses")
        return self


class PublicInterviewOut(BaseModel):
    """What a token holder may see; never includes token values."""

    job_title: str
    candidate_name: str
    scheduled_at: datetime
    timezone: str
    duration_minutes: int
    interview_type: str
    interviewers: list[InterviewerOut]
    location: Optional[str] = None
    agenda: Optional[str] = None
    notes: Optional[str] = None
    meeting_link: Optional[str] = None
    status: str
    expires_at: datetime


class InterviewResponseOut(BaseModel):
    success: bool = True
    message: str
    status: str
    changed: bool
    interview: PublicInterviewOut


class ResendInvitationOut(BaseModel):
    success: bool
    message: str
    notification: str
