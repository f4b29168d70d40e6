import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from jobboard.core.base import Base


class MeetingProvider(str, enum.Enum):
    google = "google"
    microsoft = "microsoft"
    manual = "manual"


class InterviewTokenStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    reschedule_requested = "reschedule_requested"
    expired = "expired"
    cancelled = "cancelled"


# Statuses a candidate can still respond from.
RESPONDABLE_STATUSES = frozenset({InterviewTokenStatus.pending.value, InterviewTokenStatus.reschedule_requested.value})


class InterviewToken(Base):
    __tablename__ = "interview_tokens"

    id = Column(Integer, primary_key=True, index=True)

    application_id = Column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    scheduled_by_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Raw values; both are 256-bit random hex strings.
    acceptance_token = Column(String(128), unique=True, index=True, nullable=False)
    reschedule_token = Column(String(128), unique=True, index=True, nullable=False)

    scheduled_at = Column(DateTime(timezone=True), nullable=False, index=True)
    timezone = Column(String(64), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    interview_type = Column(String(20), nullable=False)  # video|phone|in-person

    # Ordered list of {"name", "email", "is_creator"}
    interviewers = Column(JSON, nullable=False)
    location = Column(String(500), nullable=True)
    agenda = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    calendar_event_id = Column(String(255), nullable=True)
    calendar_html_link = Column(String(1000), nullable=True)
    meeting_link = Column(String(1000), nullable=True)
    meeting_provider = Column(String(20), nullable=False, server_default=MeetingProvider.manual.value)

    status = Column(String(30), nullable=False, server_default=InterviewTokenStatus.pending.value, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    invitation_sent_at = Column(DateTime(timezone=True), nullable=True)

    is_completed = Column(Boolean, nullable=False, server_default="false", default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    application = relationship("Application", back_populates="interview_tokens")
    scheduled_by = relationship("User")

    reschedule_requests = relationship(
        "InterviewRescheduleRequest",
        back_populates="interview_token",
        cascade="all, delete-orphan",
        order_by="desc(InterviewRescheduleRequest.created_at)",
    )
