from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from jobboard.core.base import Base


class InterviewRescheduleRequest(Base):
    __tablename__ = "interview_reschedule_requests"

    id = Column(Integer, primary_key=True, index=True)

    interview_token_id = Column(
        Integer,
        ForeignKey("interview_tokens.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    application_id = Column(
        Integer,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    response_type = Column(String(30), nullable=False)  # alternative_times|written_response|reason
    # List of {"date": "YYYY-MM-DD", "time": "HH:MM"}
    alternative_times = Column(JSON, nullable=True)
    written_response = Column(Text, nullable=True)
    reason = Column(Text, nullable=True)

    # pending until a hiring manager acts on it
    status = Column(String(20), nullable=False, server_default="pending")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    interview_token = relationship("InterviewToken", back_populates="reschedule_requests")
