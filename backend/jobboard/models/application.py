import enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from jobboard.core.base import Base


class ApplicationStatus(str, enum.Enum):
    applied = "Applied"
    reviewing = "Reviewing"
    interview = "Interview"
    hired = "Hired"
    rejected = "Rejected"


class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, index=True)

    job_id = Column(
        Integer,
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Candidate identity as submitted on the application form.
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)

    status = Column(String(20), nullable=False, default=ApplicationStatus.applied.value)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    job = relationship("Job", back_populates="applications")

    notes = relationship(
        "ApplicationNote",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="desc(ApplicationNote.created_at)",
    )

    interview_tokens = relationship(
        "InterviewToken",
        back_populates="application",
        order_by="desc(InterviewToken.created_at)",
    )

    @property
    def job_title(self) -> str:
        job = getattr(self, "job", None)
        return (job.title if job and job.title else None) or "Position"
