"""
Allotment Email Models

Distribution batches (schedules) and per-(post, applicant) delivery
tracking for allotment letters.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    ForeignKey,
    BigInteger,
    Integer,
    DateTime,
    Text,
    func,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
)

from database.engine import Base, BigIntPK
from database.models.lifecycle import LifecycleMixin

if TYPE_CHECKING:
    from database.models.posts import Post, PostAllotmentUpload


class ScheduleStatus(str, PyEnum):
    """Status of a distribution batch."""

    SCHEDULED = "SCHEDULED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class TrackingStatus(str, PyEnum):
    """Delivery status of one candidate's allotment letter."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    BOUNCED = "BOUNCED"


class AllotmentEmailSchedule(Base, LifecycleMixin):
    """
    One planned distribution run for a post.

    At most one SCHEDULED row per post; the scheduler checks this before
    inserting.
    """

    __tablename__ = "allotment_email_schedules"
    __table_args__ = (
        Index("ix_allotment_schedules_status_date", "status", "scheduled_date"),
    )

    schedule_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("posts.post_id"), nullable=False, index=True
    )
    upload_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("post_allotment_uploads.upload_id"), nullable=False
    )
    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[ScheduleStatus] = mapped_column(
        SQLEnum(ScheduleStatus, native_enum=False, length=50),
        nullable=False,
        default=ScheduleStatus.SCHEDULED,
    )

    total_recipients: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emails_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    emails_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)

    created_by: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    post: Mapped["Post"] = relationship(lazy="selectin")
    upload: Mapped["PostAllotmentUpload"] = relationship(lazy="selectin")


class AllotmentEmailTracking(Base):
    """
    Delivery record for one candidate of one post.

    The (post_id, applicant_id) unique constraint is what guarantees a
    candidate is sent a given post's letter at most once.
    """

    __tablename__ = "allotment_email_tracking"
    __table_args__ = (
        UniqueConstraint("post_id", "applicant_id", name="uq_allotment_tracking_post_applicant"),
        Index("ix_allotment_tracking_schedule_status", "schedule_id", "status"),
    )

    tracking_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("allotment_email_schedules.schedule_id"), nullable=False
    )
    post_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("posts.post_id"), nullable=False
    )
    applicant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("applicants.applicant_id"), nullable=False
    )
    application_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("applications.application_id"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[TrackingStatus] = mapped_column(
        SQLEnum(TrackingStatus, native_enum=False, length=50),
        nullable=False,
        default=TrackingStatus.PENDING,
    )
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    schedule: Mapped["AllotmentEmailSchedule"] = relationship()
