"""
Application Models

Applications with their status ledger, eligibility snapshot and the
historical merit snapshot. Status changes only happen through
``api.services.workflow``, which writes the ledger row in the same
transaction.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Optional, TYPE_CHECKING

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    String,
    Boolean,
    ForeignKey,
    BigInteger,
    Integer,
    DateTime,
    Numeric,
    Text,
    JSON,
    func,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
)

from database.engine import Base, BigIntPK
from database.models.lifecycle import LifecycleMixin

if TYPE_CHECKING:
    from database.models.applicants import Applicant
    from database.models.posts import Post


# ==================== Application Enums ===================== #
class ApplicationStatus(str, PyEnum):
    """Lifecycle status of an application."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    ELIGIBLE = "ELIGIBLE"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    ON_HOLD = "ON_HOLD"
    PROVISIONAL_SELECTED = "PROVISIONAL_SELECTED"
    SELECTED = "SELECTED"
    SELECTED_IN_OTHER_POST = "SELECTED_IN_OTHER_POST"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class ActorType(str, PyEnum):
    """Who caused a status change."""

    SYSTEM = "SYSTEM"
    ADMIN = "ADMIN"
    APPLICANT = "APPLICANT"


# ==================== Application ===================== #
class Application(Base, LifecycleMixin):
    """
    One applicant's application to one post.

    ``merit_score`` is advisory only; ranking views always recompute it.
    """

    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("applicant_id", "post_id", name="uq_application_applicant_post"),
        Index("ix_applications_post_status", "post_id", "status"),
    )

    application_id: Mapped[int] = mapped_column(
        BigIntPK, primary_key=True, autoincrement=True
    )
    application_no: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )

    applicant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("applicants.applicant_id"), nullable=False, index=True
    )
    post_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("posts.post_id"), nullable=False, index=True
    )
    district_id: Mapped[int | None] = mapped_column(BigInteger, index=True)

    status: Mapped[ApplicationStatus] = mapped_column(
        SQLEnum(ApplicationStatus, native_enum=False, length=50),
        nullable=False,
        default=ApplicationStatus.DRAFT,
        index=True,
    )
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    declaration_accepted: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Eligibility, captured once at submission
    system_eligibility: Mapped[bool | None] = mapped_column(Boolean)
    system_eligibility_reason: Mapped[str | None] = mapped_column(Text)
    eligibility_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    # Advisory, may be stale
    merit_score: Mapped[int | None] = mapped_column(BigInteger)

    # Selection outcome
    selection_status: Mapped[str | None] = mapped_column(String(50))
    selected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    auto_rejected_reason: Mapped[str | None] = mapped_column(Text)
    verified_by: Mapped[int | None] = mapped_column(BigInteger)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    verification_remarks: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    applicant: Mapped["Applicant"] = relationship()
    post: Mapped["Post"] = relationship()


# ==================== Status Ledger ===================== #
class ApplicationStatusHistory(Base):
    """
    Append-only ledger of status changes.

    Rows are inserted alongside the status update and never updated or
    deleted.
    """

    __tablename__ = "application_status_history"
    __table_args__ = (
        Index("ix_status_history_application_created", "application_id", "created_at"),
    )

    history_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("applications.application_id"), nullable=False
    )
    old_status: Mapped[ApplicationStatus | None] = mapped_column(
        SQLEnum(ApplicationStatus, native_enum=False, length=50)
    )
    new_status: Mapped[ApplicationStatus] = mapped_column(
        SQLEnum(ApplicationStatus, native_enum=False, length=50), nullable=False
    )
    changed_by: Mapped[int | None] = mapped_column(BigInteger)
    changed_by_type: Mapped[ActorType] = mapped_column(
        SQLEnum(ActorType, native_enum=False, length=50), nullable=False
    )
    remarks: Mapped[str | None] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    change_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    application: Mapped["Application"] = relationship()


# ==================== Eligibility Snapshot ===================== #
class EligibilityResult(Base):
    """Latest eligibility verdict for an application (one row per application)."""

    __tablename__ = "eligibility_results"

    result_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("applications.application_id"),
        unique=True,
        nullable=False,
    )
    is_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False)
    eligibility_status: Mapped[ApplicationStatus] = mapped_column(
        SQLEnum(ApplicationStatus, native_enum=False, length=50), nullable=False
    )
    # Ordered list of {"name", "passed", "message"}
    checks: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    rejection_reasons: Mapped[list[str] | None] = mapped_column(JSON)
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    checked_by: Mapped[str] = mapped_column(String(50), nullable=False, default="SYSTEM")

    application: Mapped["Application"] = relationship()


# ==================== Merit Snapshot ===================== #
class MeritList(Base):
    """
    Historical merit snapshot for a post (and optionally a district).

    Written on demand from the live ranking; never read back by ranking views.
    """

    __tablename__ = "merit_lists"
    __table_args__ = (
        Index("ix_merit_lists_post_district_rank", "post_id", "district_id", "rank"),
    )

    merit_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("applications.application_id"), nullable=False, index=True
    )
    post_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("posts.post_id"), nullable=False
    )
    district_id: Mapped[int | None] = mapped_column(BigInteger)

    score: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)

    education_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    marks: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    locality: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    experience_months: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    age_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_local_candidate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    generated_by: Mapped[int | None] = mapped_column(BigInteger)
