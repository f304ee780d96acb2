"""
Applicant Models

Applicant master record plus the personal, address, education and
experience sub-records consumed by merit scoring. Their CRUD lives outside
this service; only the fields the decision pipeline reads are modelled.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Boolean,
    ForeignKey,
    BigInteger,
    Integer,
    Date,
    DateTime,
    Numeric,
    func,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database.engine import Base, BigIntPK
from database.models.lifecycle import LifecycleMixin


class EducationLevel(Base, LifecycleMixin):
    """Education level master. ``display_order`` doubles as the merit rank."""

    __tablename__ = "education_levels"

    level_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    level_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    level_name: Mapped[str] = mapped_column(String(255), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Applicant(Base, LifecycleMixin):
    """A registered applicant. One applicant may apply to many posts."""

    __tablename__ = "applicants"

    applicant_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(255), index=True)
    mobile_no: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    personal: Mapped[Optional["ApplicantPersonal"]] = relationship(
        back_populates="applicant", uselist=False, lazy="selectin"
    )
    address: Mapped[Optional["ApplicantAddress"]] = relationship(
        back_populates="applicant", uselist=False, lazy="selectin"
    )
    education: Mapped[list["ApplicantEducation"]] = relationship(
        back_populates="applicant", lazy="selectin"
    )
    experience: Mapped[list["ApplicantExperience"]] = relationship(
        back_populates="applicant", lazy="selectin"
    )


class ApplicantPersonal(Base):
    __tablename__ = "applicant_personal"
    __table_args__ = (UniqueConstraint("applicant_id"),)

    personal_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("applicants.applicant_id", ondelete="CASCADE"), nullable=False
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    dob: Mapped[date | None] = mapped_column(Date)

    applicant: Mapped["Applicant"] = relationship(back_populates="personal")


class ApplicantAddress(Base):
    __tablename__ = "applicant_addresses"
    __table_args__ = (UniqueConstraint("applicant_id"),)

    address_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("applicants.applicant_id", ondelete="CASCADE"), nullable=False
    )
    permanent_district_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    current_district_id: Mapped[int | None] = mapped_column(BigInteger)

    applicant: Mapped["Applicant"] = relationship(back_populates="address")


class ApplicantEducation(Base, LifecycleMixin):
    __tablename__ = "applicant_education"

    education_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("applicants.applicant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    education_level_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("education_levels.level_id")
    )
    percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))

    applicant: Mapped["Applicant"] = relationship(back_populates="education")
    education_level: Mapped[Optional["EducationLevel"]] = relationship(lazy="selectin")


class ApplicantExperience(Base, LifecycleMixin):
    __tablename__ = "applicant_experience"

    experience_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    applicant_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("applicants.applicant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    total_months: Mapped[int | None] = mapped_column(Integer)
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Counted towards the experience tier of the merit score
    is_relevant: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    applicant: Mapped["Applicant"] = relationship(back_populates="experience")
