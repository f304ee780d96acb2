"""Shared fixtures and utilities for tests."""

import os

# Settings are read at import time, so defaults go in before any app import
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("CELERY_BROKER_URL", "redis://localhost:6379/1")
os.environ.setdefault("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")
os.environ.setdefault("SMTP_HOST", "smtp.test.local")
os.environ.setdefault("SMTP_FROM_EMAIL", "noreply@recruitment.test")
os.environ.setdefault("JSON_LOGS", "false")

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import database.models  # noqa: F401
from database.engine import Base
from database.models import (
    AllotmentEmailSchedule,
    AllotmentEmailTracking,
    Applicant,
    ApplicantAddress,
    ApplicantEducation,
    ApplicantExperience,
    ApplicantPersonal,
    Application,
    ApplicationStatus,
    ApplicationStatusHistory,
    EducationLevel,
    Post,
    PostAllotmentUpload,
)

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class DataFactory:
    """Builds the records the recruitment services consume."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._seq = count(1)
        self._levels: dict[int, EducationLevel] = {}

    async def education_level(self, display_order: int) -> EducationLevel:
        if display_order not in self._levels:
            level = EducationLevel(
                level_code=f"LVL{display_order}",
                level_name=f"Level {display_order}",
                display_order=display_order,
            )
            self.session.add(level)
            await self.session.flush()
            self._levels[display_order] = level
        return self._levels[display_order]

    async def post(
        self,
        district_id: Optional[int] = 10,
        post_name: Optional[str] = None,
        **overrides,
    ) -> Post:
        n = next(self._seq)
        post = Post(
            post_code=f"POST{n:03d}",
            post_name=post_name or f"Anganwadi Worker {n}",
            district_id=district_id,
            **overrides,
        )
        self.session.add(post)
        await self.session.flush()
        return post

    async def applicant(
        self,
        *,
        email: Optional[str] = "__auto__",
        full_name: Optional[str] = None,
        dob: Optional[date] = date(1995, 6, 15),
        permanent_district_id: Optional[int] = 10,
        education: Sequence[tuple] = ((5, "70.00"),),
        experience_months: Sequence[int] = (),
    ) -> Applicant:
        """
        Create an applicant with personal, address, education and
        experience records. ``education`` is a list of
        (display_order, percentage) pairs.
        """
        n = next(self._seq)
        if email == "__auto__":
            email = f"candidate{n}@example.com"

        education_rows = []
        for display_order, percentage in education:
            level = await self.education_level(display_order)
            education_rows.append(ApplicantEducation(
                education_level_id=level.level_id,
                education_level=level,
                percentage=Decimal(str(percentage)),
                is_active=True,
            ))

        applicant = Applicant(
            email=email,
            mobile_no=f"9{n:09d}",
            personal=ApplicantPersonal(full_name=full_name or f"Candidate {n}", dob=dob),
            address=ApplicantAddress(permanent_district_id=permanent_district_id),
            education=education_rows,
            experience=[
                ApplicantExperience(total_months=months, is_relevant=True, is_active=True)
                for months in experience_months
            ],
        )
        self.session.add(applicant)
        await self.session.flush()
        return applicant

    async def application(
        self,
        applicant: Applicant,
        post: Post,
        *,
        status: ApplicationStatus = ApplicationStatus.ELIGIBLE,
        submitted_at: Optional[datetime] = None,
        application_no: Optional[str] = None,
        district_id: Optional[int] = None,
    ) -> Application:
        n = next(self._seq)
        is_draft = status == ApplicationStatus.DRAFT
        application = Application(
            application_no=application_no or f"APP-{n:05d}",
            applicant_id=applicant.applicant_id,
            post_id=post.post_id,
            applicant=applicant,
            post=post,
            district_id=district_id if district_id is not None else post.district_id,
            status=status,
            is_locked=not is_draft,
            declaration_accepted=not is_draft,
            submitted_at=None if is_draft else (submitted_at or BASE_TIME + timedelta(minutes=n)),
        )
        self.session.add(application)
        await self.session.flush()
        return application

    async def upload(self, post: Post, file_path: str = "allotments/letter.pdf") -> PostAllotmentUpload:
        upload = PostAllotmentUpload(
            post_id=post.post_id,
            post=post,
            file_name="letter.pdf",
            original_name="Allotment Letter.pdf",
            file_path=file_path,
            file_size=1024,
            mime_type="application/pdf",
        )
        self.session.add(upload)
        await self.session.flush()
        return upload

    async def commit(self) -> None:
        await self.session.commit()

    async def status_of(self, application_id: int) -> ApplicationStatus:
        result = await self.session.execute(
            select(Application.status).where(Application.application_id == application_id)
        )
        return result.scalar_one()

    async def history_count(self, application_id: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(ApplicationStatusHistory).where(
                ApplicationStatusHistory.application_id == application_id
            )
        )
        return result.scalar_one()

    async def schedules_for(self, post_id: int) -> list[AllotmentEmailSchedule]:
        result = await self.session.execute(
            select(AllotmentEmailSchedule)
            .where(AllotmentEmailSchedule.post_id == post_id)
            .order_by(AllotmentEmailSchedule.schedule_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def tracking_for(self, post_id: int) -> list[AllotmentEmailTracking]:
        result = await self.session.execute(
            select(AllotmentEmailTracking)
            .where(AllotmentEmailTracking.post_id == post_id)
            .order_by(AllotmentEmailTracking.tracking_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def factory(session):
    return DataFactory(session)


@pytest.fixture
def upload_dir(tmp_path):
    """Upload root holding one allotment letter at allotments/letter.pdf."""
    letter = tmp_path / "allotments" / "letter.pdf"
    letter.parent.mkdir(parents=True)
    letter.write_bytes(b"%PDF-1.4\n%%EOF")
    return tmp_path
