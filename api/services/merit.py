"""
Merit scoring and ranking.

``calculate_merit_score`` is a pure function of an application (with its
applicant's records and post loaded) and a ``ScoringPolicy``. Rankings are
always recomputed live; the persisted ``MeritList`` snapshot and
``Application.merit_score`` are advisory copies.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_FLOOR
from enum import Enum as PyEnum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.exceptions import PostNotFound
from core.utils.datetime import as_utc, completed_years, months_between, now, today
from database.models.applications import Application, ApplicationStatus, MeritList
from database.models.posts import Post

logger = logging.getLogger(__name__)

# Positional weights: each tier's maximum stays below one unit of the tier above
EDUCATION_WEIGHT = 10 ** 12
MARKS_WEIGHT = 10 ** 7
LOCALITY_WEIGHT = 10 ** 6
EXPERIENCE_WEIGHT = 10 ** 3
AGE_WEIGHT = 1

MAX_MARKS = 100
MAX_MARKS_POINTS = MAX_MARKS * 100
MAX_LOCALITY = 1
MAX_EXPERIENCE_MONTHS = 999
MAX_AGE_SCORE = 100

# Statuses ranked by default in the merit view
RANKABLE_STATUSES: Tuple[ApplicationStatus, ...] = (
    ApplicationStatus.ELIGIBLE,
    ApplicationStatus.ON_HOLD,
    ApplicationStatus.PROVISIONAL_SELECTED,
    ApplicationStatus.SELECTED,
)


class AgePreference(str, PyEnum):
    OLDER = "OLDER"
    YOUNGER = "YOUNGER"


@dataclass(frozen=True)
class ScoringPolicy:
    """Explicit knobs for the scorer, so scoring never reads global config."""

    age_preference: AgePreference = AgePreference.OLDER
    max_education_rank: int = 999

    @classmethod
    def from_settings(cls) -> "ScoringPolicy":
        return cls(
            age_preference=AgePreference(settings.merit_age_preference),
            max_education_rank=settings.merit_max_education_rank,
        )


@dataclass(frozen=True)
class MeritBreakdown:
    """The five tier values behind a merit score."""

    education_rank: int
    marks: Decimal
    locality: int
    experience_months: int
    age_score: int

    @property
    def marks_points(self) -> int:
        """Marks in hundredths of a percent (70.25% -> 7025)."""
        return int((self.marks * 100).to_integral_value(rounding=ROUND_FLOOR))

    @property
    def score(self) -> int:
        return (
            self.education_rank * EDUCATION_WEIGHT
            + self.marks_points * MARKS_WEIGHT
            + self.locality * LOCALITY_WEIGHT
            + self.experience_months * EXPERIENCE_WEIGHT
            + self.age_score * AGE_WEIGHT
        )

    @property
    def is_local_candidate(self) -> bool:
        return self.locality == 1

    def as_dict(self) -> Dict[str, Any]:
        return {
            "education_rank": self.education_rank,
            "marks": float(self.marks),
            "locality": self.locality,
            "experience_months": self.experience_months,
            "age_score": self.age_score,
        }


def _is_live(record: Any) -> bool:
    # Unflushed records have is_active=None until the column default applies
    return getattr(record, "is_active", True) is not False


def _education_rank(record: Any, cap: int) -> int:
    level = getattr(record, "education_level", None)
    rank = (level.display_order or 0) if level is not None else 0
    return max(0, min(int(rank), cap))


def _percentage(record: Any) -> Decimal:
    value = getattr(record, "percentage", None)
    if value is None:
        return Decimal(0)
    return min(max(Decimal(str(value)), Decimal(0)), Decimal(MAX_MARKS))


def _experience_months(record: Any, as_of: date) -> int:
    if record.total_months:
        return max(0, int(record.total_months))
    if record.start_date:
        end = as_of if record.is_current or not record.end_date else record.end_date
        return months_between(record.start_date, end)
    return 0


def calculate_merit_score(
    application: Application,
    policy: ScoringPolicy,
    as_of: Optional[date] = None,
) -> MeritBreakdown:
    """
    Compute the merit breakdown for one application.

    Tiers, most significant first:
    1. Education rank: highest ``display_order`` among education records
    2. Marks: best percentage among records at that top rank only
    3. Locality: 1 when permanent district equals the post's district
    4. Experience: relevant months, capped at 999
    5. Age: completed years clamped to 0..100, or 100 - age for YOUNGER

    Args:
        application: Application with ``applicant`` (and its records) and ``post`` loaded
        policy: Scoring policy
        as_of: Reference day for age and ongoing experience (defaults to today)

    Returns:
        MeritBreakdown; ``.score`` is the combined ordinal value
    """
    as_of = as_of or today()
    applicant = application.applicant
    post = application.post

    education = [e for e in (applicant.education or []) if _is_live(e)]
    ranks = [_education_rank(e, policy.max_education_rank) for e in education]
    education_rank = max(ranks, default=0)
    marks = max(
        (_percentage(e) for e, rank in zip(education, ranks) if rank == education_rank),
        default=Decimal(0),
    )

    locality = 0
    address = applicant.address
    if (
        post is not None
        and post.district_id is not None
        and address is not None
        and address.permanent_district_id == post.district_id
    ):
        locality = 1

    experience = sum(
        _experience_months(x, as_of)
        for x in (applicant.experience or [])
        if _is_live(x) and x.is_relevant is not False
    )
    experience = min(experience, MAX_EXPERIENCE_MONTHS)

    age_score = 0
    personal = applicant.personal
    if personal is not None and personal.dob is not None:
        age = min(completed_years(personal.dob, as_of), MAX_AGE_SCORE)
        if policy.age_preference == AgePreference.OLDER:
            age_score = age
        else:
            age_score = MAX_AGE_SCORE - age

    return MeritBreakdown(
        education_rank=education_rank,
        marks=marks,
        locality=locality,
        experience_months=experience,
        age_score=age_score,
    )


@dataclass(frozen=True)
class RankedApplication:
    rank: int
    application: Application
    breakdown: MeritBreakdown

    @property
    def score(self) -> int:
        return self.breakdown.score


def _tie_break_key(item: Tuple[Application, MeritBreakdown]) -> tuple:
    application, breakdown = item
    submitted = as_utc(application.submitted_at)
    return (
        -breakdown.score,
        submitted is None,
        submitted or as_utc(datetime.max),
        application.application_no or "",
        application.application_id,
    )


def rank_applications(
    scored: Iterable[Tuple[Application, MeritBreakdown]],
) -> List[RankedApplication]:
    """
    Order scored applications and assign ranks 1..N.

    Score descending, then earlier submission, then application number;
    the application id settles anything still equal, so ranks never tie.
    """
    ordered = sorted(scored, key=_tie_break_key)
    return [
        RankedApplication(rank=index, application=application, breakdown=breakdown)
        for index, (application, breakdown) in enumerate(ordered, start=1)
    ]


async def _get_post(session: AsyncSession, post_id: int) -> Post:
    result = await session.execute(
        select(Post).where(Post.post_id == post_id, Post.live())
    )
    post = result.scalar_one_or_none()
    if post is None:
        raise PostNotFound(post_id)
    return post


async def _rank_post(
    session: AsyncSession,
    post_id: int,
    district_id: Optional[int],
    statuses: Sequence[ApplicationStatus],
    policy: ScoringPolicy,
    as_of: Optional[date],
) -> List[RankedApplication]:
    query = (
        select(Application)
        .where(
            Application.post_id == post_id,
            Application.status.in_(list(statuses)),
            Application.submitted_at.is_not(None),
            Application.live(),
        )
        .options(
            selectinload(Application.applicant),
            selectinload(Application.post),
        )
    )
    if district_id is not None:
        query = query.where(Application.district_id == district_id)

    result = await session.execute(query)
    applications = result.scalars().all()
    logger.info(f"Calculating merit scores for {len(applications)} applications in post {post_id}")

    return rank_applications(
        (application, calculate_merit_score(application, policy, as_of))
        for application in applications
    )


def _other_application_to_dict(application: Application) -> Dict[str, Any]:
    return {
        "application_id": application.application_id,
        "application_no": application.application_no,
        "status": application.status,
        "submitted_at": application.submitted_at,
        "post_id": application.post_id,
        "post_name": application.post.post_name if application.post else None,
        "post_code": application.post.post_code if application.post else None,
    }


async def _applicant_cross_reference(
    session: AsyncSession,
    applicant_ids: Sequence[int],
) -> Dict[int, List[Application]]:
    if not applicant_ids:
        return {}
    result = await session.execute(
        select(Application)
        .where(Application.applicant_id.in_(applicant_ids), Application.live())
        .options(selectinload(Application.post))
        .order_by(Application.submitted_at.desc(), Application.application_id.desc())
    )
    by_applicant: Dict[int, List[Application]] = {}
    for application in result.scalars().all():
        by_applicant.setdefault(application.applicant_id, []).append(application)
    return by_applicant


async def _status_summary(
    session: AsyncSession,
    post_id: int,
    district_id: Optional[int],
) -> Dict[str, int]:
    query = (
        select(Application.status, func.count())
        .where(
            Application.post_id == post_id,
            Application.submitted_at.is_not(None),
            Application.live(),
        )
        .group_by(Application.status)
    )
    if district_id is not None:
        query = query.where(Application.district_id == district_id)

    summary = {s.value: 0 for s in ApplicationStatus if s != ApplicationStatus.DRAFT}
    for status, count in (await session.execute(query)).all():
        summary[ApplicationStatus(status).value] = count
    return summary


async def get_merit_list(
    session: AsyncSession,
    post_id: int,
    *,
    district_id: Optional[int] = None,
    statuses: Optional[Sequence[ApplicationStatus]] = None,
    page: int = 1,
    page_size: int = 50,
    policy: Optional[ScoringPolicy] = None,
    as_of: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Ranked merit view for a post.

    The whole qualifying population is scored and ranked before the page is
    cut, so ranks are global rather than per page.

    Args:
        session: Database session
        post_id: Post to rank
        district_id: Optional district filter
        statuses: Statuses to include (defaults to RANKABLE_STATUSES)
        page: 1-indexed page
        page_size: Items per page
        policy: Scoring policy (defaults to configured policy)
        as_of: Reference day for age and experience

    Returns:
        Dictionary with post, ranked items, pagination and status summary
    """
    post = await _get_post(session, post_id)
    policy = policy or ScoringPolicy.from_settings()
    statuses = tuple(statuses or RANKABLE_STATUSES)

    ranked = await _rank_post(session, post_id, district_id, statuses, policy, as_of)
    total = len(ranked)
    offset = (page - 1) * page_size
    page_items = ranked[offset:offset + page_size]

    cross_ref = await _applicant_cross_reference(
        session, sorted({item.application.applicant_id for item in page_items})
    )

    items = []
    for item in page_items:
        application = item.application
        applicant = application.applicant
        applicant_apps = cross_ref.get(application.applicant_id, [])
        items.append({
            "merit_rank": item.rank,
            "merit_score": item.score,
            "breakdown": item.breakdown.as_dict(),
            "is_local_candidate": item.breakdown.is_local_candidate,
            "application_id": application.application_id,
            "application_no": application.application_no,
            "applicant_id": application.applicant_id,
            "full_name": applicant.personal.full_name if applicant.personal else None,
            "district_id": application.district_id,
            "status": application.status,
            "submitted_at": application.submitted_at,
            "total_applications": len(applicant_apps),
            "other_applications": [
                _other_application_to_dict(other)
                for other in applicant_apps
                if other.post_id != post_id
            ],
        })

    return {
        "post": {
            "post_id": post.post_id,
            "post_code": post.post_code,
            "post_name": post.post_name,
            "district_id": post.district_id,
        },
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size,
        "status_summary": await _status_summary(session, post_id, district_id),
    }


async def generate_merit_snapshot(
    session: AsyncSession,
    post_id: int,
    *,
    district_id: Optional[int] = None,
    generated_by: Optional[int] = None,
    policy: Optional[ScoringPolicy] = None,
    as_of: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Persist the current live ranking as a historical MeritList snapshot.

    Replaces any previous snapshot for the same (post, district) and
    refreshes the advisory ``Application.merit_score`` in one transaction.
    """
    policy = policy or ScoringPolicy.from_settings()
    generated_at = now()

    try:
        await _get_post(session, post_id)
        ranked = await _rank_post(
            session, post_id, district_id, RANKABLE_STATUSES, policy, as_of
        )

        stale = delete(MeritList).where(MeritList.post_id == post_id)
        if district_id is None:
            stale = stale.where(MeritList.district_id.is_(None))
        else:
            stale = stale.where(MeritList.district_id == district_id)
        await session.execute(stale)

        for item in ranked:
            breakdown = item.breakdown
            session.add(MeritList(
                application_id=item.application.application_id,
                post_id=post_id,
                district_id=district_id,
                score=item.score,
                rank=item.rank,
                education_rank=breakdown.education_rank,
                marks=breakdown.marks,
                locality=breakdown.locality,
                experience_months=breakdown.experience_months,
                age_score=breakdown.age_score,
                is_local_candidate=breakdown.is_local_candidate,
                generated_at=generated_at,
                generated_by=generated_by,
            ))
            item.application.merit_score = item.score

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Merit snapshot generated for post {post_id}: {len(ranked)} candidates")
    return {
        "post_id": post_id,
        "district_id": district_id,
        "generated_at": generated_at,
        "total": len(ranked),
    }
