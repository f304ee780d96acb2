"""Import every model so ``Base.metadata`` knows all tables."""

from database.models.lifecycle import Lifecycle, LifecycleMixin
from database.models.applicants import (
    Applicant,
    ApplicantPersonal,
    ApplicantAddress,
    ApplicantEducation,
    ApplicantExperience,
    EducationLevel,
)
from database.models.posts import Post, PostAllotmentUpload
from database.models.applications import (
    ActorType,
    Application,
    ApplicationStatus,
    ApplicationStatusHistory,
    EligibilityResult,
    MeritList,
)
from database.models.allotments import (
    AllotmentEmailSchedule,
    AllotmentEmailTracking,
    ScheduleStatus,
    TrackingStatus,
)

__all__ = [
    "Lifecycle",
    "LifecycleMixin",
    "Applicant",
    "ApplicantPersonal",
    "ApplicantAddress",
    "ApplicantEducation",
    "ApplicantExperience",
    "EducationLevel",
    "Post",
    "PostAllotmentUpload",
    "ActorType",
    "Application",
    "ApplicationStatus",
    "ApplicationStatusHistory",
    "EligibilityResult",
    "MeritList",
    "AllotmentEmailSchedule",
    "AllotmentEmailTracking",
    "ScheduleStatus",
    "TrackingStatus",
]
