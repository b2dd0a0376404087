"""Access control value objects.

Decisions are derived at read time from enrollment and lesson progress;
unlock state is never stored.
"""

from dataclasses import dataclass, field
from enum import Enum

from tongue.courses.models import Lesson


class AccessDeniedReason(str, Enum):
    """Why access was refused."""

    NOT_AUTHENTICATED = "not_authenticated"
    NOT_ENROLLED = "not_enrolled"
    SUSPENDED = "suspended"
    LESSON_LOCKED = "lesson_locked"
    COURSE_NOT_FOUND = "course_not_found"
    LESSON_NOT_FOUND = "lesson_not_found"
    VERIFICATION_ERROR = "verification_error"


@dataclass(frozen=True)
class AccessControlConfig:
    """Which checks to apply; every check is on by default."""

    require_authentication: bool = True
    require_enrollment: bool = True
    check_sequential_unlock: bool = True
    allow_preview_lessons: bool = True


@dataclass(frozen=True)
class AccessCheckResult:
    """Access decision with UI hints for denials."""

    has_access: bool
    reason: AccessDeniedReason | None = None
    message: str | None = None
    redirect_to: str | None = None
    enrollment_required: bool = False
    course_id: str | None = None
    lesson_id: str | None = None
    blocking_lesson_id: str | None = None

    @classmethod
    def granted(
        cls, course_id: str | None = None, lesson_id: str | None = None
    ) -> "AccessCheckResult":
        return cls(has_access=True, course_id=course_id, lesson_id=lesson_id)


@dataclass(frozen=True)
class AccessibleLessons:
    """Lessons a user may open, in course order."""

    lessons: list[Lesson] = field(default_factory=list)
    total_count: int = 0

    @property
    def accessible_count(self) -> int:
        return len(self.lessons)
