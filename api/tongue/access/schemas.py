"""Pydantic schemas for access checks."""

from pydantic import BaseModel, Field

from tongue.courses.models import Lesson

from .models import AccessCheckResult, AccessDeniedReason, AccessibleLessons


class AccessCheckResponse(BaseModel):
    """Access decision."""

    has_access: bool
    reason: AccessDeniedReason | None = None
    message: str | None = None
    redirect_to: str | None = None
    enrollment_required: bool = False
    course_id: str | None = None
    lesson_id: str | None = None
    blocking_lesson_id: str | None = None

    @classmethod
    def from_result(cls, result: AccessCheckResult) -> "AccessCheckResponse":
        return cls(
            has_access=result.has_access,
            reason=result.reason,
            message=result.message,
            redirect_to=result.redirect_to,
            enrollment_required=result.enrollment_required,
            course_id=result.course_id,
            lesson_id=result.lesson_id,
            blocking_lesson_id=result.blocking_lesson_id,
        )


class LessonSummary(BaseModel):
    """Lesson listing entry."""

    id: str
    order: int
    title: str
    is_preview: bool = False
    duration: float = 0.0

    @classmethod
    def from_entity(cls, lesson: Lesson) -> "LessonSummary":
        return cls(
            id=lesson.id,
            order=lesson.order,
            title=lesson.title,
            is_preview=lesson.is_preview,
            duration=lesson.duration,
        )


class AccessibleLessonsResponse(BaseModel):
    """Lessons the caller may open."""

    lessons: list[LessonSummary] = Field(default_factory=list)
    accessible_count: int = 0
    total_count: int = 0

    @classmethod
    def from_result(cls, result: AccessibleLessons) -> "AccessibleLessonsResponse":
        return cls(
            lessons=[LessonSummary.from_entity(lesson) for lesson in result.lessons],
            accessible_count=result.accessible_count,
            total_count=result.total_count,
        )
