"""Access control decision engine.

Decision order for a lesson:
1. Authentication (no persistence read when it fails)
2. Preview lessons are open when previews are allowed
3. Enrollment (``suspended`` is reported separately from ``not_enrolled``)
4. Sequential unlock: every earlier non-preview lesson must be completed
5. Grant

Course-level checks apply steps 1 and 3 only. Any failure while reading
collaborators yields ``verification_error``; these methods never raise.
"""

from tongue.core.logging import get_logger
from tongue.courses.models import Course, Lesson
from tongue.courses.service import CourseService
from tongue.enrollments.service import EnrollmentService
from tongue.progress.models import LessonProgress
from tongue.progress.reducer import MergeResult
from tongue.progress.service import PersistenceUnavailableError, ProgressService

from .models import (
    AccessCheckResult,
    AccessControlConfig,
    AccessDeniedReason,
    AccessibleLessons,
)


logger = get_logger(__name__)

DEFAULT_ACCESS_CONFIG = AccessControlConfig()


# ==============================================================================
# Pure predicates
# ==============================================================================


def first_unmet_prerequisite(
    course: Course, lesson: Lesson, completed_lesson_ids: set[str]
) -> Lesson | None:
    """First earlier non-preview lesson that is not completed, if any."""
    for candidate in course.lessons:
        if candidate.order >= lesson.order:
            break
        if candidate.is_preview:
            continue
        if candidate.id not in completed_lesson_ids:
            return candidate
    return None


# ==============================================================================
# Denial builders
# ==============================================================================


def _not_authenticated(course_id: str, lesson_id: str | None = None) -> AccessCheckResult:
    return AccessCheckResult(
        has_access=False,
        reason=AccessDeniedReason.NOT_AUTHENTICATED,
        message="You must be logged in to access this course.",
        redirect_to="/login",
        course_id=course_id,
        lesson_id=lesson_id,
    )


def _not_enrolled(course_id: str, lesson_id: str | None = None) -> AccessCheckResult:
    return AccessCheckResult(
        has_access=False,
        reason=AccessDeniedReason.NOT_ENROLLED,
        message="You need to enroll in this course to access its content.",
        redirect_to=f"/courses/{course_id}/enroll",
        enrollment_required=True,
        course_id=course_id,
        lesson_id=lesson_id,
    )


def _suspended(course_id: str, lesson_id: str | None = None) -> AccessCheckResult:
    return AccessCheckResult(
        has_access=False,
        reason=AccessDeniedReason.SUSPENDED,
        message="Your access to this course has been suspended. Please contact support.",
        redirect_to="/support",
        enrollment_required=True,
        course_id=course_id,
        lesson_id=lesson_id,
    )


def _lesson_locked(course_id: str, lesson_id: str, blocking: Lesson) -> AccessCheckResult:
    return AccessCheckResult(
        has_access=False,
        reason=AccessDeniedReason.LESSON_LOCKED,
        message=f'Complete "{blocking.title}" to unlock this lesson.',
        redirect_to=f"/learn/{course_id}/{blocking.id}",
        course_id=course_id,
        lesson_id=lesson_id,
        blocking_lesson_id=blocking.id,
    )


def _course_not_found(course_id: str, lesson_id: str | None = None) -> AccessCheckResult:
    return AccessCheckResult(
        has_access=False,
        reason=AccessDeniedReason.COURSE_NOT_FOUND,
        message="The requested course could not be found.",
        redirect_to="/courses",
        course_id=course_id,
        lesson_id=lesson_id,
    )


def _lesson_not_found(course_id: str, lesson_id: str) -> AccessCheckResult:
    return AccessCheckResult(
        has_access=False,
        reason=AccessDeniedReason.LESSON_NOT_FOUND,
        message="The requested lesson could not be found.",
        redirect_to=f"/learn/{course_id}",
        course_id=course_id,
        lesson_id=lesson_id,
    )


def _verification_error(course_id: str, lesson_id: str | None = None) -> AccessCheckResult:
    return AccessCheckResult(
        has_access=False,
        reason=AccessDeniedReason.VERIFICATION_ERROR,
        message="Unable to verify access. Please try again.",
        course_id=course_id,
        lesson_id=lesson_id,
    )


# ==============================================================================
# Access Control Service
# ==============================================================================


class AccessControlService:
    """Service deciding course and lesson access."""

    def __init__(
        self,
        course_service: CourseService,
        enrollment_service: EnrollmentService,
        progress_service: ProgressService,
    ):
        self.course_service = course_service
        self.enrollment_service = enrollment_service
        self.progress_service = progress_service

    async def _enrollment_denial(
        self, user_id: str | None, course_id: str, lesson_id: str | None = None
    ) -> AccessCheckResult | None:
        """Denial for a missing or suspended enrollment, else None."""
        if not user_id:
            return _not_enrolled(course_id, lesson_id)
        enrollment = await self.enrollment_service.get_enrollment(user_id, course_id)
        if enrollment is None:
            return _not_enrolled(course_id, lesson_id)
        if enrollment.is_suspended:
            return _suspended(course_id, lesson_id)
        if not enrollment.grants_access:
            return _not_enrolled(course_id, lesson_id)
        return None

    async def _completed_lessons(self, user_id: str | None, course_id: str) -> set[str]:
        if not user_id:
            return set()
        progress = await self.progress_service.get_user_progress(user_id, course_id)
        return set(progress.lessons_completed) if progress else set()

    async def check_course_access(
        self,
        user_id: str | None,
        course_id: str,
        config: AccessControlConfig = DEFAULT_ACCESS_CONFIG,
    ) -> AccessCheckResult:
        """Check access to a course as a whole."""
        if config.require_authentication and not user_id:
            return _not_authenticated(course_id)

        try:
            if config.require_enrollment:
                denial = await self._enrollment_denial(user_id, course_id)
                if denial is not None:
                    return denial
        except Exception:
            logger.exception("course_access_verification_failed", course_id=course_id)
            return _verification_error(course_id)

        return AccessCheckResult.granted(course_id)

    async def check_lesson_access(
        self,
        user_id: str | None,
        course_id: str,
        lesson_id: str,
        config: AccessControlConfig = DEFAULT_ACCESS_CONFIG,
    ) -> AccessCheckResult:
        """Check access to one lesson."""
        if config.require_authentication and not user_id:
            return _not_authenticated(course_id, lesson_id)

        try:
            course = await self.course_service.get_course(course_id)
            if course is None:
                return _course_not_found(course_id, lesson_id)
            lesson = course.get_lesson(lesson_id)
            if lesson is None:
                return _lesson_not_found(course_id, lesson_id)

            if lesson.is_preview and config.allow_preview_lessons:
                return AccessCheckResult.granted(course_id, lesson_id)

            if config.require_enrollment:
                denial = await self._enrollment_denial(user_id, course_id, lesson_id)
                if denial is not None:
                    return denial

            if config.check_sequential_unlock and course.unlock_sequential:
                completed = await self._completed_lessons(user_id, course_id)
                blocking = first_unmet_prerequisite(course, lesson, completed)
                if blocking is not None:
                    return _lesson_locked(course_id, lesson_id, blocking)
        except Exception:
            logger.exception(
                "lesson_access_verification_failed",
                course_id=course_id,
                lesson_id=lesson_id,
            )
            return _verification_error(course_id, lesson_id)

        return AccessCheckResult.granted(course_id, lesson_id)

    async def get_accessible_lessons(
        self,
        user_id: str | None,
        course_id: str,
        config: AccessControlConfig = DEFAULT_ACCESS_CONFIG,
    ) -> AccessibleLessons:
        """Lessons the user may open, ordered by ``order``.

        Previews (when allowed) are always listed; without access to the
        course only previews are.
        """
        try:
            course = await self.course_service.get_course(course_id)
            if course is None:
                return AccessibleLessons()

            total = course.total_lessons
            previews = (
                [lesson for lesson in course.lessons if lesson.is_preview]
                if config.allow_preview_lessons
                else []
            )

            if config.require_authentication and not user_id:
                return AccessibleLessons(previews, total)
            if config.require_enrollment:
                denial = await self._enrollment_denial(user_id, course_id)
                if denial is not None:
                    return AccessibleLessons(previews, total)

            if not (config.check_sequential_unlock and course.unlock_sequential):
                return AccessibleLessons(list(course.lessons), total)

            completed = await self._completed_lessons(user_id, course_id)
            lessons = [
                lesson
                for lesson in course.lessons
                if (lesson.is_preview and config.allow_preview_lessons)
                or first_unmet_prerequisite(course, lesson, completed) is None
            ]
            return AccessibleLessons(lessons, total)
        except Exception:
            logger.exception("accessible_lessons_failed", course_id=course_id)
            return AccessibleLessons()

    async def deliver_snapshot(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        snapshot: LessonProgress,
    ) -> MergeResult:
        """Offline sink: re-check lesson access, then merge the snapshot.

        Snapshots are journaled while the store is down, before access could
        be verified. An unverifiable check stays retryable; a denial drops
        the snapshot.

        Raises:
            PersistenceUnavailableError: If access cannot be verified yet
        """
        result = await self.check_lesson_access(user_id, course_id, lesson_id)
        if result.reason == AccessDeniedReason.VERIFICATION_ERROR:
            raise PersistenceUnavailableError("Lesson access could not be verified")
        if not result.has_access:
            return MergeResult(progress=None, accepted=False, rejection=result.reason.value)
        return await self.progress_service.save_video_progress(
            user_id, course_id, lesson_id, snapshot
        )
