"""Tests for AccessControlService."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from tests.conftest import COURSE_ID, make_course
from tongue.access.models import AccessControlConfig, AccessDeniedReason
from tongue.access.service import AccessControlService, first_unmet_prerequisite
from tongue.core.database import InMemoryDocumentStore
from tongue.courses.service import CourseService
from tongue.enrollments.models import ENROLLMENTS_COLLECTION, enrollment_key
from tongue.enrollments.service import EnrollmentService
from tongue.progress.service import ProgressService


@pytest.fixture
def access_service(
    course_service: CourseService,
    enrollment_service: EnrollmentService,
    progress_service: ProgressService,
) -> AccessControlService:
    return AccessControlService(course_service, enrollment_service, progress_service)


@pytest_asyncio.fixture
async def enrolled(
    course_service: CourseService, enrollment_service: EnrollmentService
) -> str:
    await course_service.save_course(make_course())
    await enrollment_service.enroll("u1", COURSE_ID)
    return "u1"


class TestFirstUnmetPrerequisite:
    """Tests for the sequential unlock predicate."""

    def test_first_lesson_has_no_prerequisite(self) -> None:
        course = make_course()
        assert first_unmet_prerequisite(course, course.lessons[0], set()) is None

    def test_earliest_incomplete_lesson_blocks(self) -> None:
        course = make_course()
        blocking = first_unmet_prerequisite(course, course.lessons[2], {"lesson-1"})
        assert blocking.id == "lesson-0"

    def test_previews_are_not_prerequisites(self) -> None:
        course = make_course(preview_ids=("lesson-0",))
        assert first_unmet_prerequisite(course, course.lessons[1], set()) is None


class TestCheckLessonAccess:
    """Tests for lesson-level decisions."""

    @pytest.mark.asyncio
    async def test_sequential_unlock(
        self, enrolled: str, access_service: AccessControlService, progress_service: ProgressService
    ) -> None:
        first = await access_service.check_lesson_access(enrolled, COURSE_ID, "lesson-0")
        second = await access_service.check_lesson_access(enrolled, COURSE_ID, "lesson-1")
        third = await access_service.check_lesson_access(enrolled, COURSE_ID, "lesson-2")

        assert first.has_access is True
        assert second.has_access is False
        assert second.reason == AccessDeniedReason.LESSON_LOCKED
        assert second.blocking_lesson_id == "lesson-0"
        assert "Lesson 0" in second.message
        assert third.blocking_lesson_id == "lesson-0"

        await progress_service.mark_lesson_completed(enrolled, COURSE_ID, "lesson-0")

        second = await access_service.check_lesson_access(enrolled, COURSE_ID, "lesson-1")
        third = await access_service.check_lesson_access(enrolled, COURSE_ID, "lesson-2")
        assert second.has_access is True
        assert third.blocking_lesson_id == "lesson-1"

    @pytest.mark.asyncio
    async def test_unauthenticated_does_no_reads(self) -> None:
        course_service = AsyncMock()
        enrollment_service = AsyncMock()
        progress_service = AsyncMock()
        service = AccessControlService(course_service, enrollment_service, progress_service)

        result = await service.check_lesson_access(None, COURSE_ID, "lesson-0")

        assert result.reason == AccessDeniedReason.NOT_AUTHENTICATED
        assert result.redirect_to == "/login"
        course_service.get_course.assert_not_awaited()
        enrollment_service.get_enrollment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preview_without_user(
        self, course_service: CourseService, access_service: AccessControlService
    ) -> None:
        await course_service.save_course(make_course(preview_ids=("lesson-0",)))
        config = AccessControlConfig(require_authentication=False)

        preview = await access_service.check_lesson_access(None, COURSE_ID, "lesson-0", config)
        regular = await access_service.check_lesson_access(None, COURSE_ID, "lesson-1", config)

        assert preview.has_access is True
        assert regular.reason == AccessDeniedReason.NOT_ENROLLED
        assert regular.enrollment_required is True

    @pytest.mark.asyncio
    async def test_preview_requires_login_by_default(
        self, course_service: CourseService, access_service: AccessControlService
    ) -> None:
        await course_service.save_course(make_course(preview_ids=("lesson-0",)))

        result = await access_service.check_lesson_access(None, COURSE_ID, "lesson-0")

        assert result.reason == AccessDeniedReason.NOT_AUTHENTICATED

    @pytest.mark.asyncio
    async def test_not_enrolled(
        self, course_service: CourseService, access_service: AccessControlService
    ) -> None:
        await course_service.save_course(make_course())

        result = await access_service.check_lesson_access("u2", COURSE_ID, "lesson-0")

        assert result.reason == AccessDeniedReason.NOT_ENROLLED
        assert result.redirect_to == f"/courses/{COURSE_ID}/enroll"

    @pytest.mark.asyncio
    async def test_suspended(
        self, enrolled: str, store: InMemoryDocumentStore, access_service: AccessControlService
    ) -> None:
        await store.merge(
            ENROLLMENTS_COLLECTION, enrollment_key(enrolled, COURSE_ID), {"status": "suspended"}
        )

        lesson = await access_service.check_lesson_access(enrolled, COURSE_ID, "lesson-0")
        course = await access_service.check_course_access(enrolled, COURSE_ID)

        assert lesson.reason == AccessDeniedReason.SUSPENDED
        assert course.reason == AccessDeniedReason.SUSPENDED

    @pytest.mark.asyncio
    async def test_completed_enrollment_keeps_access(
        self, enrolled: str, store: InMemoryDocumentStore, access_service: AccessControlService
    ) -> None:
        await store.merge(
            ENROLLMENTS_COLLECTION, enrollment_key(enrolled, COURSE_ID), {"status": "completed"}
        )

        result = await access_service.check_lesson_access(enrolled, COURSE_ID, "lesson-0")

        assert result.has_access is True

    @pytest.mark.asyncio
    async def test_unknown_course_and_lesson(
        self, enrolled: str, access_service: AccessControlService
    ) -> None:
        course = await access_service.check_lesson_access(enrolled, "nope", "lesson-0")
        lesson = await access_service.check_lesson_access(enrolled, COURSE_ID, "lesson-9")

        assert course.reason == AccessDeniedReason.COURSE_NOT_FOUND
        assert lesson.reason == AccessDeniedReason.LESSON_NOT_FOUND

    @pytest.mark.asyncio
    async def test_non_sequential_course(
        self,
        course_service: CourseService,
        enrollment_service: EnrollmentService,
        access_service: AccessControlService,
    ) -> None:
        await course_service.save_course(make_course(unlock_sequential=False))
        await enrollment_service.enroll("u1", COURSE_ID)

        result = await access_service.check_lesson_access("u1", COURSE_ID, "lesson-2")

        assert result.has_access is True

    @pytest.mark.asyncio
    async def test_read_failure_is_verification_error(self) -> None:
        course_service = AsyncMock()
        course_service.get_course.side_effect = RuntimeError("timeout")
        service = AccessControlService(course_service, AsyncMock(), AsyncMock())

        result = await service.check_lesson_access("u1", COURSE_ID, "lesson-0")

        assert result.has_access is False
        assert result.reason == AccessDeniedReason.VERIFICATION_ERROR


class TestCheckCourseAccess:
    """Tests for course-level decisions."""

    @pytest.mark.asyncio
    async def test_enrolled_user(self, enrolled: str, access_service: AccessControlService) -> None:
        result = await access_service.check_course_access(enrolled, COURSE_ID)
        assert result.has_access is True

    @pytest.mark.asyncio
    async def test_does_not_read_course(self) -> None:
        course_service = AsyncMock()
        enrollment_service = AsyncMock()
        enrollment_service.get_enrollment.return_value = None
        service = AccessControlService(course_service, enrollment_service, AsyncMock())

        result = await service.check_course_access("u1", COURSE_ID)

        assert result.reason == AccessDeniedReason.NOT_ENROLLED
        course_service.get_course.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_enrollment_read_failure(self) -> None:
        enrollment_service = AsyncMock()
        enrollment_service.get_enrollment.side_effect = RuntimeError("down")
        service = AccessControlService(AsyncMock(), enrollment_service, AsyncMock())

        result = await service.check_course_access("u1", COURSE_ID)

        assert result.reason == AccessDeniedReason.VERIFICATION_ERROR


class TestGetAccessibleLessons:
    """Tests for the accessible lesson listing."""

    @pytest.mark.asyncio
    async def test_unlocked_prefix(
        self, enrolled: str, access_service: AccessControlService, progress_service: ProgressService
    ) -> None:
        await progress_service.mark_lesson_completed(enrolled, COURSE_ID, "lesson-0")

        result = await access_service.get_accessible_lessons(enrolled, COURSE_ID)

        assert [lesson.id for lesson in result.lessons] == ["lesson-0", "lesson-1"]
        assert result.total_count == 3
        assert result.accessible_count == 2

    @pytest.mark.asyncio
    async def test_previews_only_without_enrollment(
        self, course_service: CourseService, access_service: AccessControlService
    ) -> None:
        await course_service.save_course(make_course(preview_ids=("lesson-2",)))

        result = await access_service.get_accessible_lessons("u9", COURSE_ID)

        assert [lesson.id for lesson in result.lessons] == ["lesson-2"]
        assert result.total_count == 3

    @pytest.mark.asyncio
    async def test_later_preview_listed_past_locked_lesson(
        self,
        course_service: CourseService,
        enrollment_service: EnrollmentService,
        access_service: AccessControlService,
    ) -> None:
        await course_service.save_course(make_course(preview_ids=("lesson-2",)))
        await enrollment_service.enroll("u1", COURSE_ID)

        result = await access_service.get_accessible_lessons("u1", COURSE_ID)

        assert [lesson.id for lesson in result.lessons] == ["lesson-0", "lesson-2"]

    @pytest.mark.asyncio
    async def test_unknown_course(self, access_service: AccessControlService) -> None:
        result = await access_service.get_accessible_lessons("u1", "nope")

        assert result.lessons == []
        assert result.total_count == 0
