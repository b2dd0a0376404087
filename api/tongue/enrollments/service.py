"""Enrollment service layer.

Business logic for:
- Idempotent enrollment (direct enroll action or payment success)
- Progress document creation on first enrollment
- Best-effort course enrollment counter
- Enrollment queries
"""

from typing import NamedTuple

from tongue.core.clock import Clock, format_timestamp, utc_now
from tongue.core.database import DocumentStore, DocumentStoreError
from tongue.core.locks import KeyedLocks
from tongue.core.logging import get_logger
from tongue.courses.service import CourseService
from tongue.progress.service import ProgressError, ProgressService

from .models import (
    ENROLLMENTS_COLLECTION,
    EnrollOutcome,
    Enrollment,
    EnrollmentStatus,
    enrollment_key,
)


logger = get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class EnrollmentError(Exception):
    """Base enrollment error."""

    def __init__(self, message: str, code: str = "enrollment_failed"):
        self.message = message
        self.code = code
        super().__init__(message)


class CourseNotFoundError(EnrollmentError):
    """Course does not exist."""

    def __init__(self, message: str = "Course not found"):
        super().__init__(message, "course_not_found")


class EnrollResult(NamedTuple):
    """Enrollment plus whether this call created it."""

    enrollment: Enrollment
    outcome: EnrollOutcome

    @property
    def created(self) -> bool:
        return self.outcome == EnrollOutcome.CREATED


# ==============================================================================
# Enrollment Service
# ==============================================================================


class EnrollmentService:
    """Service for course enrollments."""

    def __init__(
        self,
        store: DocumentStore,
        course_service: CourseService,
        progress_service: ProgressService,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.course_service = course_service
        self.progress_service = progress_service
        self.clock = clock
        self._locks = KeyedLocks()

    async def enroll(
        self,
        user_id: str,
        course_id: str,
        payment_id: str | None = None,
    ) -> EnrollResult:
        """Enroll a user in a course.

        Idempotent on ``{user_id}_{course_id}``: a second call reports
        ``duplicate_enrollment`` and leaves the record and any progress
        untouched.

        Raises:
            CourseNotFoundError: If the course does not exist
            EnrollmentError: If the enrollment could not be written
        """
        async with self._locks.hold(enrollment_key(user_id, course_id)):
            return await self._enroll(user_id, course_id, payment_id)

    async def _enroll(
        self, user_id: str, course_id: str, payment_id: str | None
    ) -> EnrollResult:
        existing = await self.get_enrollment(user_id, course_id)
        if existing is not None:
            await self._ensure_progress(existing)
            logger.info(
                "enrollment_duplicate",
                user_id=user_id,
                course_id=course_id,
                status=existing.status,
            )
            return EnrollResult(existing, EnrollOutcome.DUPLICATE_ENROLLMENT)

        try:
            course = await self.course_service.get_course(course_id)
        except DocumentStoreError as e:
            raise EnrollmentError(e.message) from e
        if course is None:
            raise CourseNotFoundError

        now = self.clock()
        enrollment = Enrollment(
            user_id=user_id,
            course_id=course_id,
            enrolled_at=now,
            status=EnrollmentStatus.ACTIVE.value,
            payment_id=payment_id,
            updated_at=now,
        )
        try:
            await self.store.merge(
                ENROLLMENTS_COLLECTION, enrollment.key, enrollment.to_document()
            )
        except DocumentStoreError as e:
            logger.exception("enrollment_write_failed", user_id=user_id, course_id=course_id)
            raise EnrollmentError(e.message) from e

        await self._ensure_progress(enrollment)

        try:
            await self.course_service.increment_enrollment_count(course_id)
        except DocumentStoreError as e:
            logger.warning(
                "enrollment_count_increment_failed",
                course_id=course_id,
                error=e.message,
            )

        logger.info(
            "user_enrolled",
            user_id=user_id,
            course_id=course_id,
            payment_id=payment_id,
        )
        return EnrollResult(enrollment, EnrollOutcome.CREATED)

    async def on_payment_verified(
        self, user_id: str, course_id: str, payment_id: str
    ) -> EnrollResult:
        """Enroll after a verified payment.

        Safe under at-least-once delivery: replays only stamp the payment
        reference and refresh ``updated_at``.
        """
        async with self._locks.hold(enrollment_key(user_id, course_id)):
            result = await self._enroll(user_id, course_id, payment_id)
            if result.created:
                return result
            await self._stamp_payment(result.enrollment, payment_id)
        return result

    async def _stamp_payment(self, enrollment: Enrollment, payment_id: str) -> None:
        """Record a replayed payment on an existing enrollment."""
        enrollment.payment_id = payment_id
        enrollment.updated_at = self.clock()
        try:
            await self.store.merge(
                ENROLLMENTS_COLLECTION,
                enrollment.key,
                {
                    "payment_id": payment_id,
                    "updated_at": format_timestamp(enrollment.updated_at),
                },
            )
        except DocumentStoreError as e:
            raise EnrollmentError(e.message) from e

        await self._ensure_progress(enrollment)
        logger.info(
            "payment_enrollment_refreshed",
            user_id=enrollment.user_id,
            course_id=enrollment.course_id,
            payment_id=payment_id,
        )

    async def _ensure_progress(self, enrollment: Enrollment) -> None:
        """Create the course progress document if it is missing."""
        try:
            await self.progress_service.ensure_user_progress(
                enrollment.user_id,
                enrollment.course_id,
                enrolled_at=enrollment.enrolled_at,
                payment_id=enrollment.payment_id,
            )
        except ProgressError as e:
            raise EnrollmentError(e.message) from e

    async def get_enrollment(self, user_id: str, course_id: str) -> Enrollment | None:
        """Get enrollment by user and course."""
        try:
            data = await self.store.get(
                ENROLLMENTS_COLLECTION, enrollment_key(user_id, course_id)
            )
        except DocumentStoreError as e:
            raise EnrollmentError(e.message) from e
        return Enrollment.from_document(data) if data else None

    async def list_user_enrollments(self, user_id: str) -> list[Enrollment]:
        """Get all enrollments for a user, newest first."""
        try:
            documents = await self.store.scan(ENROLLMENTS_COLLECTION, {"user_id": user_id})
        except DocumentStoreError as e:
            raise EnrollmentError(e.message) from e
        enrollments = [Enrollment.from_document(doc.fields) for doc in documents]
        return sorted(enrollments, key=lambda item: item.enrolled_at, reverse=True)
