"""Course catalog service.

Read access to course reference data plus the two writes this subsystem
needs: seeding a course and the best-effort enrollment counter.
"""

from tongue.core.database import DocumentStore
from tongue.core.locks import KeyedLocks
from tongue.core.logging import get_logger

from .models import COURSES_COLLECTION, Course


logger = get_logger(__name__)


class CourseService:
    """Service for course reference data."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._counter_locks = KeyedLocks()

    async def get_course(self, course_id: str) -> Course | None:
        """Get a course with its lessons sorted by order."""
        data = await self.store.get(COURSES_COLLECTION, course_id)
        return Course.from_document(course_id, data) if data else None

    async def save_course(self, course: Course) -> Course:
        """Create or replace course reference data (seeding/admin)."""
        await self.store.merge(COURSES_COLLECTION, course.id, course.to_document())
        logger.info("course_saved", course_id=course.id, lessons=course.total_lessons)
        return course

    async def increment_enrollment_count(self, course_id: str) -> None:
        """Increment the denormalized enrollment counter.

        Not transactional with the enrollment write; callers treat failures
        as best-effort.
        """
        async with self._counter_locks.hold(course_id):
            data = await self.store.get(COURSES_COLLECTION, course_id)
            if data is None:
                logger.warning("enrollment_count_course_missing", course_id=course_id)
                return
            count = int(data.get("enrollment_count") or 0) + 1
            await self.store.merge(
                COURSES_COLLECTION, course_id, {"enrollment_count": count}
            )
