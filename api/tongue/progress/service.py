"""Progress persistence and completion orchestration.

Business logic for:
- Server-side reduction of raw playback samples
- Merging client snapshots (offline flush target)
- Completion bookkeeping and overall progress
- Manual lesson completion
- Progress queries
"""

from dataclasses import replace
from datetime import datetime

from tongue.core.clock import Clock, format_timestamp, utc_now
from tongue.core.context import ProgressContext
from tongue.core.database import DocumentStore, DocumentStoreError
from tongue.core.locks import KeyedLocks
from tongue.core.logging import get_logger
from tongue.courses.models import Course
from tongue.courses.service import CourseService

from .models import (
    LESSON_PROGRESS_COLLECTION,
    USER_PROGRESS_COLLECTION,
    LessonProgress,
    PlaybackSample,
    UserProgress,
    lesson_progress_key,
    user_progress_key,
)
from .reducer import (
    MergeResult,
    ReducerPolicy,
    ReduceResult,
    merge_progress,
    reduce_sample,
)


logger = get_logger(__name__)


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class LessonNotFoundError(ProgressError):
    """Lesson is not part of the course."""

    def __init__(self, message: str = "Lesson not found in course"):
        super().__init__(message, "lesson_not_found")


class PersistenceUnavailableError(ProgressError):
    """The document store could not complete a progress read or write."""

    def __init__(self, message: str = "Progress storage unavailable"):
        super().__init__(message, "persistence_unavailable")


# ==============================================================================
# Progress Service
# ==============================================================================


def calculate_overall_progress(lessons_completed: int, total_lessons: int) -> float:
    """Percentage of completed lessons, clamped to [0, 100]."""
    if total_lessons <= 0:
        return 0.0
    return round(min(100.0, lessons_completed * 100 / total_lessons), 2)


def _total_lessons(
    course: Course | None,
    lessons: dict[str, LessonProgress],
    completed: set[str],
) -> int:
    """Lesson count from the course, else the number of tracked lessons."""
    if course is not None:
        return course.total_lessons
    return max(len(lessons), len(completed))


class ProgressService:
    """Service for lesson progress tracking."""

    def __init__(
        self,
        store: DocumentStore,
        course_service: CourseService,
        policy: ReducerPolicy | None = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.course_service = course_service
        self.policy = policy or ReducerPolicy()
        self.clock = clock
        self._locks = KeyedLocks()

    # ==========================================================================
    # Internal helpers
    # ==========================================================================

    async def _load_course(self, course_id: str, lesson_id: str | None = None) -> Course | None:
        """Load the course, rejecting lessons it does not contain."""
        try:
            course = await self.course_service.get_course(course_id)
        except DocumentStoreError as e:
            raise PersistenceUnavailableError(e.message) from e
        if course is not None and lesson_id is not None and course.get_lesson(lesson_id) is None:
            raise LessonNotFoundError
        return course

    def _policy_for(self, course: Course | None) -> ReducerPolicy:
        if course is None:
            return self.policy
        return self.policy.with_threshold(course.completion_threshold)

    async def _read_lesson(
        self, user_id: str, course_id: str, lesson_id: str
    ) -> LessonProgress | None:
        try:
            data = await self.store.get(
                LESSON_PROGRESS_COLLECTION,
                lesson_progress_key(user_id, course_id, lesson_id),
            )
        except DocumentStoreError as e:
            raise PersistenceUnavailableError(e.message) from e
        return LessonProgress.from_document(data) if data else None

    async def _write_lesson(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        progress: LessonProgress,
    ) -> None:
        fields = progress.to_document()
        fields.update(user_id=user_id, course_id=course_id, lesson_id=lesson_id)
        try:
            await self.store.merge(
                LESSON_PROGRESS_COLLECTION,
                lesson_progress_key(user_id, course_id, lesson_id),
                fields,
            )
        except DocumentStoreError as e:
            raise PersistenceUnavailableError(e.message) from e

    async def _read_course_lessons(
        self, user_id: str, course_id: str
    ) -> dict[str, LessonProgress]:
        try:
            documents = await self.store.scan(
                LESSON_PROGRESS_COLLECTION,
                {"user_id": user_id, "course_id": course_id},
            )
        except DocumentStoreError as e:
            raise PersistenceUnavailableError(e.message) from e
        return {
            doc.fields["lesson_id"]: LessonProgress.from_document(doc.fields)
            for doc in documents
        }

    # ==========================================================================
    # Video Progress Operations
    # ==========================================================================

    async def record_sample(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        sample: PlaybackSample,
    ) -> ReduceResult:
        """Reduce a raw playback sample against stored progress and persist it.

        Rejected samples leave storage untouched.

        Raises:
            LessonNotFoundError: If the course does not contain the lesson
            PersistenceUnavailableError: If the store fails
        """
        with ProgressContext(user_id, course_id, lesson_id):
            course = await self._load_course(course_id, lesson_id)
            async with self._locks.hold(lesson_progress_key(user_id, course_id, lesson_id)):
                previous = await self._read_lesson(user_id, course_id, lesson_id)
                result = reduce_sample(sample, previous, self._policy_for(course))
                if not result.accepted or result.progress is None:
                    logger.debug("progress_sample_rejected", reason=result.rejection)
                    return result
                await self._write_lesson(user_id, course_id, lesson_id, result.progress)

            await self.on_lesson_progress_update(
                user_id,
                course_id,
                lesson_id,
                result.progress,
                crossed_completion=result.crossed_completion,
                course=course,
            )
            return result

    async def save_video_progress(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        snapshot: LessonProgress,
    ) -> MergeResult:
        """Merge a client-computed snapshot into stored progress.

        Used as the offline flush target; replays and out-of-order
        deliveries converge to the same stored state.

        Raises:
            LessonNotFoundError: If the course does not contain the lesson
            PersistenceUnavailableError: If the store fails
        """
        with ProgressContext(user_id, course_id, lesson_id):
            course = await self._load_course(course_id, lesson_id)
            threshold = self._policy_for(course).completion_threshold
            async with self._locks.hold(lesson_progress_key(user_id, course_id, lesson_id)):
                stored = await self._read_lesson(user_id, course_id, lesson_id)
                result = merge_progress(stored, snapshot, threshold)
                if not result.accepted or result.progress is None:
                    logger.warning("progress_snapshot_rejected", reason=result.rejection)
                    return result
                await self._write_lesson(user_id, course_id, lesson_id, result.progress)

            await self.on_lesson_progress_update(
                user_id,
                course_id,
                lesson_id,
                result.progress,
                crossed_completion=result.crossed_completion,
                course=course,
            )
            return result

    async def on_lesson_progress_update(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        progress: LessonProgress,
        crossed_completion: bool = False,
        course: Course | None = None,
    ) -> None:
        """Update the course-level progress document after a lesson write.

        Every call moves ``current_lesson_id`` and ``last_accessed_at``. When
        the lesson crossed completion, ``lessons_completed``,
        ``overall_progress`` and ``total_watch_time`` are recomputed.
        Unlock state is never stored.
        """
        fields: dict = {
            "user_id": user_id,
            "course_id": course_id,
            "current_lesson_id": lesson_id,
            "last_accessed_at": format_timestamp(self.clock()),
        }

        if crossed_completion or progress.is_completed:
            if course is None:
                course = await self._load_course(course_id)
            fields.update(await self._completion_fields(user_id, course_id, course, lesson_id))

        try:
            await self.store.merge(
                USER_PROGRESS_COLLECTION, user_progress_key(user_id, course_id), fields
            )
        except DocumentStoreError as e:
            raise PersistenceUnavailableError(e.message) from e

        if crossed_completion:
            logger.info(
                "lesson_auto_completed",
                user_id=user_id,
                course_id=course_id,
                lesson_id=lesson_id,
                completion_percentage=progress.completion_percentage,
                overall_progress=fields.get("overall_progress"),
            )

    async def _completion_fields(
        self,
        user_id: str,
        course_id: str,
        course: Course | None,
        completed_lesson_id: str,
    ) -> dict:
        """Recompute derived aggregate fields from the lesson documents."""
        lessons = await self._read_course_lessons(user_id, course_id)
        try:
            stored = await self.store.get(
                USER_PROGRESS_COLLECTION, user_progress_key(user_id, course_id)
            )
        except DocumentStoreError as e:
            raise PersistenceUnavailableError(e.message) from e

        completed = set((stored or {}).get("lessons_completed") or [])
        completed.add(completed_lesson_id)
        completed.update(
            lesson_id for lesson_id, lesson in lessons.items() if lesson.is_completed
        )

        return {
            "lessons_completed": sorted(completed),
            "overall_progress": calculate_overall_progress(
                len(completed), _total_lessons(course, lessons, completed)
            ),
            "total_watch_time": sum(lesson.watch_time for lesson in lessons.values()),
        }

    # ==========================================================================
    # Lesson Completion Operations
    # ==========================================================================

    async def mark_lesson_completed(
        self, user_id: str, course_id: str, lesson_id: str
    ) -> UserProgress:
        """Manually latch a lesson as completed.

        Watched seconds and percentage are left as they are; only the
        completion latch is set.
        """
        with ProgressContext(user_id, course_id, lesson_id):
            course = await self._load_course(course_id, lesson_id)
            now = self.clock()
            async with self._locks.hold(lesson_progress_key(user_id, course_id, lesson_id)):
                progress = await self._read_lesson(user_id, course_id, lesson_id)
                progress = progress or LessonProgress(first_watched_at=now)
                crossed = not progress.is_completed
                if crossed:
                    progress = replace(progress, is_completed=True, completed_at=now)
                    await self._write_lesson(user_id, course_id, lesson_id, progress)

            await self.on_lesson_progress_update(
                user_id,
                course_id,
                lesson_id,
                progress,
                crossed_completion=False,
                course=course,
            )
            if crossed:
                logger.info("lesson_marked_completed", lesson_id=lesson_id)

        user_progress = await self.get_user_progress(user_id, course_id)
        return user_progress or UserProgress(user_id=user_id, course_id=course_id)

    # ==========================================================================
    # Enrollment hooks
    # ==========================================================================

    async def ensure_user_progress(
        self,
        user_id: str,
        course_id: str,
        enrolled_at: datetime,
        payment_id: str | None = None,
    ) -> bool:
        """Create the course progress document if absent.

        Returns:
            True if the document was created
        """
        key = user_progress_key(user_id, course_id)
        try:
            existing = await self.store.get(USER_PROGRESS_COLLECTION, key)
            if existing is not None:
                if payment_id and existing.get("payment_id") != payment_id:
                    await self.store.merge(
                        USER_PROGRESS_COLLECTION, key, {"payment_id": payment_id}
                    )
                return False

            await self.store.merge(
                USER_PROGRESS_COLLECTION,
                key,
                {
                    "user_id": user_id,
                    "course_id": course_id,
                    "overall_progress": 0.0,
                    "current_lesson_id": None,
                    "lessons_completed": [],
                    "total_watch_time": 0.0,
                    "enrolled_at": format_timestamp(enrolled_at),
                    "last_accessed_at": format_timestamp(enrolled_at),
                    "payment_id": payment_id,
                },
            )
        except DocumentStoreError as e:
            raise PersistenceUnavailableError(e.message) from e

        logger.info("user_progress_created", user_id=user_id, course_id=course_id)
        return True

    # ==========================================================================
    # Query Operations
    # ==========================================================================

    async def get_lesson_progress(
        self, user_id: str, course_id: str, lesson_id: str
    ) -> LessonProgress | None:
        """Get stored progress for one lesson."""
        return await self._read_lesson(user_id, course_id, lesson_id)

    async def get_user_progress(self, user_id: str, course_id: str) -> UserProgress | None:
        """Get course progress with per-lesson progress attached.

        Returns None when the user has neither a progress document nor any
        lesson progress in the course.
        """
        try:
            data = await self.store.get(
                USER_PROGRESS_COLLECTION, user_progress_key(user_id, course_id)
            )
        except DocumentStoreError as e:
            raise PersistenceUnavailableError(e.message) from e
        lessons = await self._read_course_lessons(user_id, course_id)

        if data is None and not lessons:
            return None

        progress = UserProgress.from_document(
            data or {"user_id": user_id, "course_id": course_id}, lessons
        )
        progress.lessons_completed.update(
            lesson_id for lesson_id, lesson in lessons.items() if lesson.is_completed
        )
        progress.total_watch_time = sum(lesson.watch_time for lesson in lessons.values())

        course = await self._load_course(course_id)
        progress.overall_progress = calculate_overall_progress(
            len(progress.lessons_completed),
            _total_lessons(course, lessons, progress.lessons_completed),
        )
        return progress
