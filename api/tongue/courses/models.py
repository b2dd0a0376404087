"""Course catalog entities.

Courses are read-mostly reference data owned outside this service. Lessons
are embedded in the course document (collection ``courses``) and ordered by
their unique ``order`` value.
"""

from typing import Any

from tongue.core.logging import get_logger


logger = get_logger(__name__)

COURSES_COLLECTION = "courses"

DEFAULT_COMPLETION_THRESHOLD = 80
MIN_COMPLETION_THRESHOLD = 1
MAX_COMPLETION_THRESHOLD = 100


class Lesson:
    """Lesson reference data.

    Attributes:
        id: Lesson identifier
        title: Display title (used in lock messages)
        order: Position in the course sequence (unique per course)
        is_preview: Viewable without enrollment
        duration: Nominal video duration in seconds
    """

    def __init__(
        self,
        id: str,  # noqa: A002
        order: int,
        title: str = "",
        is_preview: bool = False,
        duration: float = 0.0,
    ):
        self.id = id
        self.order = order
        self.title = title or id
        self.is_preview = is_preview
        self.duration = duration

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "Lesson":
        """Create Lesson from an embedded course document entry."""
        return cls(
            id=str(data["id"]),
            order=int(data.get("order", 0)),
            title=data.get("title", ""),
            is_preview=bool(data.get("is_preview", False)),
            duration=float(data.get("duration") or 0.0),
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to document fields."""
        return {
            "id": self.id,
            "order": self.order,
            "title": self.title,
            "is_preview": self.is_preview,
            "duration": self.duration,
        }

    def __repr__(self) -> str:
        preview = " preview" if self.is_preview else ""
        return f"<Lesson {self.id} order={self.order}{preview}>"


class Course:
    """Course reference data with its ordered lessons.

    Attributes:
        id: Course identifier
        title: Course title
        lessons: Lessons sorted by ``order``
        completion_threshold: Percent watched that completes a lesson (1-100)
        unlock_sequential: Lesson N requires all earlier non-preview lessons
        enrollment_count: Denormalized enrollment counter (best-effort)
    """

    def __init__(
        self,
        id: str,  # noqa: A002
        title: str = "",
        lessons: list[Lesson] | None = None,
        completion_threshold: int = DEFAULT_COMPLETION_THRESHOLD,
        unlock_sequential: bool = True,
        enrollment_count: int = 0,
    ):
        self.id = id
        self.title = title
        self.lessons = sorted(lessons or [], key=lambda lesson: lesson.order)
        self.completion_threshold = completion_threshold
        self.unlock_sequential = unlock_sequential
        self.enrollment_count = enrollment_count

    @property
    def total_lessons(self) -> int:
        """Number of lessons in the course."""
        return len(self.lessons)

    def get_lesson(self, lesson_id: str) -> Lesson | None:
        """Find a lesson by id."""
        return next((lesson for lesson in self.lessons if lesson.id == lesson_id), None)

    @classmethod
    def from_document(cls, course_id: str, data: dict[str, Any]) -> "Course":
        """Create Course from a stored document.

        An absent or out-of-range threshold falls back to the default.
        """
        threshold = data.get("completion_threshold")
        if threshold is None:
            threshold = DEFAULT_COMPLETION_THRESHOLD
        elif not MIN_COMPLETION_THRESHOLD <= int(threshold) <= MAX_COMPLETION_THRESHOLD:
            logger.warning(
                "course_threshold_out_of_range",
                course_id=course_id,
                threshold=threshold,
            )
            threshold = DEFAULT_COMPLETION_THRESHOLD

        return cls(
            id=course_id,
            title=data.get("title", ""),
            lessons=[Lesson.from_document(item) for item in data.get("lessons", [])],
            completion_threshold=int(threshold),
            unlock_sequential=bool(data.get("unlock_sequential", True)),
            enrollment_count=int(data.get("enrollment_count") or 0),
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to document fields."""
        return {
            "title": self.title,
            "lessons": [lesson.to_document() for lesson in self.lessons],
            "completion_threshold": self.completion_threshold,
            "unlock_sequential": self.unlock_sequential,
            "enrollment_count": self.enrollment_count,
        }

    def __repr__(self) -> str:
        return f"<Course {self.id} lessons={self.total_lessons}>"
