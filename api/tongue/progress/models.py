"""Progress entities and document mapping.

Documents:
- ``lesson_progress``: one per user+course+lesson, key
  ``{user_id}_{course_id}_{lesson_id}``
- ``user_progress``: one per user+course, key ``{user_id}_{course_id}``

``LessonProgress`` is a value object: the reducer builds new instances with
``dataclasses.replace`` and never mutates its input.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from tongue.core.clock import ensure_utc_aware, format_timestamp, parse_timestamp


LESSON_PROGRESS_COLLECTION = "lesson_progress"
USER_PROGRESS_COLLECTION = "user_progress"


def user_progress_key(user_id: str, course_id: str) -> str:
    """Deterministic key shared by the enrollment and user progress documents."""
    return f"{user_id}_{course_id}"


def lesson_progress_key(user_id: str, course_id: str, lesson_id: str) -> str:
    """Key of a lesson progress document."""
    return f"{user_id}_{course_id}_{lesson_id}"


def _normalize_timestamps(entity: Any, *names: str) -> None:
    """Make naive datetimes UTC-aware on a frozen dataclass."""
    for name in names:
        object.__setattr__(entity, name, ensure_utc_aware(getattr(entity, name)))


class SampleEvent(str, Enum):
    """What produced a playback sample."""

    PROGRESS = "progress"  # periodic position report
    PLAY = "play"
    PAUSE = "pause"
    END = "end"
    SEEK = "seek"


@dataclass(frozen=True)
class PlaybackSample:
    """Raw position/duration reading from the player."""

    current_time: float
    duration: float
    observed_at: datetime
    event: SampleEvent = SampleEvent.PROGRESS
    platform: str | None = None

    def __post_init__(self) -> None:
        _normalize_timestamps(self, "observed_at")


@dataclass(frozen=True)
class WatchSession:
    """Closed watch session (append-only audit trail entry)."""

    start_time: datetime
    duration: float
    progress_made: float
    pause_count: int = 0
    seek_count: int = 0
    end_time: datetime | None = None
    platform: str | None = None

    def __post_init__(self) -> None:
        _normalize_timestamps(self, "start_time", "end_time")

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "WatchSession":
        return cls(
            start_time=parse_timestamp(data["start_time"]),
            duration=float(data.get("duration") or 0.0),
            progress_made=float(data.get("progress_made") or 0.0),
            pause_count=int(data.get("pause_count") or 0),
            seek_count=int(data.get("seek_count") or 0),
            end_time=parse_timestamp(data.get("end_time")),
            platform=data.get("platform"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "start_time": format_timestamp(self.start_time),
            "duration": self.duration,
            "progress_made": self.progress_made,
            "pause_count": self.pause_count,
            "seek_count": self.seek_count,
            "end_time": format_timestamp(self.end_time),
            "platform": self.platform,
        }


@dataclass(frozen=True)
class ActiveSession:
    """Session still open; closed into a ``WatchSession`` at a boundary."""

    start_time: datetime
    start_watched: float
    last_sample_at: datetime
    pause_count: int = 0
    seek_count: int = 0
    platform: str | None = None

    def __post_init__(self) -> None:
        _normalize_timestamps(self, "start_time", "last_sample_at")

    def close(self, watched_seconds: float) -> WatchSession:
        """Close the session at its last sample."""
        return WatchSession(
            start_time=self.start_time,
            duration=max(0.0, (self.last_sample_at - self.start_time).total_seconds()),
            progress_made=max(0.0, watched_seconds - self.start_watched),
            pause_count=self.pause_count,
            seek_count=self.seek_count,
            end_time=self.last_sample_at,
            platform=self.platform,
        )

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "ActiveSession":
        return cls(
            start_time=parse_timestamp(data["start_time"]),
            start_watched=float(data.get("start_watched") or 0.0),
            last_sample_at=parse_timestamp(data["last_sample_at"]),
            pause_count=int(data.get("pause_count") or 0),
            seek_count=int(data.get("seek_count") or 0),
            platform=data.get("platform"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "start_time": format_timestamp(self.start_time),
            "start_watched": self.start_watched,
            "last_sample_at": format_timestamp(self.last_sample_at),
            "pause_count": self.pause_count,
            "seek_count": self.seek_count,
            "platform": self.platform,
        }


@dataclass(frozen=True)
class LessonProgress:
    """Progress of one user on one lesson.

    Attributes:
        watched_seconds: High-water mark of the playback position
        total_seconds: First-seen video duration (None before any sample)
        completion_percentage: watched/total*100 clamped to [0, 100]
        is_completed: One-way completion latch
        resume_position: Last reported position (may be below the high-water mark)
        first_watched_at: First accepted sample
        last_watched_at: Latest accepted sample
        completed_at: When the latch flipped
        watch_sessions: Closed sessions, in start order
        active_session: Session currently open, if any
    """

    watched_seconds: float = 0.0
    total_seconds: float | None = None
    completion_percentage: float = 0.0
    is_completed: bool = False
    resume_position: float = 0.0
    first_watched_at: datetime | None = None
    last_watched_at: datetime | None = None
    completed_at: datetime | None = None
    watch_sessions: tuple[WatchSession, ...] = field(default_factory=tuple)
    active_session: ActiveSession | None = None

    def __post_init__(self) -> None:
        _normalize_timestamps(
            self, "first_watched_at", "last_watched_at", "completed_at"
        )

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "LessonProgress":
        """Create LessonProgress from stored document fields."""
        total = data.get("total_seconds")
        active = data.get("active_session")
        return cls(
            watched_seconds=float(data.get("watched_seconds") or 0.0),
            total_seconds=float(total) if total else None,
            completion_percentage=float(data.get("completion_percentage") or 0.0),
            is_completed=bool(data.get("is_completed", False)),
            resume_position=float(data.get("resume_position") or 0.0),
            first_watched_at=parse_timestamp(data.get("first_watched_at")),
            last_watched_at=parse_timestamp(data.get("last_watched_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            watch_sessions=tuple(
                WatchSession.from_document(item)
                for item in data.get("watch_sessions") or []
            ),
            active_session=ActiveSession.from_document(active) if active else None,
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to JSON-compatible document fields."""
        return {
            "watched_seconds": self.watched_seconds,
            "total_seconds": self.total_seconds,
            "completion_percentage": self.completion_percentage,
            "is_completed": self.is_completed,
            "resume_position": self.resume_position,
            "first_watched_at": format_timestamp(self.first_watched_at),
            "last_watched_at": format_timestamp(self.last_watched_at),
            "completed_at": format_timestamp(self.completed_at),
            "watch_sessions": [session.to_document() for session in self.watch_sessions],
            "active_session": (
                self.active_session.to_document() if self.active_session else None
            ),
        }

    @property
    def watch_time(self) -> float:
        """Wall-clock time spent in closed sessions."""
        return sum(session.duration for session in self.watch_sessions)


@dataclass
class UserProgress:
    """Aggregate progress of one user in one course."""

    user_id: str
    course_id: str
    lesson_progress: dict[str, LessonProgress] = field(default_factory=dict)
    overall_progress: float = 0.0
    current_lesson_id: str | None = None
    lessons_completed: set[str] = field(default_factory=set)
    total_watch_time: float = 0.0
    enrolled_at: datetime | None = None
    last_accessed_at: datetime | None = None
    payment_id: str | None = None

    @classmethod
    def from_document(
        cls,
        data: dict[str, Any],
        lesson_progress: dict[str, LessonProgress] | None = None,
    ) -> "UserProgress":
        """Create UserProgress from its document plus the lesson documents."""
        return cls(
            user_id=data["user_id"],
            course_id=data["course_id"],
            lesson_progress=lesson_progress or {},
            overall_progress=float(data.get("overall_progress") or 0.0),
            current_lesson_id=data.get("current_lesson_id"),
            lessons_completed=set(data.get("lessons_completed") or []),
            total_watch_time=float(data.get("total_watch_time") or 0.0),
            enrolled_at=parse_timestamp(data.get("enrolled_at")),
            last_accessed_at=parse_timestamp(data.get("last_accessed_at")),
            payment_id=data.get("payment_id"),
        )

    def is_lesson_completed(self, lesson_id: str) -> bool:
        """Whether the lesson has latched complete."""
        progress = self.lesson_progress.get(lesson_id)
        return lesson_id in self.lessons_completed or bool(
            progress and progress.is_completed
        )
