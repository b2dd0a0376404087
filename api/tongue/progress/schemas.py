"""Pydantic schemas for progress tracking.

Request and response models for:
- Raw playback samples (server-side reduction)
- Client progress snapshots (offline flush)
- Manual lesson completion
- Progress queries
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from tongue.core.clock import ensure_utc_aware

from .models import (
    LessonProgress,
    SampleEvent,
    UserProgress,
    WatchSession,
)


# ==============================================================================
# Shared Schemas
# ==============================================================================


class WatchSessionSchema(BaseModel):
    """Closed watch session."""

    start_time: datetime
    duration: float = Field(0.0, ge=0, description="Wall-clock seconds")
    progress_made: float = Field(0.0, ge=0, description="Watched seconds gained")
    pause_count: int = Field(0, ge=0)
    seek_count: int = Field(0, ge=0)
    end_time: datetime | None = None
    platform: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def make_utc_aware(cls, v: datetime | None) -> datetime | None:
        return ensure_utc_aware(v)

    @classmethod
    def from_entity(cls, entity: WatchSession) -> "WatchSessionSchema":
        return cls(
            start_time=entity.start_time,
            duration=entity.duration,
            progress_made=entity.progress_made,
            pause_count=entity.pause_count,
            seek_count=entity.seek_count,
            end_time=entity.end_time,
            platform=entity.platform,
        )

    def to_entity(self) -> WatchSession:
        return WatchSession(
            start_time=self.start_time,
            duration=self.duration,
            progress_made=self.progress_made,
            pause_count=self.pause_count,
            seek_count=self.seek_count,
            end_time=self.end_time,
            platform=self.platform,
        )


class LessonProgressResponse(BaseModel):
    """Lesson progress response."""

    lesson_id: str
    watched_seconds: float
    total_seconds: float | None = None
    completion_percentage: float = Field(description="0-100 percentage")
    is_completed: bool
    resume_position: float = Field(description="Resume position in seconds")
    first_watched_at: datetime | None = None
    last_watched_at: datetime | None = None
    completed_at: datetime | None = None
    watch_sessions: list[WatchSessionSchema] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, lesson_id: str, entity: LessonProgress) -> "LessonProgressResponse":
        """Create response from entity."""
        return cls(
            lesson_id=lesson_id,
            watched_seconds=entity.watched_seconds,
            total_seconds=entity.total_seconds,
            completion_percentage=entity.completion_percentage,
            is_completed=entity.is_completed,
            resume_position=entity.resume_position,
            first_watched_at=entity.first_watched_at,
            last_watched_at=entity.last_watched_at,
            completed_at=entity.completed_at,
            watch_sessions=[
                WatchSessionSchema.from_entity(session) for session in entity.watch_sessions
            ],
        )


# ==============================================================================
# Video Progress Schemas
# ==============================================================================


class VideoSampleRequest(BaseModel):
    """Raw player reading, reduced on the server."""

    course_id: str = Field(..., min_length=1)
    lesson_id: str = Field(..., min_length=1)
    current_time: float = Field(..., description="Player position in seconds")
    duration: float = Field(..., description="Video duration in seconds")
    event: SampleEvent = SampleEvent.PROGRESS
    observed_at: datetime | None = Field(
        None, description="Client observation time; server time when omitted"
    )
    platform: str | None = None

    @field_validator("observed_at")
    @classmethod
    def make_utc_aware(cls, v: datetime | None) -> datetime | None:
        return ensure_utc_aware(v)


class VideoProgressResponse(BaseModel):
    """Outcome of a sample or snapshot write."""

    accepted: bool
    rejection: str | None = None
    crossed_completion: bool = False
    queued: bool = Field(
        False, description="Stored in the durable journal; delivered later"
    )
    progress: LessonProgressResponse | None = None


class ProgressSnapshotRequest(BaseModel):
    """Client-computed lesson progress (offline flush payload)."""

    course_id: str = Field(..., min_length=1)
    lesson_id: str = Field(..., min_length=1)
    watched_seconds: float = Field(..., ge=0)
    total_seconds: float = Field(..., gt=0)
    completion_percentage: float = Field(0.0, ge=0, le=100)
    is_completed: bool = False
    resume_position: float = Field(0.0, ge=0)
    first_watched_at: datetime | None = None
    last_watched_at: datetime | None = None
    completed_at: datetime | None = None
    watch_sessions: list[WatchSessionSchema] = Field(default_factory=list)

    @field_validator("first_watched_at", "last_watched_at", "completed_at")
    @classmethod
    def make_utc_aware(cls, v: datetime | None) -> datetime | None:
        return ensure_utc_aware(v)

    def to_entity(self) -> LessonProgress:
        return LessonProgress(
            watched_seconds=self.watched_seconds,
            total_seconds=self.total_seconds,
            completion_percentage=self.completion_percentage,
            is_completed=self.is_completed,
            resume_position=self.resume_position,
            first_watched_at=self.first_watched_at,
            last_watched_at=self.last_watched_at,
            completed_at=self.completed_at,
            watch_sessions=tuple(session.to_entity() for session in self.watch_sessions),
        )


# ==============================================================================
# Lesson Completion Schemas
# ==============================================================================


class MarkLessonCompleteRequest(BaseModel):
    """Request to manually mark a lesson as completed."""

    course_id: str = Field(..., min_length=1)
    lesson_id: str = Field(..., min_length=1)


# ==============================================================================
# Course Progress Schemas
# ==============================================================================


class UserProgressResponse(BaseModel):
    """Course progress with per-lesson details."""

    user_id: str
    course_id: str
    overall_progress: float = Field(description="0-100 percentage")
    current_lesson_id: str | None = None
    lessons_completed: list[str] = Field(default_factory=list)
    total_watch_time: float = 0.0
    enrolled_at: datetime | None = None
    last_accessed_at: datetime | None = None
    lessons: list[LessonProgressResponse] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, entity: UserProgress) -> "UserProgressResponse":
        """Create response from entity."""
        return cls(
            user_id=entity.user_id,
            course_id=entity.course_id,
            overall_progress=entity.overall_progress,
            current_lesson_id=entity.current_lesson_id,
            lessons_completed=sorted(entity.lessons_completed),
            total_watch_time=entity.total_watch_time,
            enrolled_at=entity.enrolled_at,
            last_accessed_at=entity.last_accessed_at,
            lessons=[
                LessonProgressResponse.from_entity(lesson_id, progress)
                for lesson_id, progress in sorted(entity.lesson_progress.items())
            ],
        )
