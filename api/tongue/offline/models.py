"""Offline cache entities.

Each reducer output is journaled as a ``ProgressUpdate`` before any network
write; the journal is the transient shadow copy reconciled away once the
update reaches the document store.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from tongue.progress.models import LessonProgress


class SyncStatus(str, Enum):
    """Sync state of a user's offline cache."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


class ProgressUpdate(BaseModel):
    """One journaled lesson snapshot."""

    entry_id: str = Field(default_factory=lambda: uuid4().hex)
    course_id: str
    lesson_id: str
    snapshot: dict[str, Any]
    timestamp: datetime
    retry_count: int = 0

    @classmethod
    def from_progress(
        cls,
        course_id: str,
        lesson_id: str,
        progress: LessonProgress,
        timestamp: datetime,
    ) -> "ProgressUpdate":
        return cls(
            course_id=course_id,
            lesson_id=lesson_id,
            snapshot=progress.to_document(),
            timestamp=timestamp,
        )

    @property
    def lesson_key(self) -> tuple[str, str]:
        return self.course_id, self.lesson_id

    @property
    def progress(self) -> LessonProgress:
        return LessonProgress.from_document(self.snapshot)

    @property
    def watched_seconds(self) -> float:
        return float(self.snapshot.get("watched_seconds") or 0.0)


class OfflineProgressCache(BaseModel):
    """Per-user view of pending updates and sync state."""

    user_id: str
    pending_updates: list[ProgressUpdate] = Field(default_factory=list)
    sync_status: SyncStatus = SyncStatus.SYNCED
    last_sync_attempt: datetime | None = None
    last_error: str | None = None
