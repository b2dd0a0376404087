"""Offline sync service.

Journal first, deliver later: every snapshot is appended to the durable
journal before a flush is scheduled, so progress survives network loss and
process restarts.

Flush rules:
- per lesson, at most one flush in flight; records arriving meanwhile
  trigger one follow-up flush
- only the newest snapshot (highest ``watched_seconds``) of a lesson is
  sent; older entries are superseded and compacted away with it
- failures are retried per ``RetryPolicy``; after exhaustion entries stay
  journaled with ``retry_count`` incremented and the user's cache reports
  ``sync_status = error``
"""

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from tongue.core.clock import Clock, utc_now
from tongue.core.context import ProgressContext
from tongue.core.logging import get_logger
from tongue.progress.models import LessonProgress
from tongue.progress.service import ProgressError

from .journal import ProgressJournal
from .models import OfflineProgressCache, ProgressUpdate, SyncStatus
from .retry import RetryOutcome, RetryPolicy, Sleep, run_with_retry


logger = get_logger(__name__)

# (user_id, course_id, lesson_id, snapshot) -> delivery result
ProgressSink = Callable[[str, str, str, LessonProgress], Awaitable[Any]]

LessonKey = tuple[str, str, str]


def _rejection_of(result: Any) -> str | None:
    """Rejection reason of a delivery result (merge result or API response)."""
    if isinstance(result, dict):
        accepted, rejection = result.get("accepted", True), result.get("rejection")
    else:
        accepted = getattr(result, "accepted", True)
        rejection = getattr(result, "rejection", None)
    return None if accepted else (rejection or "rejected")


class _UserSyncState:
    """In-memory sync bookkeeping for one user."""

    def __init__(self) -> None:
        self.last_sync_attempt: datetime | None = None
        self.last_error: str | None = None
        self.failed_lessons: set[tuple[str, str]] = set()


class OfflineSyncService:
    """Durable progress delivery with retry and periodic sync."""

    def __init__(
        self,
        journal: ProgressJournal,
        sink: ProgressSink,
        policy: RetryPolicy | None = None,
        clock: Clock = utc_now,
        sleep: Sleep = asyncio.sleep,
    ):
        self.journal = journal
        self.sink = sink
        self.policy = policy or RetryPolicy()
        self.clock = clock
        self.sleep = sleep
        self.current_user_id: str | None = None
        self._states: defaultdict[str, _UserSyncState] = defaultdict(_UserSyncState)
        self._in_flight: set[LessonKey] = set()
        self._dirty: set[LessonKey] = set()
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # ==========================================================================
    # Recording
    # ==========================================================================

    async def record(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        progress: LessonProgress,
    ) -> ProgressUpdate:
        """Journal a snapshot, then schedule its delivery in the background."""
        update = ProgressUpdate.from_progress(course_id, lesson_id, progress, self.clock())
        await self.journal.append(user_id, update)
        self.schedule_flush(user_id, course_id, lesson_id)
        return update

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def schedule_flush(
        self, user_id: str, course_id: str, lesson_id: str
    ) -> asyncio.Task | None:
        """Start a background flush unless one is already running for the lesson."""
        if self._closed:
            return None
        key = (user_id, course_id, lesson_id)
        if key in self._in_flight:
            self._dirty.add(key)
            return None
        return self._spawn(self._run_flush(user_id, course_id, lesson_id))

    async def _run_flush(self, user_id: str, course_id: str, lesson_id: str) -> None:
        try:
            await self.flush_lesson(user_id, course_id, lesson_id)
        except Exception as e:
            state = self._states[user_id]
            state.failed_lessons.add((course_id, lesson_id))
            state.last_error = str(e)
            logger.exception(
                "progress_flush_crashed",
                user_id=user_id,
                course_id=course_id,
                lesson_id=lesson_id,
            )

    # ==========================================================================
    # Flushing
    # ==========================================================================

    async def flush_lesson(
        self, user_id: str, course_id: str, lesson_id: str
    ) -> RetryOutcome | None:
        """Deliver the newest pending snapshot of one lesson.

        Returns:
            RetryOutcome of the delivery, or None when nothing was sent
            (no pending entries, or a flush is already in flight)
        """
        key = (user_id, course_id, lesson_id)
        if key in self._in_flight:
            self._dirty.add(key)
            return None

        self._in_flight.add(key)
        try:
            with ProgressContext(user_id, course_id, lesson_id):
                return await self._flush(user_id, course_id, lesson_id)
        finally:
            self._in_flight.discard(key)
            if key in self._dirty:
                self._dirty.discard(key)
                self.schedule_flush(user_id, course_id, lesson_id)

    async def _flush(
        self, user_id: str, course_id: str, lesson_id: str
    ) -> RetryOutcome | None:
        entries = [
            update
            for update in await self.journal.load(user_id)
            if update.lesson_key == (course_id, lesson_id)
        ]
        if not entries:
            return None

        newest = max(entries, key=lambda update: (update.watched_seconds, update.timestamp))
        entry_ids = [update.entry_id for update in entries]
        state = self._states[user_id]

        try:
            outcome = await run_with_retry(
                lambda: self.sink(user_id, course_id, lesson_id, newest.progress),
                self.policy,
                sleep=self.sleep,
            )
        except ProgressError as e:
            # Not retryable; entries stay journaled until the next sync
            outcome = RetryOutcome(succeeded=False, attempts=1, error=e)
        state.last_sync_attempt = self.clock()

        if outcome.succeeded:
            rejection = _rejection_of(outcome.value)
            if rejection:
                logger.warning("progress_snapshot_discarded", rejection=rejection)
            await self.journal.remove(user_id, entry_ids)
            state.failed_lessons.discard((course_id, lesson_id))
            if not state.failed_lessons:
                state.last_error = None
            logger.info(
                "progress_flushed",
                watched_seconds=newest.watched_seconds,
                superseded=len(entries) - 1,
                attempts=outcome.attempts,
            )
        else:
            await self.journal.mark_failed(user_id, entry_ids)
            state.failed_lessons.add((course_id, lesson_id))
            state.last_error = str(outcome.error)
            logger.warning(
                "progress_flush_failed",
                attempts=outcome.attempts,
                pending=len(entries),
                error=state.last_error,
            )
        return outcome

    async def sync_user(self, user_id: str) -> OfflineProgressCache:
        """Flush every lesson with pending entries for the user."""
        pending = await self.journal.load(user_id)
        lessons = sorted({update.lesson_key for update in pending})
        if lessons:
            logger.info("offline_sync_started", user_id=user_id, lessons=len(lessons))
        await asyncio.gather(
            *(
                self.flush_lesson(user_id, course_id, lesson_id)
                for course_id, lesson_id in lessons
            )
        )
        return await self.get_status(user_id)

    async def sync_all(self) -> None:
        """Sync every user that has journaled entries."""
        for user_id in await self.journal.users():
            await self.sync_user(user_id)

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    async def restore(self) -> list[str]:
        """Sync journals left over from a previous run."""
        users = await self.journal.users()
        if users:
            logger.info("offline_journal_restored", users=len(users))
        for user_id in users:
            await self.sync_user(user_id)
        return users

    async def run_periodic_sync(self, interval_seconds: float) -> None:
        """Retry pending entries every ``interval_seconds`` until cancelled."""
        while not self._closed:
            await self.sleep(interval_seconds)
            try:
                await self.sync_all()
            except Exception:
                logger.exception("offline_periodic_sync_failed")

    def on_auth_state_changed(self, user_id: str | None) -> asyncio.Task | None:
        """Track the signed-in user and sync their journal on sign-in."""
        previous = self.current_user_id
        self.current_user_id = user_id
        if user_id is None or user_id == previous or self._closed:
            return None
        logger.info("offline_sync_on_sign_in", user_id=user_id)
        return self._spawn(self._run_sync(user_id))

    async def _run_sync(self, user_id: str) -> None:
        try:
            await self.sync_user(user_id)
        except Exception:
            logger.exception("offline_sync_failed", user_id=user_id)

    async def get_status(self, user_id: str) -> OfflineProgressCache:
        """Current offline cache view for a user."""
        pending = await self.journal.load(user_id)
        state = self._states[user_id]

        if any(key[0] == user_id for key in self._in_flight):
            status = SyncStatus.SYNCING
        elif state.failed_lessons:
            status = SyncStatus.ERROR
        elif pending:
            status = SyncStatus.PENDING
        else:
            status = SyncStatus.SYNCED

        return OfflineProgressCache(
            user_id=user_id,
            pending_updates=pending,
            sync_status=status,
            last_sync_attempt=state.last_sync_attempt,
            last_error=state.last_error,
        )

    async def wait_idle(self) -> None:
        """Wait for background flushes scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def aclose(self) -> None:
        """Stop scheduling new work and let running flushes finish."""
        self._closed = True
        await self.wait_idle()
