"""Client-side lesson progress tracker.

Wires sampler -> reducer -> offline layer for one lesson:

- each sample is reduced locally against the tracker's current state
- accepted results are journaled through ``OfflineSyncService.record``,
  scheduled as tasks so sampling never waits on persistence
- the completion callback fires once, on the first crossing

Closing the tracker stops sampling; journal writes and flushes already
scheduled run to completion.
"""

import asyncio
from collections.abc import Callable

from tongue.core.clock import Clock, utc_now
from tongue.core.logging import get_logger
from tongue.offline.service import OfflineSyncService
from tongue.progress.models import LessonProgress, PlaybackSample
from tongue.progress.reducer import ReducerPolicy, reduce_sample

from .sampler import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SEEK_TOLERANCE_SECONDS,
    ErrorCallback,
    PlaybackSampler,
    PlayerAdapter,
)


logger = get_logger(__name__)

CompletionCallback = Callable[[LessonProgress], None]


class LessonProgressTracker:
    """Track one user's progress on one lesson."""

    def __init__(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        adapter: PlayerAdapter,
        offline: OfflineSyncService,
        policy: ReducerPolicy | None = None,
        initial: LessonProgress | None = None,
        on_completion: CompletionCallback | None = None,
        on_error: ErrorCallback | None = None,
        clock: Clock = utc_now,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        seek_tolerance: float = DEFAULT_SEEK_TOLERANCE_SECONDS,
    ):
        self.user_id = user_id
        self.course_id = course_id
        self.lesson_id = lesson_id
        self.offline = offline
        self.policy = policy or ReducerPolicy()
        self.progress = initial
        self.on_completion = on_completion
        self._completion_fired = bool(initial and initial.is_completed)
        self._pending: set[asyncio.Task] = set()
        self.sampler = PlaybackSampler(
            adapter,
            on_sample=self.handle_sample,
            on_error=on_error,
            clock=clock,
            poll_interval=poll_interval,
            seek_tolerance=seek_tolerance,
        )

    def start(self) -> None:
        """Start sampling the player."""
        self.sampler.start()

    def resume(self) -> bool:
        """Seek the player to the stored resume position.

        Returns:
            True if a seek was issued
        """
        if self.progress is None or self.progress.resume_position <= 0:
            return False
        self.sampler.seek_to(self.progress.resume_position)
        return True

    def handle_sample(self, sample: PlaybackSample) -> None:
        """Reduce a sample and journal the result."""
        result = reduce_sample(sample, self.progress, self.policy)
        if not result.accepted or result.progress is None:
            logger.debug(
                "tracker_sample_rejected",
                lesson_id=self.lesson_id,
                reason=result.rejection,
            )
            return

        self.progress = result.progress
        task = asyncio.ensure_future(
            self.offline.record(
                self.user_id, self.course_id, self.lesson_id, result.progress
            )
        )
        self._pending.add(task)
        task.add_done_callback(self._record_done)

        if result.crossed_completion and not self._completion_fired:
            self._completion_fired = True
            logger.info(
                "lesson_completion_reached",
                user_id=self.user_id,
                lesson_id=self.lesson_id,
                completion_percentage=result.progress.completion_percentage,
            )
            if self.on_completion is not None:
                self.on_completion(result.progress)

    def _record_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "progress_journal_write_failed",
                lesson_id=self.lesson_id,
                error=str(error),
            )

    async def drain(self) -> None:
        """Wait until every scheduled journal write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        """Stop sampling; scheduled journal writes keep running."""
        self.sampler.close()
