"""Progress reducer.

Pure functions turning noisy player samples into authoritative lesson
progress:

- ``reduce_sample``: fold one ``PlaybackSample`` into the previous state
- ``merge_progress``: reconcile a client snapshot against the stored one

Neither function performs I/O or reads the clock; the caller supplies
everything through the sample, the previous state and the policy.

Invariants:
- ``watched_seconds`` never decreases
- ``total_seconds`` keeps its first-seen value
- ``is_completed`` never flips back to False
- ``completion_percentage`` stays in [0, 100]
- replaying the same sample yields the same state
"""

import math
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Literal

from tongue.courses.models import DEFAULT_COMPLETION_THRESHOLD

from .models import (
    ActiveSession,
    LessonProgress,
    PlaybackSample,
    SampleEvent,
    WatchSession,
)


if TYPE_CHECKING:
    from tongue.config import Settings


DurationPolicy = Literal["first_seen", "strict"]

REJECT_INVALID_SAMPLE = "invalid_sample"


@dataclass(frozen=True)
class ReducerPolicy:
    """Tunable reducer behavior."""

    completion_threshold: int = DEFAULT_COMPLETION_THRESHOLD
    idle_timeout_seconds: float = 300.0
    close_session_on_pause: bool = True
    duration_policy: DurationPolicy = "first_seen"
    duration_tolerance_seconds: float = 1.0

    @classmethod
    def from_settings(
        cls, settings: "Settings", completion_threshold: int | None = None
    ) -> "ReducerPolicy":
        """Build a policy from settings, optionally overriding the threshold."""
        return cls(
            completion_threshold=(
                completion_threshold
                if completion_threshold is not None
                else settings.progress_default_completion_threshold
            ),
            idle_timeout_seconds=settings.progress_session_idle_timeout_seconds,
            close_session_on_pause=settings.progress_close_session_on_pause,
            duration_policy=settings.progress_duration_policy,
            duration_tolerance_seconds=settings.progress_duration_tolerance_seconds,
        )

    def with_threshold(self, completion_threshold: int) -> "ReducerPolicy":
        return replace(self, completion_threshold=completion_threshold)


@dataclass(frozen=True)
class ReduceResult:
    """Outcome of folding one sample.

    ``progress`` is the previous state (possibly None) when the sample was
    rejected.
    """

    progress: LessonProgress | None
    crossed_completion: bool = False
    accepted: bool = True
    rejection: str | None = None


@dataclass(frozen=True)
class MergeResult:
    """Outcome of reconciling a snapshot with stored progress."""

    progress: LessonProgress | None
    crossed_completion: bool = False
    accepted: bool = True
    rejection: str | None = None


def completion_percentage(watched_seconds: float, total_seconds: float | None) -> float:
    """watched/total*100 clamped to [0, 100]; 0 without a known total."""
    if not total_seconds or total_seconds <= 0:
        return 0.0
    return min(100.0, max(0.0, watched_seconds * 100 / total_seconds))


def _is_finite(*values: float) -> bool:
    return all(isinstance(v, int | float) and math.isfinite(v) for v in values)


def validate_sample(
    sample: PlaybackSample,
    previous: LessonProgress | None,
    policy: ReducerPolicy,
) -> str | None:
    """Return a rejection reason for malformed samples, else None."""
    if not _is_finite(sample.current_time, sample.duration):
        return REJECT_INVALID_SAMPLE
    if sample.duration <= 0 or sample.current_time < 0:
        return REJECT_INVALID_SAMPLE
    if (
        policy.duration_policy == "strict"
        and previous is not None
        and previous.total_seconds
        and abs(sample.duration - previous.total_seconds)
        > policy.duration_tolerance_seconds
    ):
        return REJECT_INVALID_SAMPLE
    return None


def _advance_sessions(
    previous: LessonProgress,
    sample: PlaybackSample,
    watched_seconds: float,
    policy: ReducerPolicy,
) -> tuple[tuple[WatchSession, ...], ActiveSession | None]:
    """Apply session boundaries for a fresh sample."""
    sessions = list(previous.watch_sessions)
    active = previous.active_session
    closing = sample.event in (SampleEvent.PAUSE, SampleEvent.END)

    # Idle gap: close at the last sample, before this one opens a new session.
    # PAUSE/END close the open session at the closing sample instead.
    if active is not None and not closing:
        gap = (sample.observed_at - active.last_sample_at).total_seconds()
        if gap > policy.idle_timeout_seconds:
            sessions.append(active.close(previous.watched_seconds))
            active = None

    is_seek = sample.event == SampleEvent.SEEK

    if active is None:
        if closing:
            return tuple(sessions), None
        active = ActiveSession(
            start_time=sample.observed_at,
            start_watched=previous.watched_seconds,
            last_sample_at=sample.observed_at,
            seek_count=1 if is_seek else 0,
            platform=sample.platform,
        )
    else:
        active = replace(
            active,
            last_sample_at=sample.observed_at,
            seek_count=active.seek_count + (1 if is_seek else 0),
        )

    if sample.event == SampleEvent.PAUSE:
        active = replace(active, pause_count=active.pause_count + 1)
        if policy.close_session_on_pause:
            sessions.append(active.close(watched_seconds))
            active = None
    elif sample.event == SampleEvent.END:
        sessions.append(active.close(watched_seconds))
        active = None

    return tuple(sessions), active


def reduce_sample(
    sample: PlaybackSample,
    previous: LessonProgress | None,
    policy: ReducerPolicy | None = None,
) -> ReduceResult:
    """Fold one playback sample into lesson progress.

    Samples observed at or before ``last_watched_at`` only feed the
    high-water mark; resume position and sessions are left untouched.

    Args:
        sample: Raw player reading
        previous: Stored progress, or None for the first sample
        policy: Threshold and session/duration policy

    Returns:
        ReduceResult with the new state and the completion edge
    """
    policy = policy or ReducerPolicy()

    rejection = validate_sample(sample, previous, policy)
    if rejection:
        return ReduceResult(
            progress=previous, crossed_completion=False, accepted=False, rejection=rejection
        )

    base = previous or LessonProgress()
    total = base.total_seconds or sample.duration
    position = min(sample.current_time, total)

    watched = max(base.watched_seconds, position)
    percentage = completion_percentage(watched, total)
    is_completed = base.is_completed or percentage >= policy.completion_threshold
    crossed = is_completed and not base.is_completed

    is_fresh = base.last_watched_at is None or sample.observed_at > base.last_watched_at
    if is_fresh:
        sessions, active = _advance_sessions(base, sample, watched, policy)
        resume_position = position
        last_watched_at = sample.observed_at
    else:
        sessions, active = base.watch_sessions, base.active_session
        resume_position = base.resume_position
        last_watched_at = base.last_watched_at

    progress = replace(
        base,
        watched_seconds=watched,
        total_seconds=total,
        completion_percentage=percentage,
        is_completed=is_completed,
        resume_position=resume_position,
        first_watched_at=base.first_watched_at or sample.observed_at,
        last_watched_at=last_watched_at,
        completed_at=base.completed_at or (sample.observed_at if crossed else None),
        watch_sessions=sessions,
        active_session=active,
    )
    return ReduceResult(progress=progress, crossed_completion=crossed)


def _validate_snapshot(snapshot: LessonProgress) -> str | None:
    if not _is_finite(snapshot.watched_seconds, snapshot.resume_position):
        return REJECT_INVALID_SAMPLE
    if snapshot.watched_seconds < 0 or snapshot.resume_position < 0:
        return REJECT_INVALID_SAMPLE
    total = snapshot.total_seconds
    if total is None or not _is_finite(total) or total <= 0:
        return REJECT_INVALID_SAMPLE
    return None


def _earliest(*values):
    present = [value for value in values if value is not None]
    return min(present) if present else None


def merge_progress(
    stored: LessonProgress | None,
    incoming: LessonProgress,
    completion_threshold: int = DEFAULT_COMPLETION_THRESHOLD,
) -> MergeResult:
    """Reconcile a client snapshot with the stored document.

    The client's own ``is_completed`` flag is not trusted: completion is
    recomputed from the merged high-water mark and OR-ed with the stored
    latch.
    """
    rejection = _validate_snapshot(incoming)
    if rejection:
        return MergeResult(progress=stored, accepted=False, rejection=rejection)

    if stored is None:
        stored_completed = False
        base = LessonProgress()
    else:
        stored_completed = stored.is_completed
        base = stored

    total = base.total_seconds or incoming.total_seconds
    watched = min(max(base.watched_seconds, incoming.watched_seconds), total)
    percentage = completion_percentage(watched, total)
    is_completed = stored_completed or percentage >= completion_threshold
    crossed = is_completed and not stored_completed

    incoming_newer = base.last_watched_at is None or (
        incoming.last_watched_at is not None
        and incoming.last_watched_at > base.last_watched_at
    )
    newer = incoming if incoming_newer else base

    sessions_by_start = {session.start_time: session for session in base.watch_sessions}
    for session in incoming.watch_sessions:
        sessions_by_start.setdefault(session.start_time, session)
    sessions = tuple(sessions_by_start[start] for start in sorted(sessions_by_start))

    completed_at = base.completed_at
    if crossed:
        completed_at = incoming.completed_at or incoming.last_watched_at

    progress = LessonProgress(
        watched_seconds=watched,
        total_seconds=total,
        completion_percentage=percentage,
        is_completed=is_completed,
        resume_position=min(newer.resume_position, total),
        first_watched_at=_earliest(base.first_watched_at, incoming.first_watched_at),
        last_watched_at=newer.last_watched_at,
        completed_at=completed_at,
        watch_sessions=sessions,
        active_session=newer.active_session,
    )
    return MergeResult(progress=progress, crossed_completion=crossed)
