"""Progress tracking API endpoints.

Provides routes for:
- Raw playback samples (reduced on the server)
- Client snapshots (offline flush)
- Manual lesson completion
- Progress queries

Writes require lesson access; unlock state is derived at read time.
"""

from dataclasses import replace

from fastapi import APIRouter, HTTPException, Response, status

from tongue.access.dependencies import (
    AccessControlServiceDep,
    handle_access_denied,
    require_course_access,
    require_lesson_access,
)
from tongue.access.models import AccessDeniedReason
from tongue.auth.dependencies import CurrentUserId
from tongue.core.logging import get_logger
from tongue.offline.dependencies import OfflineServiceDep

from .dependencies import ProgressServiceDep, handle_progress_error
from .models import PlaybackSample
from .reducer import MergeResult, ReduceResult
from .schemas import (
    LessonProgressResponse,
    MarkLessonCompleteRequest,
    ProgressSnapshotRequest,
    UserProgressResponse,
    VideoProgressResponse,
    VideoSampleRequest,
)
from .service import PersistenceUnavailableError, ProgressError


logger = get_logger(__name__)

router = APIRouter(prefix="/v1/progress", tags=["progress"])


def _to_response(lesson_id: str, result: ReduceResult | MergeResult) -> VideoProgressResponse:
    return VideoProgressResponse(
        accepted=result.accepted,
        rejection=result.rejection,
        crossed_completion=result.crossed_completion,
        progress=(
            LessonProgressResponse.from_entity(lesson_id, result.progress)
            if result.progress
            else None
        ),
    )


# ==============================================================================
# Video Progress Endpoints
# ==============================================================================


@router.put(
    "/video",
    response_model=VideoProgressResponse,
    summary="Report a playback sample",
)
async def update_video_progress(
    data: VideoSampleRequest,
    progress_service: ProgressServiceDep,
    access_service: AccessControlServiceDep,
    user_id: CurrentUserId,
) -> VideoProgressResponse:
    """Reduce one player reading into stored lesson progress.

    Malformed samples are answered with ``accepted = false`` and
    ``rejection = "invalid_sample"``; stored progress is unchanged.
    """
    await require_lesson_access(access_service, user_id, data.course_id, data.lesson_id)

    # Observation time is capped at server time
    now = progress_service.clock()
    sample = PlaybackSample(
        current_time=data.current_time,
        duration=data.duration,
        observed_at=min(data.observed_at or now, now),
        event=data.event,
        platform=data.platform,
    )
    try:
        result = await progress_service.record_sample(
            user_id, data.course_id, data.lesson_id, sample
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e
    return _to_response(data.lesson_id, result)


@router.put(
    "/snapshot",
    response_model=VideoProgressResponse,
    summary="Merge a client progress snapshot",
)
async def save_progress_snapshot(
    data: ProgressSnapshotRequest,
    response: Response,
    progress_service: ProgressServiceDep,
    access_service: AccessControlServiceDep,
    offline_service: OfflineServiceDep,
    user_id: CurrentUserId,
) -> VideoProgressResponse:
    """Merge client-computed progress; replays are harmless.

    When the document store is unavailable (for the access check or the
    write) the snapshot is journaled and answered with 202; the background
    sync re-checks access and delivers it later.
    """
    access = await access_service.check_lesson_access(user_id, data.course_id, data.lesson_id)
    store_down = access.reason == AccessDeniedReason.VERIFICATION_ERROR
    if not access.has_access and not (store_down and offline_service is not None):
        raise handle_access_denied(access)

    snapshot = data.to_entity()
    now = progress_service.clock()
    if snapshot.last_watched_at is not None and snapshot.last_watched_at > now:
        snapshot = replace(snapshot, last_watched_at=now)

    if access.has_access:
        try:
            result = await progress_service.save_video_progress(
                user_id, data.course_id, data.lesson_id, snapshot
            )
        except PersistenceUnavailableError as e:
            if offline_service is None:
                raise handle_progress_error(e) from e
        except ProgressError as e:
            raise handle_progress_error(e) from e
        else:
            return _to_response(data.lesson_id, result)

    await offline_service.record(user_id, data.course_id, data.lesson_id, snapshot)
    logger.warning("progress_snapshot_queued", lesson_id=data.lesson_id)
    response.status_code = status.HTTP_202_ACCEPTED
    return VideoProgressResponse(
        accepted=True,
        queued=True,
        progress=LessonProgressResponse.from_entity(data.lesson_id, snapshot),
    )


# ==============================================================================
# Lesson Completion Endpoints
# ==============================================================================


@router.post(
    "/lesson/complete",
    response_model=UserProgressResponse,
    summary="Mark lesson as completed",
)
async def mark_lesson_complete(
    data: MarkLessonCompleteRequest,
    progress_service: ProgressServiceDep,
    access_service: AccessControlServiceDep,
    user_id: CurrentUserId,
) -> UserProgressResponse:
    """Manually latch a lesson as completed (for non-video lessons)."""
    await require_lesson_access(access_service, user_id, data.course_id, data.lesson_id)

    try:
        progress = await progress_service.mark_lesson_completed(
            user_id, data.course_id, data.lesson_id
        )
    except ProgressError as e:
        raise handle_progress_error(e) from e
    return UserProgressResponse.from_entity(progress)


# ==============================================================================
# Progress Query Endpoints
# ==============================================================================


@router.get(
    "/courses/{course_id}",
    response_model=UserProgressResponse,
    summary="Get course progress",
)
async def get_course_progress(
    course_id: str,
    progress_service: ProgressServiceDep,
    access_service: AccessControlServiceDep,
    user_id: CurrentUserId,
) -> UserProgressResponse:
    """Get the caller's progress in a course."""
    await require_course_access(access_service, user_id, course_id)

    try:
        progress = await progress_service.get_user_progress(user_id, course_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No progress recorded for this course",
        )
    return UserProgressResponse.from_entity(progress)


@router.get(
    "/courses/{course_id}/lessons/{lesson_id}",
    response_model=LessonProgressResponse,
    summary="Get lesson progress",
)
async def get_lesson_progress(
    course_id: str,
    lesson_id: str,
    progress_service: ProgressServiceDep,
    user_id: CurrentUserId,
) -> LessonProgressResponse:
    """Get the caller's progress on one lesson (resume position included)."""
    try:
        progress = await progress_service.get_lesson_progress(user_id, course_id, lesson_id)
    except ProgressError as e:
        raise handle_progress_error(e) from e

    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No progress recorded for this lesson",
        )
    return LessonProgressResponse.from_entity(lesson_id, progress)
