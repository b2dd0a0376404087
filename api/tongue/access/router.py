"""Access control API endpoints.

Denials are answered with 200 and ``has_access = false`` so clients can
render the reason and follow ``redirect_to``.
"""

from fastapi import APIRouter

from tongue.auth.dependencies import OptionalUserId

from .dependencies import AccessControlServiceDep
from .schemas import AccessCheckResponse, AccessibleLessonsResponse


router = APIRouter(prefix="/v1/access", tags=["access"])


@router.get(
    "/courses/{course_id}",
    response_model=AccessCheckResponse,
    summary="Check course access",
)
async def check_course_access(
    course_id: str,
    access_service: AccessControlServiceDep,
    user_id: OptionalUserId,
) -> AccessCheckResponse:
    """Check whether the caller may open a course."""
    result = await access_service.check_course_access(user_id, course_id)
    return AccessCheckResponse.from_result(result)


@router.get(
    "/courses/{course_id}/lessons",
    response_model=AccessibleLessonsResponse,
    summary="List accessible lessons",
)
async def list_accessible_lessons(
    course_id: str,
    access_service: AccessControlServiceDep,
    user_id: OptionalUserId,
) -> AccessibleLessonsResponse:
    """List the lessons the caller may open, in course order."""
    result = await access_service.get_accessible_lessons(user_id, course_id)
    return AccessibleLessonsResponse.from_result(result)


@router.get(
    "/courses/{course_id}/lessons/{lesson_id}",
    response_model=AccessCheckResponse,
    summary="Check lesson access",
)
async def check_lesson_access(
    course_id: str,
    lesson_id: str,
    access_service: AccessControlServiceDep,
    user_id: OptionalUserId,
) -> AccessCheckResponse:
    """Check whether the caller may open a lesson."""
    result = await access_service.check_lesson_access(user_id, course_id, lesson_id)
    return AccessCheckResponse.from_result(result)
