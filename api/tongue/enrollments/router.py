"""Enrollment API endpoints."""

from fastapi import APIRouter, Response, status

from tongue.auth.dependencies import CurrentUserId

from .dependencies import EnrollmentServiceDep, handle_enrollment_error
from .schemas import (
    EnrollmentListResponse,
    EnrollmentResponse,
    EnrollRequest,
    EnrollResponse,
)
from .service import EnrollmentError


router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])


@router.post(
    "",
    response_model=EnrollResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Enroll in course",
)
async def enroll(
    data: EnrollRequest,
    response: Response,
    enrollment_service: EnrollmentServiceDep,
    user_id: CurrentUserId,
) -> EnrollResponse:
    """Enroll the caller in a course.

    Repeating the call returns 200 with ``duplicate_enrollment``.
    """
    try:
        result = await enrollment_service.enroll(user_id, data.course_id)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e

    if not result.created:
        response.status_code = status.HTTP_200_OK
    return EnrollResponse(
        outcome=result.outcome,
        enrollment=EnrollmentResponse.from_entity(result.enrollment),
    )


@router.get(
    "",
    response_model=EnrollmentListResponse,
    summary="List my enrollments",
)
async def list_enrollments(
    enrollment_service: EnrollmentServiceDep,
    user_id: CurrentUserId,
) -> EnrollmentListResponse:
    """List the caller's enrollments, newest first."""
    try:
        enrollments = await enrollment_service.list_user_enrollments(user_id)
    except EnrollmentError as e:
        raise handle_enrollment_error(e) from e

    items = [EnrollmentResponse.from_entity(item) for item in enrollments]
    return EnrollmentListResponse(items=items, total=len(items))
