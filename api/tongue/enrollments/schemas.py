"""Pydantic schemas for enrollments."""

from datetime import datetime

from pydantic import BaseModel, Field

from .models import EnrollOutcome, Enrollment, EnrollmentStatus


class EnrollRequest(BaseModel):
    """Request to enroll the caller in a course."""

    course_id: str = Field(..., min_length=1)


class EnrollmentResponse(BaseModel):
    """Enrollment response."""

    user_id: str
    course_id: str
    status: EnrollmentStatus
    enrolled_at: datetime
    updated_at: datetime | None = None
    payment_id: str | None = None

    @classmethod
    def from_entity(cls, entity: Enrollment) -> "EnrollmentResponse":
        """Create response from entity."""
        return cls(
            user_id=entity.user_id,
            course_id=entity.course_id,
            status=EnrollmentStatus(entity.status),
            enrolled_at=entity.enrolled_at,
            updated_at=entity.updated_at,
            payment_id=entity.payment_id,
        )


class EnrollResponse(BaseModel):
    """Enroll outcome; ``duplicate_enrollment`` is a success."""

    outcome: EnrollOutcome
    enrollment: EnrollmentResponse


class EnrollmentListResponse(BaseModel):
    """List of the caller's enrollments."""

    items: list[EnrollmentResponse]
    total: int
