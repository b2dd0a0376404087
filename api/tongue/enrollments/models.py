"""Enrollment entities.

One document per user and course in collection ``enrollments``, keyed
``{user_id}_{course_id}`` so repeated enroll calls land on the same record.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from tongue.core.clock import format_timestamp, parse_timestamp


ENROLLMENTS_COLLECTION = "enrollments"


def enrollment_key(user_id: str, course_id: str) -> str:
    """Deterministic enrollment document key."""
    return f"{user_id}_{course_id}"


class EnrollmentStatus(str, Enum):
    """Enrollment status."""

    ACTIVE = "active"
    COMPLETED = "completed"
    SUSPENDED = "suspended"


class EnrollOutcome(str, Enum):
    """Result of an enroll call; both values are successes."""

    CREATED = "created"
    DUPLICATE_ENROLLMENT = "duplicate_enrollment"


class Enrollment:
    """Enrollment entity.

    Attributes:
        user_id: Opaque identity provider user id
        course_id: Course identifier
        enrolled_at: First enrollment time
        status: active, completed or suspended
        payment_id: Payment reference, when enrolled through checkout
        updated_at: Last write
    """

    def __init__(
        self,
        user_id: str,
        course_id: str,
        enrolled_at: datetime,
        status: str = EnrollmentStatus.ACTIVE.value,
        payment_id: str | None = None,
        updated_at: datetime | None = None,
    ):
        self.user_id = user_id
        self.course_id = course_id
        self.enrolled_at = enrolled_at
        self.status = status
        self.payment_id = payment_id
        self.updated_at = updated_at or enrolled_at

    @property
    def key(self) -> str:
        return enrollment_key(self.user_id, self.course_id)

    @property
    def grants_access(self) -> bool:
        """Active and completed enrollments both grant course access."""
        return self.status in (
            EnrollmentStatus.ACTIVE.value,
            EnrollmentStatus.COMPLETED.value,
        )

    @property
    def is_suspended(self) -> bool:
        return self.status == EnrollmentStatus.SUSPENDED.value

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "Enrollment":
        """Create Enrollment from document fields."""
        return cls(
            user_id=data["user_id"],
            course_id=data["course_id"],
            enrolled_at=parse_timestamp(data["enrolled_at"]),
            status=data.get("status", EnrollmentStatus.ACTIVE.value),
            payment_id=data.get("payment_id"),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to document fields."""
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "enrolled_at": format_timestamp(self.enrolled_at),
            "status": self.status,
            "payment_id": self.payment_id,
            "updated_at": format_timestamp(self.updated_at),
        }

    def __repr__(self) -> str:
        return (
            f"<Enrollment user={self.user_id} course={self.course_id} "
            f"status={self.status}>"
        )
