"""FastAPI dependencies for access control.

Provides dependency injection for:
- Access control service
- Lesson access enforcement for write endpoints
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .models import AccessCheckResult, AccessDeniedReason
from .service import AccessControlService


async def get_access_service(request: Request) -> AccessControlService:
    """Get access control service from app state."""
    app_state = request.app.state
    if not hasattr(app_state, "access_service") or not app_state.access_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Access control service unavailable",
        )
    return app_state.access_service


# Type alias for dependency injection
AccessControlServiceDep = Annotated[AccessControlService, Depends(get_access_service)]


def handle_access_denied(result: AccessCheckResult) -> HTTPException:
    """Convert a denial to an HTTP exception."""
    status_map = {
        AccessDeniedReason.NOT_AUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
        AccessDeniedReason.COURSE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
        AccessDeniedReason.LESSON_NOT_FOUND: status.HTTP_404_NOT_FOUND,
        AccessDeniedReason.VERIFICATION_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    }

    status_code = status_map.get(result.reason, status.HTTP_403_FORBIDDEN)

    return HTTPException(
        status_code=status_code,
        detail={
            "reason": result.reason.value if result.reason else None,
            "message": result.message,
            "blocking_lesson_id": result.blocking_lesson_id,
        },
    )


async def require_lesson_access(
    access_service: AccessControlService,
    user_id: str,
    course_id: str,
    lesson_id: str,
) -> None:
    """Raise unless the user may open the lesson.

    Raises:
        HTTPException: 401/403/404/503 depending on the denial reason
    """
    result = await access_service.check_lesson_access(user_id, course_id, lesson_id)
    if not result.has_access:
        raise handle_access_denied(result)


async def require_course_access(
    access_service: AccessControlService,
    user_id: str,
    course_id: str,
) -> None:
    """Raise unless the user has access to the course."""
    result = await access_service.check_course_access(user_id, course_id)
    if not result.has_access:
        raise handle_access_denied(result)
