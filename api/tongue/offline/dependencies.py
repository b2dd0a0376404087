"""FastAPI dependencies for the offline sync service."""

from typing import Annotated

from fastapi import Depends, Request

from .service import OfflineSyncService


async def get_offline_service(request: Request) -> OfflineSyncService | None:
    """Get the offline sync service from app state (None when not configured)."""
    return getattr(request.app.state, "offline_service", None)


# Type alias for dependency injection
OfflineServiceDep = Annotated[OfflineSyncService | None, Depends(get_offline_service)]
