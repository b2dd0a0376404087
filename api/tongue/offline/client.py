"""HTTP delivery of progress snapshots.

Used when the offline layer runs apart from the API (e.g. a desktop or
kiosk client): snapshots are PUT to ``/v1/progress/snapshot``.
"""

from collections.abc import Callable

import httpx

from tongue.core.logging import get_logger
from tongue.progress.models import LessonProgress
from tongue.progress.service import PersistenceUnavailableError, ProgressError


logger = get_logger(__name__)

SNAPSHOT_PATH = "/v1/progress/snapshot"


class SnapshotRejectedError(ProgressError):
    """The API refused the snapshot; retrying will not help."""

    def __init__(self, message: str = "Progress snapshot rejected"):
        super().__init__(message, "snapshot_rejected")


class HttpProgressSink:
    """Progress sink posting snapshots to the API.

    Server errors, timeouts and transport failures raise
    ``PersistenceUnavailableError`` so the retry policy applies; other
    non-success responses raise ``SnapshotRejectedError``.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], str | None],
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self.transport = transport

    async def __call__(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        snapshot: LessonProgress,
    ) -> dict:
        body = snapshot.to_document()
        body.pop("active_session", None)
        body.update(course_id=course_id, lesson_id=lesson_id)

        headers = {}
        token = self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.put(SNAPSHOT_PATH, json=body, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("progress_sync_timeout", error=str(e))
            raise PersistenceUnavailableError("Progress API timeout") from e
        except httpx.RequestError as e:
            logger.warning("progress_sync_request_error", error=str(e))
            raise PersistenceUnavailableError(f"Progress API request error: {e}") from e

        if response.status_code >= httpx.codes.INTERNAL_SERVER_ERROR:
            raise PersistenceUnavailableError(
                f"Progress API error: {response.status_code}"
            )
        if not response.is_success:
            logger.error(
                "progress_sync_rejected",
                user_id=user_id,
                status_code=response.status_code,
                response_text=response.text[:500],
            )
            raise SnapshotRejectedError(
                f"Progress API rejected snapshot: {response.status_code}"
            )

        return response.json()
