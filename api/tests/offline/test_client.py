"""Tests for the HTTP progress sink."""

import httpx
import pytest

from tongue.offline.client import SNAPSHOT_PATH, HttpProgressSink, SnapshotRejectedError
from tongue.progress.models import LessonProgress
from tongue.progress.service import PersistenceUnavailableError


SNAPSHOT = LessonProgress(watched_seconds=120, total_seconds=600, resume_position=120)


def sink_for(handler) -> HttpProgressSink:
    return HttpProgressSink(
        "http://api.test/",
        token_provider=lambda: "token-123",
        transport=httpx.MockTransport(handler),
    )


class TestHttpProgressSink:
    """Tests for snapshot delivery over HTTP."""

    @pytest.mark.asyncio
    async def test_puts_snapshot(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = request.read()
            return httpx.Response(200, json={"accepted": True, "queued": False})

        result = await sink_for(handler)("u1", "hindi-101", "lesson-0", SNAPSHOT)

        assert result["accepted"] is True
        assert seen["path"] == SNAPSHOT_PATH
        assert seen["auth"] == "Bearer token-123"
        assert b'"lesson_id":"lesson-0"' in seen["body"].replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self) -> None:
        sink = sink_for(lambda request: httpx.Response(503))

        with pytest.raises(PersistenceUnavailableError):
            await sink("u1", "hindi-101", "lesson-0", SNAPSHOT)

    @pytest.mark.asyncio
    async def test_transport_error_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        with pytest.raises(PersistenceUnavailableError):
            await sink_for(handler)("u1", "hindi-101", "lesson-0", SNAPSHOT)

    @pytest.mark.asyncio
    async def test_client_error_is_rejection(self) -> None:
        sink = sink_for(lambda request: httpx.Response(403, json={"reason": "lesson_locked"}))

        with pytest.raises(SnapshotRejectedError) as exc_info:
            await sink("u1", "hindi-101", "lesson-0", SNAPSHOT)

        assert exc_info.value.code == "snapshot_rejected"

    @pytest.mark.asyncio
    async def test_queued_snapshot_is_delivered(self) -> None:
        sink = sink_for(lambda request: httpx.Response(202, json={"accepted": True, "queued": True}))

        result = await sink("u1", "hindi-101", "lesson-0", SNAPSHOT)

        assert result["queued"] is True
