"""Shared test fixtures."""

import asyncio
import os
import tempfile
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest


# Settings are cached on first use; configure the environment before any
# application module is imported.
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DOCUMENT_BACKEND", "memory")
os.environ.setdefault("OFFLINE_JOURNAL_BACKEND", "file")
os.environ.setdefault("OFFLINE_JOURNAL_DIR", tempfile.mkdtemp(prefix="tongue-journal-"))
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient  # noqa: E402

from tongue.auth.security import create_access_token  # noqa: E402
from tongue.core.database import InMemoryDocumentStore  # noqa: E402
from tongue.courses.models import Course, Lesson  # noqa: E402
from tongue.courses.service import CourseService  # noqa: E402
from tongue.enrollments.service import EnrollmentService  # noqa: E402
from tongue.progress.service import ProgressService  # noqa: E402


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
COURSE_ID = "hindi-101"


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def make_course(
    course_id: str = COURSE_ID,
    preview_ids: tuple[str, ...] = (),
    unlock_sequential: bool = True,
    completion_threshold: int = 80,
) -> Course:
    """Three-lesson course: lesson-0, lesson-1, lesson-2."""
    lessons = [
        Lesson(
            id=f"lesson-{order}",
            order=order,
            title=f"Lesson {order}",
            is_preview=f"lesson-{order}" in preview_ids,
            duration=600.0,
        )
        for order in range(3)
    ]
    return Course(
        id=course_id,
        title="Hindi for Beginners",
        lessons=lessons,
        completion_threshold=completion_threshold,
        unlock_sequential=unlock_sequential,
    )


def auth_headers(user_id: str) -> dict[str, str]:
    """Bearer header for a user."""
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def course_service(store: InMemoryDocumentStore) -> CourseService:
    return CourseService(store)


@pytest.fixture
def progress_service(
    store: InMemoryDocumentStore, course_service: CourseService, clock: FixedClock
) -> ProgressService:
    return ProgressService(store, course_service, clock=clock)


@pytest.fixture
def enrollment_service(
    store: InMemoryDocumentStore,
    course_service: CourseService,
    progress_service: ProgressService,
    clock: FixedClock,
) -> EnrollmentService:
    return EnrollmentService(store, course_service, progress_service, clock=clock)


@pytest.fixture
def seeded_store() -> InMemoryDocumentStore:
    """Store holding the default course, seeded outside any test loop."""
    store = InMemoryDocumentStore()
    asyncio.run(CourseService(store).save_course(make_course()))
    return store


@pytest.fixture
def client(
    seeded_store: InMemoryDocumentStore,
    tmp_path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[TestClient]:
    """Application client backed by an in-memory store and a fresh journal."""
    from tongue.config import get_settings
    from tongue.main import create_app

    monkeypatch.setattr(get_settings(), "offline_journal_dir", str(tmp_path / "journal"))

    app = create_app()
    app.state.document_store = seeded_store
    with TestClient(app) as test_client:
        yield test_client
