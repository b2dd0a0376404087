"""Tests for LessonProgressTracker."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.conftest import COURSE_ID, FixedClock
from tests.playback.fakes import FakePlayer
from tongue.playback.sampler import PlayerState
from tongue.playback.tracker import LessonProgressTracker
from tongue.progress.models import LessonProgress


@pytest.fixture
def offline() -> MagicMock:
    offline = MagicMock()
    offline.record = AsyncMock()
    return offline


def make_tracker(player, offline, clock, **kwargs) -> LessonProgressTracker:
    tracker = LessonProgressTracker(
        "u1", COURSE_ID, "lesson-0", player, offline, clock=clock, **kwargs
    )
    tracker.start()
    return tracker


class TestLessonProgressTracker:
    """Tests for the sampler -> reducer -> journal wiring."""

    @pytest.mark.asyncio
    async def test_samples_are_reduced_and_journaled(
        self, offline: MagicMock, clock: FixedClock
    ) -> None:
        player = FakePlayer()
        tracker = make_tracker(player, offline, clock)

        player.emit_state(PlayerState.PLAYING, position=0)
        clock.advance(60)
        player.emit_progress(60)
        await tracker.drain()

        assert tracker.progress.watched_seconds == 60
        assert offline.record.await_count == 2
        args = offline.record.await_args.args
        assert args[:3] == ("u1", COURSE_ID, "lesson-0")
        assert args[3].watched_seconds == 60

    @pytest.mark.asyncio
    async def test_completion_callback_fires_once(
        self, offline: MagicMock, clock: FixedClock
    ) -> None:
        completions = []
        player = FakePlayer()
        tracker = make_tracker(player, offline, clock, on_completion=completions.append)

        player.emit_state(PlayerState.PLAYING, position=0)
        for position in (240, 480, 500, 600):
            clock.advance(1)
            player.emit_progress(position)
        await tracker.drain()

        assert len(completions) == 1
        assert completions[0].watched_seconds == 480

    @pytest.mark.asyncio
    async def test_already_completed_lesson_does_not_fire(
        self, offline: MagicMock, clock: FixedClock
    ) -> None:
        completions = []
        initial = LessonProgress(
            watched_seconds=600, total_seconds=600, completion_percentage=100, is_completed=True
        )
        player = FakePlayer()
        tracker = make_tracker(
            player, offline, clock, initial=initial, on_completion=completions.append
        )

        player.emit_state(PlayerState.PLAYING, position=0)
        await tracker.drain()

        assert completions == []
        assert tracker.progress.is_completed is True

    @pytest.mark.asyncio
    async def test_invalid_sample_not_journaled(
        self, offline: MagicMock, clock: FixedClock
    ) -> None:
        player = FakePlayer()
        tracker = make_tracker(player, offline, clock)
        tracker.handle_sample(
            MagicMock(current_time=float("nan"), duration=600.0, observed_at=clock.now)
        )
        await tracker.drain()

        offline.record.assert_not_awaited()
        assert tracker.progress is None

    @pytest.mark.asyncio
    async def test_journal_failure_is_contained(
        self, offline: MagicMock, clock: FixedClock
    ) -> None:
        offline.record.side_effect = OSError("disk full")
        player = FakePlayer()
        tracker = make_tracker(player, offline, clock)

        player.emit_state(PlayerState.PLAYING, position=0)
        await tracker.drain()

        assert tracker.progress is not None

    def test_resume_seeks_to_stored_position(
        self, offline: MagicMock, clock: FixedClock
    ) -> None:
        player = FakePlayer()
        initial = LessonProgress(watched_seconds=300, total_seconds=600, resume_position=240)
        tracker = make_tracker(player, offline, clock, initial=initial)

        assert tracker.resume() is True
        assert player.seeks == [240]

    def test_resume_without_progress(self, offline: MagicMock, clock: FixedClock) -> None:
        player = FakePlayer()
        tracker = make_tracker(player, offline, clock)

        assert tracker.resume() is False
        assert player.seeks == []

    def test_close_stops_sampling(self, offline: MagicMock, clock: FixedClock) -> None:
        player = FakePlayer()
        tracker = make_tracker(player, offline, clock)

        tracker.close()

        assert player.listeners_removed is True
