"""Tests for PlaybackSampler."""

import asyncio

import pytest

from tests.conftest import FixedClock
from tests.playback.fakes import FakePlayer
from tongue.playback.sampler import PlaybackSampler, PlayerError, PlayerState
from tongue.progress.models import SampleEvent


@pytest.fixture
def player() -> FakePlayer:
    return FakePlayer()


@pytest.fixture
def samples() -> list:
    return []


@pytest.fixture
def errors() -> list:
    return []


@pytest.fixture
def sampler(player, samples, errors, clock: FixedClock) -> PlaybackSampler:
    sampler = PlaybackSampler(
        player, on_sample=samples.append, on_error=errors.append, clock=clock
    )
    sampler.start()
    return sampler


class TestEvents:
    """Tests for event-driven sampling."""

    def test_play_pause_end(self, player, sampler, samples) -> None:
        player.emit_ready()
        player.emit_state(PlayerState.PLAYING, position=0)
        player.emit_state(PlayerState.PAUSED, position=30)
        player.emit_state(PlayerState.ENDED, position=600)

        assert sampler.ready is True
        assert [s.event for s in samples] == [
            SampleEvent.PLAY,
            SampleEvent.PAUSE,
            SampleEvent.END,
        ]
        assert samples[1].current_time == 30
        assert all(s.platform == "fake" for s in samples)

    def test_buffering_resume_does_not_emit_play(self, player, sampler, samples) -> None:
        player.emit_state(PlayerState.PLAYING, position=0)
        player.emit_state(PlayerState.BUFFERING)
        player.emit_state(PlayerState.PLAYING)

        assert [s.event for s in samples] == [SampleEvent.PLAY]
        assert sampler.is_playing is True

    def test_progress_within_tolerance(self, player, sampler, samples, clock) -> None:
        player.emit_state(PlayerState.PLAYING, position=0)
        clock.advance(10)
        player.emit_progress(10.5)

        assert samples[-1].event == SampleEvent.PROGRESS

    def test_jump_reported_as_seek(self, player, sampler, samples, clock) -> None:
        player.emit_state(PlayerState.PLAYING, position=0)
        clock.advance(1)
        player.emit_progress(120)

        assert samples[-1].event == SampleEvent.SEEK

    def test_playback_rate_scales_expected_position(
        self, player, sampler, samples, clock
    ) -> None:
        sampler.set_playback_rate(2.0)
        player.emit_state(PlayerState.PLAYING, position=0)
        clock.advance(10)
        player.emit_progress(20)

        assert player.rate == 2.0
        assert samples[-1].event == SampleEvent.PROGRESS

    def test_position_frozen_while_paused(self, player, sampler, samples, clock) -> None:
        """Time spent paused does not count towards the expected position."""
        player.emit_state(PlayerState.PLAYING, position=0)
        player.emit_state(PlayerState.PAUSED, position=5)
        clock.advance(60)
        player.emit_progress(5.5)

        assert samples[-1].event == SampleEvent.PROGRESS

    def test_seek_while_paused_reported_on_resume(self, player, sampler, samples, clock) -> None:
        player.emit_state(PlayerState.PLAYING, position=0)
        player.emit_state(PlayerState.PAUSED, position=5)
        clock.advance(30)
        player.emit_state(PlayerState.PLAYING, position=300)

        assert [s.event for s in samples] == [
            SampleEvent.PLAY,
            SampleEvent.PAUSE,
            SampleEvent.SEEK,
        ]
        assert samples[-1].current_time == 300

    def test_resume_in_place_is_play(self, player, sampler, samples, clock) -> None:
        player.emit_state(PlayerState.PLAYING, position=0)
        player.emit_state(PlayerState.PAUSED, position=5)
        clock.advance(30)
        player.emit_state(PlayerState.PLAYING, position=5)

        assert samples[-1].event == SampleEvent.PLAY

    def test_invalid_readings_skipped(self, player, sampler, samples) -> None:
        player.duration = float("nan")
        player.emit_state(PlayerState.PLAYING, position=0)

        assert samples == []


class TestErrors:
    """Tests for error routing."""

    def test_player_error_forwarded(self, player, sampler, errors) -> None:
        error = PlayerError("video unavailable", code=100)

        player.emit_error(error)

        assert errors == [error]

    def test_callback_error_forwarded(self, player, errors, clock) -> None:
        def broken(_sample) -> None:
            raise RuntimeError("sink exploded")

        sampler = PlaybackSampler(player, on_sample=broken, on_error=errors.append, clock=clock)
        sampler.start()

        player.emit_state(PlayerState.PLAYING, position=0)

        assert len(errors) == 1
        assert str(errors[0]) == "sink exploded"


class TestLifecycle:
    """Tests for start/close."""

    def test_close_detaches(self, player, sampler, samples) -> None:
        sampler.close()
        player.emit_state(PlayerState.PLAYING, position=0)

        assert player.listeners_removed is True
        assert samples == []

    def test_controls_delegate(self, player, sampler) -> None:
        sampler.play()
        assert player.playing is True
        sampler.seek_to(42)
        assert player.seeks == [42]
        sampler.set_volume(0.5)
        assert player.volume == 0.5
        sampler.pause()
        assert player.playing is False


class TestPolling:
    """Tests for the polling shim."""

    @pytest.mark.asyncio
    async def test_polls_while_playing(self, samples, clock) -> None:
        player = FakePlayer(pushes_progress=False)
        sampler = PlaybackSampler(
            player, on_sample=samples.append, clock=clock, poll_interval=0.01
        )
        sampler.start()

        player.emit_state(PlayerState.PLAYING, position=0)
        for _ in range(100):
            if len(samples) >= 3:
                break
            await asyncio.sleep(0.01)
        player.emit_state(PlayerState.PAUSED)
        count = len(samples)
        await asyncio.sleep(0.05)

        assert SampleEvent.PROGRESS in {s.event for s in samples}
        assert len(samples) == count
        sampler.close()

    @pytest.mark.asyncio
    async def test_no_polling_when_player_pushes(self, player, samples, clock) -> None:
        sampler = PlaybackSampler(
            player, on_sample=samples.append, clock=clock, poll_interval=0.01
        )
        sampler.start()

        player.emit_state(PlayerState.PLAYING, position=0)
        await asyncio.sleep(0.05)

        assert [s.event for s in samples] == [SampleEvent.PLAY]
        sampler.close()
