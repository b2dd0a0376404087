"""Playback sampler.

Turns player widget callbacks into ``PlaybackSample`` values. Event
subscription is the primary mode. Players that do not push progress
events are read every ``poll_interval`` seconds while playing; this polling
is a compatibility shim only.

Player states:
- PLAYING emits a ``play`` sample and (polling mode) starts the poller
- PAUSED / ENDED emit ``pause`` / ``end`` and stop the poller
- BUFFERING changes nothing; sampling continues

A position jump larger than ``seek_tolerance`` from where playback should
be is reported as a ``seek`` sample. Player errors and sample-callback
errors go to ``on_error`` and never propagate into the player.
"""

import asyncio
import math
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Protocol

from tongue.core.clock import Clock, utc_now
from tongue.core.logging import get_logger
from tongue.progress.models import PlaybackSample, SampleEvent


logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 1.0
DEFAULT_SEEK_TOLERANCE_SECONDS = 2.0


class PlayerState(str, Enum):
    """Widget playback states."""

    UNSTARTED = "unstarted"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ENDED = "ended"
    CUED = "cued"


class PlayerError(Exception):
    """Error reported by the player widget."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(message)


class PlayerAdapter(Protocol):
    """Third-party video widget seen through a uniform interface."""

    platform: str
    pushes_progress: bool

    def on_ready(self, callback: Callable[[], None]) -> None: ...

    def on_progress(self, callback: Callable[[float, float], None]) -> None: ...

    def on_state_change(self, callback: Callable[[PlayerState], None]) -> None: ...

    def on_error(self, callback: Callable[[Exception], None]) -> None: ...

    def remove_listeners(self) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek_to(self, seconds: float) -> None: ...

    def set_volume(self, volume: float) -> None: ...

    def set_playback_rate(self, rate: float) -> None: ...

    def get_current_time(self) -> float: ...

    def get_duration(self) -> float: ...


SampleCallback = Callable[[PlaybackSample], None]
ErrorCallback = Callable[[Exception], None]


def _valid_reading(current_time: float, duration: float) -> bool:
    """Finite numbers with a positive duration."""
    numbers = all(isinstance(v, int | float) for v in (current_time, duration))
    if not numbers or not (math.isfinite(current_time) and math.isfinite(duration)):
        return False
    return duration > 0


class PlaybackSampler:
    """Emit playback samples from a player adapter."""

    def __init__(
        self,
        adapter: PlayerAdapter,
        on_sample: SampleCallback,
        on_error: ErrorCallback | None = None,
        clock: Clock = utc_now,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        seek_tolerance: float = DEFAULT_SEEK_TOLERANCE_SECONDS,
    ):
        self.adapter = adapter
        self.on_sample = on_sample
        self.on_error = on_error
        self.clock = clock
        self.poll_interval = poll_interval
        self.seek_tolerance = seek_tolerance

        self.state = PlayerState.UNSTARTED
        self.ready = False
        self.playback_rate = 1.0
        self._last_position: float | None = None
        self._last_observed_at: datetime | None = None
        self._poll_task: asyncio.Task | None = None
        self._started = False
        self._closed = False

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    def start(self) -> None:
        """Subscribe to the adapter's events."""
        if self._started or self._closed:
            return
        self._started = True
        self.adapter.on_ready(self._handle_ready)
        self.adapter.on_progress(self._handle_progress)
        self.adapter.on_state_change(self._handle_state_change)
        self.adapter.on_error(self._handle_player_error)

    def close(self) -> None:
        """Cancel timers and detach from the adapter."""
        if self._closed:
            return
        self._closed = True
        self._stop_polling()
        if self._started:
            self.adapter.remove_listeners()

    @property
    def is_playing(self) -> bool:
        return self.state in (PlayerState.PLAYING, PlayerState.BUFFERING)

    # ==========================================================================
    # Controls
    # ==========================================================================

    def play(self) -> None:
        self.adapter.play()

    def pause(self) -> None:
        self.adapter.pause()

    def seek_to(self, seconds: float) -> None:
        self.adapter.seek_to(seconds)

    def set_volume(self, volume: float) -> None:
        self.adapter.set_volume(volume)

    def set_playback_rate(self, rate: float) -> None:
        self.adapter.set_playback_rate(rate)
        self.playback_rate = rate

    # ==========================================================================
    # Adapter callbacks
    # ==========================================================================

    def _handle_ready(self) -> None:
        if self._closed:
            return
        self.ready = True
        logger.debug("player_ready", platform=self.adapter.platform)

    def _handle_progress(self, current_time: float, duration: float) -> None:
        if self._closed:
            return
        self._emit(SampleEvent.PROGRESS, current_time, duration)

    def _handle_state_change(self, state: PlayerState) -> None:
        if self._closed:
            return
        previous, self.state = self.state, state

        if state == PlayerState.PLAYING:
            if previous != PlayerState.BUFFERING:
                self._sample_player(SampleEvent.PLAY)
            self._start_polling()
        elif state == PlayerState.PAUSED:
            self._stop_polling()
            self._sample_player(SampleEvent.PAUSE)
        elif state == PlayerState.ENDED:
            self._stop_polling()
            self._sample_player(SampleEvent.END)

    def _handle_player_error(self, error: Exception) -> None:
        logger.warning("player_error", platform=self.adapter.platform, error=str(error))
        self._report_error(error)

    # ==========================================================================
    # Sampling
    # ==========================================================================

    def _sample_player(self, event: SampleEvent) -> None:
        """Read the player and emit a sample."""
        try:
            current_time = self.adapter.get_current_time()
            duration = self.adapter.get_duration()
        except Exception as e:
            self._report_error(e)
            return
        self._emit(event, current_time, duration)

    def _expected_position(self, observed_at: datetime) -> float | None:
        if self._last_position is None:
            return None
        if self._last_observed_at is None:
            return self._last_position
        elapsed = max(0.0, (observed_at - self._last_observed_at).total_seconds())
        return self._last_position + elapsed * self.playback_rate

    def _emit(self, event: SampleEvent, current_time: float, duration: float) -> None:
        if not _valid_reading(current_time, duration):
            logger.debug("player_sample_skipped", current_time=current_time, duration=duration)
            return

        observed_at = self.clock()
        # Includes PLAY: a jump made while paused surfaces on resume
        if event in (SampleEvent.PROGRESS, SampleEvent.PLAY):
            expected = self._expected_position(observed_at)
            if expected is not None and abs(current_time - expected) > self.seek_tolerance:
                event = SampleEvent.SEEK

        # Position only advances while playing
        self._last_position = current_time
        advancing = self.is_playing and event not in (SampleEvent.PAUSE, SampleEvent.END)
        self._last_observed_at = observed_at if advancing else None

        sample = PlaybackSample(
            current_time=current_time,
            duration=duration,
            observed_at=observed_at,
            event=event,
            platform=self.adapter.platform,
        )
        try:
            self.on_sample(sample)
        except Exception as e:
            logger.exception("sample_callback_failed")
            self._report_error(e)

    def _report_error(self, error: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.exception("error_callback_failed")

    # ==========================================================================
    # Polling shim
    # ==========================================================================

    def _start_polling(self) -> None:
        if self.adapter.pushes_progress or self._closed:
            return
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.ensure_future(self._poll())

    def _stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll(self) -> None:
        while not self._closed and self.is_playing:
            await asyncio.sleep(self.poll_interval)
            if self._closed or not self.is_playing:
                break
            self._sample_player(SampleEvent.PROGRESS)
