"""Tests for the retry policy."""

import random

import pytest

from tongue.offline.retry import RetryPolicy, run_with_retry
from tongue.progress.service import PersistenceUnavailableError


class RecordingSleep:
    """Sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestRetryPolicy:
    """Tests for backoff delays."""

    def test_doubles_until_cap(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)

        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_stays_within_spread(self) -> None:
        policy = RetryPolicy(base_delay=2.0, max_delay=30.0, jitter=0.1)
        rng = random.Random(7)

        delays = [policy.delay_for(1, rng) for _ in range(50)]

        assert all(1.8 <= delay <= 2.2 for delay in delays)


class TestRunWithRetry:
    """Tests for the retry loop."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self) -> None:
        calls = 0

        async def operation() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise PersistenceUnavailableError
            return "ok"

        sleep = RecordingSleep()
        outcome = await run_with_retry(
            operation, RetryPolicy(max_attempts=5, base_delay=0.5, jitter=0.0), sleep=sleep
        )

        assert outcome.succeeded is True
        assert outcome.value == "ok"
        assert outcome.attempts == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhaustion_is_reported(self) -> None:
        async def operation() -> None:
            raise ConnectionError("offline")

        sleep = RecordingSleep()
        outcome = await run_with_retry(
            operation, RetryPolicy(max_attempts=3, jitter=0.0), sleep=sleep
        )

        assert outcome.exhausted is True
        assert outcome.attempts == 3
        assert isinstance(outcome.error, ConnectionError)
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_errors_propagate(self) -> None:
        async def operation() -> None:
            raise ValueError("bad payload")

        with pytest.raises(ValueError, match="bad payload"):
            await run_with_retry(operation, RetryPolicy(), sleep=RecordingSleep())
