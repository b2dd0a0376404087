"""Retry policy for progress delivery.

Exponential backoff doubling from ``base_delay`` up to ``max_delay`` with
proportional jitter. ``run_with_retry`` never raises for retryable failures;
it reports them through ``RetryOutcome``.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from tongue.core.database import DocumentStoreError
from tongue.core.logging import get_logger
from tongue.progress.service import PersistenceUnavailableError


if TYPE_CHECKING:
    from tongue.config import Settings


logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    PersistenceUnavailableError,
    DocumentStoreError,
    ConnectionError,
    TimeoutError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters.

    Attributes:
        max_attempts: Total attempts, including the first
        base_delay: Delay before the second attempt (seconds)
        max_delay: Upper bound for any single delay (seconds)
        jitter: Fraction of the delay added or removed at random
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0
    jitter: float = 0.1

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RetryPolicy":
        return cls(
            max_attempts=settings.offline_retry_max_attempts,
            base_delay=settings.offline_retry_base_delay_seconds,
            max_delay=settings.offline_retry_max_delay_seconds,
            jitter=settings.offline_retry_jitter,
        )

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay after the given failed attempt (1-based)."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        if self.jitter:
            spread = delay * self.jitter
            delay += (rng or random).uniform(-spread, spread)
        return max(0.0, delay)


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a retried operation."""

    succeeded: bool
    attempts: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def exhausted(self) -> bool:
        return not self.succeeded


Sleep = Callable[[float], Awaitable[None]]


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE_ERRORS,
    rng: random.Random | None = None,
) -> RetryOutcome[T]:
    """Run ``operation`` until it succeeds or the attempts run out.

    Exceptions outside ``retry_on`` propagate immediately.
    """
    last_error: BaseException | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            value = await operation()
        except retry_on as e:
            last_error = e
            if attempt == policy.max_attempts:
                break
            delay = policy.delay_for(attempt, rng)
            logger.debug("retry_scheduled", attempt=attempt, delay=delay, error=str(e))
            await sleep(delay)
        else:
            return RetryOutcome(succeeded=True, attempts=attempt, value=value)

    return RetryOutcome(
        succeeded=False, attempts=policy.max_attempts, error=last_error
    )
