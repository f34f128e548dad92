"""Retry with exponential backoff and jitter for classified errors."""

import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from chunkscribe.domain.errors import PipelineCancelled, RetryableError, classify_error
from chunkscribe.use_cases.concurrency import CancelToken, sleep_cancellable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    jitter: float = 0.5

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given failed attempt (1-based)."""
        return self.base_delay * (2 ** attempt) + random.uniform(0, self.jitter)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    cancel: Optional[CancelToken] = None,
    label: str = "call",
) -> T:
    """Run operation, retrying RetryableError up to policy.max_attempts.

    Fatal errors and cancellation propagate immediately. The backoff sleep
    is abandoned as soon as cancel fires.
    """
    attempt = 0
    while True:
        attempt += 1
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            return await operation()
        except PipelineCancelled:
            raise
        except Exception as e:
            error = classify_error(e)
            if isinstance(error, PipelineCancelled):
                raise error from e
            if not isinstance(error, RetryableError) or attempt >= policy.max_attempts:
                if error is e:
                    raise
                raise error from e
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label}: attempt {attempt}/{policy.max_attempts} failed ({e}); "
                f"retrying in {delay:.1f}s"
            )
            await sleep_cancellable(delay, cancel)
