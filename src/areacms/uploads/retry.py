"""Reusable retry policy for blob writes."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from areacms.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff and a per-attempt timeout.

    The wait before attempt ``n + 1`` is ``base_delay * multiplier ** (n - 1)``,
    capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    attempt_timeout: Optional[float] = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.STORAGE_RETRY_ATTEMPTS,
            base_delay=settings.STORAGE_RETRY_BASE_DELAY_SECONDS,
            multiplier=settings.STORAGE_RETRY_MULTIPLIER,
            max_delay=settings.STORAGE_RETRY_MAX_DELAY_SECONDS,
            attempt_timeout=settings.UPLOAD_TIMEOUT_SECONDS,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay, exp_base=self.multiplier, max=self.max_delay
            ),
            retry=retry_if_exception_type(Exception),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` until it succeeds or attempts are exhausted.

        A timed-out attempt counts as a failed attempt. The last error is
        re-raised unchanged.
        """
        async for attempt in self.retrying():
            with attempt:
                if self.attempt_timeout is None:
                    return await operation()
                return await asyncio.wait_for(operation(), timeout=self.attempt_timeout)
        raise AssertionError("unreachable")  # pragma: no cover
