"""
Backoff Policy — bounded exponential retry with jitter.

Clock, sleep and randomness are injected so the policy can be exercised
without real waiting.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, TypeVar

from assessment_validator.config import Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackoffPolicy:
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        multiplier: float = 2.0,
        jitter: float = 0.0,
        rng: Optional[random.Random] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "BackoffPolicy":
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based), capped at max_delay."""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * self._rng.uniform(-1.0, 1.0)
        return max(0.0, min(delay, self.max_delay))

    def run(
        self,
        fn: Callable[[int], T],
        is_retryable: Callable[[BaseException], bool],
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    ) -> T:
        """
        Call ``fn(attempt)`` until it returns, a non-retryable error is raised,
        or attempts run out.  The last error propagates unchanged.
        """
        attempt = 1
        while True:
            try:
                return fn(attempt)
            except Exception as exc:
                if not is_retryable(exc) or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                logger.warning(
                    f"[Backoff] Attempt {attempt}/{self.max_attempts} failed: {exc} "
                    f"— retrying in {delay:.2f}s"
                )
                sleep(delay)
                attempt += 1
