"""
Rate Limiter — minimum spacing between model calls, shared by every run in
the process so that concurrent runs cannot jointly exceed the provider quota.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from assessment_validator.config import Settings, get_settings
from assessment_validator.models.enums import ApiTier

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Grants permits no closer together than ``min_interval`` seconds.

    The lock is held while sleeping, so waiting callers queue up and each
    grant is spaced from the previous one regardless of which thread asked.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_grant: Optional[float] = None
        self.grants = 0

    def acquire(self) -> float:
        """Block until a permit is available; returns the seconds waited."""
        with self._lock:
            waited = 0.0
            now = self._clock()
            if self._last_grant is not None:
                wait = self._last_grant + self.min_interval - now
                if wait > 0:
                    logger.debug(f"[RateLimit] Waiting {wait:.2f}s")
                    self._sleep(wait)
                    waited = wait
                    now = self._clock()
            self._last_grant = now
            self.grants += 1
            return waited

    @classmethod
    def for_tier(
        cls, tier: str | ApiTier, settings: Optional[Settings] = None, **kwargs
    ) -> "RateLimiter":
        settings = settings or get_settings()
        tier = ApiTier(str(getattr(tier, "value", tier)).lower())
        delay = (
            settings.rate_limit_paid_delay
            if tier == ApiTier.PAID
            else settings.rate_limit_free_delay
        )
        return cls(delay, **kwargs)


_limiter_instance: Optional[RateLimiter] = None
_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter sized by the configured API tier (singleton)."""
    global _limiter_instance
    with _limiter_lock:
        if _limiter_instance is None:
            settings = get_settings()
            _limiter_instance = RateLimiter.for_tier(settings.api_tier, settings)
            logger.info(
                f"[RateLimit] {settings.api_tier} tier: "
                f"{_limiter_instance.min_interval:.2f}s between calls"
            )
        return _limiter_instance


def reset_rate_limiter() -> None:
    """Drop the singleton (settings changes, tests)."""
    global _limiter_instance
    with _limiter_lock:
        _limiter_instance = None
