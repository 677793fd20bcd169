"""
Adaptive Rate Limiter - Spacing between sequential directory page requests.

Batches fetch pages one after another. The limiter keeps a minimum gap
between two requests, widens the gap when the upstream answers 429 or 5xx,
and narrows it back towards the base delay after a streak of successes.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog


@dataclass
class RateLimitConfig:
    """Configuration for rate limiter"""
    base_delay: float = 0.5  # Gap between requests (seconds)
    min_delay: float = 0.5   # Never go below this
    max_delay: float = 10.0  # Never go above this
    jitter_range: float = 0.1  # Random jitter (+/- seconds)
    speedup_threshold: int = 5  # Successes before narrowing the gap
    speedup_factor: float = 0.8
    slowdown_factor_429: float = 2.0
    slowdown_factor_5xx: float = 1.5


class AdaptiveRateLimiter:
    """
    Keeps a polite, adaptive gap between upstream requests.

    Example:
        >>> limiter = AdaptiveRateLimiter()
        >>> await limiter.wait()  # Returns immediately for the first request
        >>> limiter.on_success()
        >>> limiter.on_error(status_code=503)
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            config: Rate limit configuration (uses defaults if None)
            clock: Monotonic clock, injectable for tests
        """
        self.config = config or RateLimitConfig()
        self.current_delay = self.config.base_delay
        self.error_count = 0
        self.success_count = 0
        self.request_count = 0
        self.last_request_time: Optional[float] = None
        self._clock = clock

        self.logger = structlog.get_logger(__name__)

    def next_delay(self) -> float:
        """Seconds to sleep before the next request may go out"""
        if self.last_request_time is None:
            return 0.0

        jitter = random.uniform(-self.config.jitter_range, self.config.jitter_range)
        gap = max(self.config.min_delay, min(self.config.max_delay, self.current_delay + jitter))
        elapsed = self._clock() - self.last_request_time
        return max(0.0, gap - elapsed)

    async def wait(self):
        """Sleep until the next request is allowed, then record it"""
        delay = self.next_delay()
        if delay > 0:
            self.logger.debug(
                "rate_limit_wait",
                delay=f"{delay:.2f}s",
                current_delay=f"{self.current_delay:.2f}s",
            )
            await asyncio.sleep(delay)

        self.last_request_time = self._clock()
        self.request_count += 1

    def on_success(self):
        """Record a successful request; narrow the gap after a streak"""
        self.success_count += 1
        self.error_count = 0

        if self.success_count >= self.config.speedup_threshold:
            old_delay = self.current_delay
            self.current_delay = max(
                self.config.base_delay,
                self.current_delay * self.config.speedup_factor,
            )
            if old_delay != self.current_delay:
                self.logger.info(
                    "rate_limit_speedup",
                    old_delay=f"{old_delay:.2f}s",
                    new_delay=f"{self.current_delay:.2f}s",
                )

    def on_error(self, status_code: Optional[int] = None):
        """
        Record a failed request and widen the gap.

        Args:
            status_code: HTTP status, None for connection errors and timeouts
        """
        self.error_count += 1
        self.success_count = 0
        old_delay = self.current_delay

        if status_code == 429:
            self.current_delay *= self.config.slowdown_factor_429
        elif status_code is None or status_code >= 500:
            self.current_delay *= self.config.slowdown_factor_5xx
        else:
            return

        # A zero base delay would never grow
        self.current_delay = min(
            self.config.max_delay,
            max(self.current_delay, self.config.min_delay or 0.1),
        )
        self.logger.warning(
            "rate_limit_slowdown",
            status_code=status_code,
            old_delay=f"{old_delay:.2f}s",
            new_delay=f"{self.current_delay:.2f}s",
        )

    def reset(self):
        """Reset the rate limiter to initial state"""
        self.current_delay = self.config.base_delay
        self.error_count = 0
        self.success_count = 0
        self.request_count = 0
        self.last_request_time = None

    def get_stats(self) -> dict:
        return {
            "current_delay": f"{self.current_delay:.2f}s",
            "error_count": self.error_count,
            "success_count": self.success_count,
            "request_count": self.request_count,
        }
