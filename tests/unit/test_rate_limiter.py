"""
Unit tests for AdaptiveRateLimiter module.

Run with: pytest tests/unit/test_rate_limiter.py -v
"""

import pytest

from imagecat.core.rate_limiter import AdaptiveRateLimiter, RateLimitConfig


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def quiet_config(**overrides) -> RateLimitConfig:
    """Config without jitter so delays are deterministic"""
    values = dict(base_delay=1.0, min_delay=1.0, max_delay=8.0, jitter_range=0.0)
    values.update(overrides)
    return RateLimitConfig(**values)


class TestAdaptiveRateLimiter:
    """Test suite for AdaptiveRateLimiter class"""

    def test_initialization_with_defaults(self):
        """Test rate limiter initializes with default config"""
        limiter = AdaptiveRateLimiter()

        assert limiter.current_delay == 0.5
        assert limiter.error_count == 0
        assert limiter.success_count == 0
        assert limiter.request_count == 0
        assert limiter.last_request_time is None

    def test_initialization_with_custom_config(self):
        """Test rate limiter initializes with custom config"""
        limiter = AdaptiveRateLimiter(config=quiet_config(base_delay=2.0, max_delay=15.0))

        assert limiter.current_delay == 2.0
        assert limiter.config.max_delay == 15.0

    def test_first_request_is_not_delayed(self):
        """Test next_delay() is zero before any request went out"""
        limiter = AdaptiveRateLimiter(config=quiet_config(), clock=FakeClock())

        assert limiter.next_delay() == 0.0

    @pytest.mark.asyncio
    async def test_wait_records_request(self):
        """Test wait() increments request count and stamps the clock"""
        clock = FakeClock(42.0)
        limiter = AdaptiveRateLimiter(config=quiet_config(), clock=clock)

        await limiter.wait()

        assert limiter.request_count == 1
        assert limiter.last_request_time == 42.0

    @pytest.mark.asyncio
    async def test_next_delay_subtracts_elapsed_time(self):
        """Test the gap shrinks by the time already spent"""
        clock = FakeClock()
        limiter = AdaptiveRateLimiter(config=quiet_config(), clock=clock)
        await limiter.wait()

        clock.now += 0.25
        assert limiter.next_delay() == pytest.approx(0.75)

        clock.now += 5.0
        assert limiter.next_delay() == 0.0

    def test_on_success_resets_error_count(self):
        """Test on_success() resets error count"""
        limiter = AdaptiveRateLimiter(config=quiet_config())
        limiter.error_count = 3

        limiter.on_success()

        assert limiter.error_count == 0
        assert limiter.success_count == 1

    def test_speedup_never_goes_below_base_delay(self):
        """Test a success streak narrows the gap down to base_delay only"""
        limiter = AdaptiveRateLimiter(config=quiet_config(speedup_threshold=2))
        limiter.current_delay = 4.0

        limiter.on_success()
        assert limiter.current_delay == 4.0

        limiter.on_success()
        assert limiter.current_delay == pytest.approx(3.2)

        for _ in range(50):
            limiter.on_success()
        assert limiter.current_delay == 1.0

    def test_on_error_429_doubles_delay(self):
        """Test 429 slows down by the 429 factor"""
        limiter = AdaptiveRateLimiter(config=quiet_config())

        limiter.on_error(status_code=429)

        assert limiter.current_delay == 2.0
        assert limiter.error_count == 1
        assert limiter.success_count == 0

    def test_on_error_5xx_and_connection_failures(self):
        """Test 5xx and connection errors slow down by the 5xx factor"""
        limiter = AdaptiveRateLimiter(config=quiet_config())

        limiter.on_error(status_code=503)
        assert limiter.current_delay == 1.5

        limiter.on_error(None)
        assert limiter.current_delay == pytest.approx(2.25)

    def test_on_error_ignores_client_errors(self):
        """Test a 404 is counted but does not change the gap"""
        limiter = AdaptiveRateLimiter(config=quiet_config())

        limiter.on_error(status_code=404)

        assert limiter.current_delay == 1.0
        assert limiter.error_count == 1

    def test_delay_is_capped_at_max(self):
        """Test repeated slowdowns stop at max_delay"""
        limiter = AdaptiveRateLimiter(config=quiet_config())

        for _ in range(10):
            limiter.on_error(status_code=429)

        assert limiter.current_delay == 8.0

    def test_zero_base_delay_still_backs_off(self):
        """Test a zero delay grows on error instead of staying at zero"""
        limiter = AdaptiveRateLimiter(config=quiet_config(base_delay=0.0, min_delay=0.0))

        limiter.on_error(status_code=500)

        assert limiter.current_delay > 0

    @pytest.mark.asyncio
    async def test_reset(self):
        """Test reset() restores the initial state"""
        limiter = AdaptiveRateLimiter(config=quiet_config(), clock=FakeClock())
        await limiter.wait()
        limiter.on_error(status_code=429)

        limiter.reset()

        assert limiter.current_delay == 1.0
        assert limiter.error_count == 0
        assert limiter.request_count == 0
        assert limiter.last_request_time is None

    def test_get_stats(self):
        """Test get_stats() returns current state"""
        limiter = AdaptiveRateLimiter(config=quiet_config())
        limiter.on_success()

        stats = limiter.get_stats()

        assert stats["current_delay"] == "1.00s"
        assert stats["success_count"] == 1
        assert stats["error_count"] == 0
        assert stats["request_count"] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
