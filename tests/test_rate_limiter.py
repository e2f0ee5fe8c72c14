from datetime import timedelta

import pytest

from walletshield.models.rate_limit import RateLimitCounter
from walletshield.services.rate_limiter import RateLimiter, window_start
from tests.support import NOON


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestWindows:
    def test_window_start(self):
        moment = NOON.replace(minute=7, second=42, microsecond=5)
        assert window_start("minute", moment) == NOON.replace(minute=7)
        assert window_start("day", moment) == NOON.replace(hour=0)

    def test_unknown_window(self):
        with pytest.raises(ValueError):
            window_start("fortnight", NOON)


class TestRateLimiter:
    """Shared fixed-window budget for outbound AI calls"""

    def test_minute_budget(self, session_factory):
        clock = Clock(NOON)
        limiter = RateLimiter(session_factory, per_minute=3, per_day=100, clock=clock)
        assert [limiter.try_acquire() for _ in range(4)] == [True, True, True, False]

        clock.now = NOON + timedelta(minutes=1)
        assert limiter.try_acquire() is True

    def test_day_budget_spans_minutes(self, session_factory):
        clock = Clock(NOON)
        limiter = RateLimiter(session_factory, per_minute=10, per_day=2, clock=clock)
        assert limiter.try_acquire() is True
        clock.now = NOON + timedelta(minutes=5)
        assert limiter.try_acquire() is True
        clock.now = NOON + timedelta(minutes=10)
        assert limiter.try_acquire() is False

        clock.now = NOON + timedelta(days=1)
        assert limiter.try_acquire() is True

    def test_rejected_call_consumes_nothing(self, session_factory, db):
        clock = Clock(NOON)
        limiter = RateLimiter(session_factory, per_minute=1, per_day=5, clock=clock)
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False
        assert limiter.try_acquire() is False

        day = db.query(RateLimitCounter).filter(RateLimitCounter.window == "day").one()
        assert day.count == 1

    def test_limiters_share_the_counter(self, session_factory):
        clock = Clock(NOON)
        first = RateLimiter(session_factory, per_minute=2, per_day=100, clock=clock)
        second = RateLimiter(session_factory, per_minute=2, per_day=100, clock=clock)
        assert first.try_acquire() is True
        assert second.try_acquire() is True
        assert first.try_acquire() is False

    def test_keys_are_independent(self, session_factory):
        clock = Clock(NOON)
        ai = RateLimiter(session_factory, key="ai", per_minute=1, per_day=10, clock=clock)
        other = RateLimiter(session_factory, key="other", per_minute=1, per_day=10, clock=clock)
        assert ai.try_acquire() is True
        assert other.try_acquire() is True

    def test_status(self, session_factory):
        clock = Clock(NOON)
        limiter = RateLimiter(session_factory, per_minute=5, per_day=50, clock=clock)
        limiter.try_acquire()
        limiter.try_acquire()
        status = limiter.status()
        assert status["minute"] == {"limit": 5, "used": 2, "remaining": 3}
        assert status["day"]["used"] == 2

        clock.now = NOON + timedelta(minutes=2)
        assert limiter.status()["minute"]["used"] == 0
