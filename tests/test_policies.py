"""Tests for the retry policy, circuit breaker, rate limiter and TTL cache."""

import threading

import pytest
from conftest import FakeClock

from az_marketplace.azure_api import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    RateLimitConfig,
    RetryConfig,
    RetryPolicy,
    SlidingWindowRateLimiter,
    TTLCache,
)
from az_marketplace.errors import (
    AuthenticationError,
    NetworkError,
    RateLimitError,
    ServerError,
    ServiceUnavailableError,
    ValidationError,
)


class Flaky:
    """Raise the queued errors in order, then return *result*."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    def _policy(self, **kwargs):
        sleeps: list[float] = []
        policy = RetryPolicy(RetryConfig(**kwargs), sleep=sleeps.append, rand=lambda: 0.0)
        return policy, sleeps

    def test_success_first_try(self):
        policy, sleeps = self._policy()
        op = Flaky([])
        assert policy.call(op) == "ok"
        assert op.calls == 1
        assert sleeps == []

    def test_retries_retryable_then_succeeds(self):
        policy, sleeps = self._policy()
        op = Flaky([NetworkError("a"), ServerError("b")])
        assert policy.call(op) == "ok"
        assert op.calls == 3
        assert sleeps == [1.0, 2.0]

    def test_attempts_bounded_by_max_retries(self):
        policy, sleeps = self._policy(max_retries=2)
        op = Flaky([NetworkError(str(i)) for i in range(10)])
        with pytest.raises(NetworkError):
            policy.call(op)
        assert op.calls == 3
        assert len(sleeps) == 2

    def test_zero_retries_means_one_attempt(self):
        policy, _ = self._policy(max_retries=0)
        op = Flaky([ServerError("x")])
        with pytest.raises(ServerError):
            policy.call(op)
        assert op.calls == 1

    @pytest.mark.parametrize(
        "error", [AuthenticationError("x"), ValidationError("x")], ids=["auth", "validation"]
    )
    def test_non_retryable_raised_immediately(self, error):
        policy, sleeps = self._policy()
        op = Flaky([error])
        with pytest.raises(type(error)):
            policy.call(op)
        assert op.calls == 1
        assert sleeps == []

    def test_unclassified_exceptions_are_classified(self):
        policy, _ = self._policy(max_retries=0)
        with pytest.raises(ServerError):
            policy.call(Flaky([RuntimeError("boom")]))

    def test_delay_capped(self):
        policy, _ = self._policy(base_delay=10.0, max_delay=15.0)
        assert policy.compute_delay(3, NetworkError("x")) == 15.0

    def test_retry_after_raises_floor_then_cap_applies(self):
        policy, _ = self._policy(max_delay=30.0)
        assert policy.compute_delay(0, RateLimitError("x", retry_after=7)) == 7.0
        assert policy.compute_delay(0, RateLimitError("x", retry_after=120)) == 30.0

    def test_jitter_added_within_bound(self):
        policy = RetryPolicy(RetryConfig(max_jitter=1.0), rand=lambda: 0.5)
        assert policy.compute_delay(0, NetworkError("x")) == pytest.approx(1.5)

    def test_retryable_codes_restrict_retries(self):
        policy, _ = self._policy(retryable_codes=frozenset({"NETWORK_ERROR"}))
        op = Flaky([ServerError("x")])
        with pytest.raises(ServerError):
            policy.call(op)
        assert op.calls == 1


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


class TestCircuitBreaker:
    def _breaker(self, clock, threshold=3, timeout=60.0):
        return CircuitBreaker(
            CircuitBreakerConfig(failure_threshold=threshold, reset_timeout=timeout),
            clock=clock,
        )

    def _fail(self, breaker, times=1):
        for _ in range(times):
            with pytest.raises(ServerError):
                breaker.execute(Flaky([ServerError("x")]))

    def test_opens_after_threshold(self, clock):
        breaker = self._breaker(clock)
        self._fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        self._fail(breaker)
        assert breaker.state == CircuitState.OPEN
        assert breaker.failure_count == 3

    def test_open_fails_fast_without_calling(self, clock):
        breaker = self._breaker(clock, threshold=1)
        self._fail(breaker)
        op = Flaky([])
        with pytest.raises(ServiceUnavailableError, match="Circuit breaker is open"):
            breaker.execute(op)
        assert op.calls == 0

    def test_half_open_trial_success_closes(self, clock):
        breaker = self._breaker(clock, threshold=1, timeout=60.0)
        self._fail(breaker)
        clock.advance(60.0)
        assert breaker.execute(Flaky([])) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_trial_failure_reopens(self, clock):
        breaker = self._breaker(clock, threshold=2, timeout=10.0)
        self._fail(breaker, 2)
        clock.advance(10.0)
        self._fail(breaker)
        assert breaker.state == CircuitState.OPEN
        with pytest.raises(ServiceUnavailableError):
            breaker.execute(Flaky([]))

    def test_half_open_admits_a_single_trial_call(self, clock):
        breaker = self._breaker(clock, threshold=1, timeout=60.0)
        self._fail(breaker)
        clock.advance(60.0)

        entered = threading.Event()
        release = threading.Event()
        results = []

        def _slow():
            entered.set()
            release.wait(5)
            return "recovered"

        worker = threading.Thread(target=lambda: results.append(breaker.execute(_slow)))
        worker.start()
        assert entered.wait(5)
        assert breaker.state == CircuitState.HALF_OPEN

        for _ in range(2):
            op = Flaky([])
            with pytest.raises(ServiceUnavailableError, match="trial request in progress"):
                breaker.execute(op)
            assert op.calls == 0

        release.set()
        worker.join(5)
        assert results == ["recovered"]
        assert breaker.state == CircuitState.CLOSED
        assert breaker.execute(Flaky([])) == "ok"

    def test_failed_trial_lets_next_cooldown_try_again(self, clock):
        breaker = self._breaker(clock, threshold=1, timeout=10.0)
        self._fail(breaker)
        clock.advance(10.0)
        self._fail(breaker)
        clock.advance(10.0)
        assert breaker.execute(Flaky([])) == "ok"
        assert breaker.state == CircuitState.CLOSED

    def test_success_resets_count(self, clock):
        breaker = self._breaker(clock)
        self._fail(breaker, 2)
        breaker.execute(Flaky([]))
        assert breaker.failure_count == 0

    def test_reset_and_status(self, clock):
        breaker = self._breaker(clock, threshold=1, timeout=30.0)
        self._fail(breaker)
        clock.advance(10.0)
        status = breaker.status()
        assert status["state"] == "OPEN"
        assert status["time_until_reset"] == pytest.approx(20.0)
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.status()["time_until_reset"] is None


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------


class TestSlidingWindowRateLimiter:
    def test_under_limit_never_sleeps(self, clock):
        limiter = SlidingWindowRateLimiter(
            RateLimitConfig(max_requests_per_minute=3), clock=clock, sleep=clock.sleep
        )
        for _ in range(3):
            limiter.acquire()
        assert clock.sleeps == []
        assert limiter.in_window == 3

    def test_over_limit_waits_for_oldest_to_leave(self, clock):
        limiter = SlidingWindowRateLimiter(
            RateLimitConfig(max_requests_per_minute=2, request_window=60.0),
            clock=clock,
            sleep=clock.sleep,
        )
        limiter.acquire()
        clock.advance(15.0)
        limiter.acquire()
        limiter.acquire()
        assert clock.sleeps == [45.0]
        assert limiter.in_window == 2

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(
            RateLimitConfig(max_requests_per_minute=1), clock=clock, sleep=clock.sleep
        )
        limiter.acquire()
        clock.advance(61.0)
        limiter.acquire()
        assert clock.sleeps == []


# ---------------------------------------------------------------------------
# TTL cache
# ---------------------------------------------------------------------------


class TestTTLCache:
    def test_hit_within_ttl(self, clock):
        cache = TTLCache(clock)
        cache.set("sub-eastus", [1], ttl=300)
        clock.advance(300)
        assert cache.get("sub-eastus") == [1]

    def test_expired_entry_evicted_on_read(self, clock):
        cache = TTLCache(clock)
        cache.set("sub-eastus", [1], ttl=300)
        clock.advance(300.5)
        assert cache.get("sub-eastus") is None
        assert "sub-eastus" not in cache

    def test_clear_prefix(self, clock):
        cache = TTLCache(clock)
        cache.set("sub1-eastus", 1, 60)
        cache.set("sub1-Canonical-eastus", 2, 60)
        cache.set("sub2-eastus", 3, 60)
        assert cache.clear_prefix("sub1") == 2
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0
