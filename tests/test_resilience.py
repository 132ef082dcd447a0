"""Tests for the remote retry policy."""

from datetime import UTC, datetime, timedelta

import pytest

from tildeplayer_storage.exceptions import (
    ForbiddenError,
    NetworkError,
    RateLimitedError,
    UnauthorizedError,
)
from tildeplayer_storage.resilience import NO_RETRY, RetryPolicy, retry_with_policy


class Flaky:
    """Async callable failing with the given errors before succeeding."""

    def __init__(self, *errors: Exception, result: str = "ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestRetryPolicy:
    """Tests for RetryPolicy.delay_for."""

    def test_exponential_backoff(self) -> None:
        policy = RetryPolicy(max_attempts=5, backoff_base=1.0, backoff_multiplier=2.0)
        delays = [policy.delay_for(NetworkError("x"), a) for a in range(4)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_backoff_capped(self) -> None:
        policy = RetryPolicy(max_attempts=10, backoff_base=10.0, backoff_max=15.0)
        assert policy.delay_for(NetworkError("x"), 3) == 15.0

    def test_gives_up_after_max_attempts(self) -> None:
        policy = RetryPolicy(max_attempts=2)
        assert policy.delay_for(NetworkError("x"), 1) is None

    @pytest.mark.parametrize("error", [UnauthorizedError("x"), ForbiddenError("x")])
    def test_credential_failures_not_retried(self, error) -> None:
        assert RetryPolicy().delay_for(error, 0) is None

    def test_rate_limit_waits_for_reset(self) -> None:
        """Test that a near reset is waited for."""
        reset = datetime.now(UTC) + timedelta(seconds=30)
        delay = RetryPolicy().delay_for(RateLimitedError("limit", reset_at=reset), 0)
        assert delay is not None
        assert 25 <= delay <= 30

    def test_rate_limit_far_reset_gives_up(self) -> None:
        """Test that a reset beyond the cap is not waited for."""
        reset = datetime.now(UTC) + timedelta(hours=1)
        assert RetryPolicy(backoff_max=60).delay_for(RateLimitedError("limit", reset_at=reset), 0) is None

    def test_no_retry_policy(self) -> None:
        assert NO_RETRY.delay_for(NetworkError("x"), 0) is None


class TestRetryWithPolicy:
    """Tests for retry_with_policy."""

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, no_sleep: list[float]) -> None:
        fn = Flaky(NetworkError("reset"))
        result = await retry_with_policy(fn, policy=RetryPolicy(max_attempts=3, backoff_base=0.5))

        assert result == "ok"
        assert fn.calls == 2
        assert no_sleep == [0.5]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self, no_sleep: list[float]) -> None:
        fn = Flaky(NetworkError("one"), NetworkError("two"), NetworkError("three"))
        with pytest.raises(NetworkError, match="three"):
            await retry_with_policy(fn, policy=RetryPolicy(max_attempts=3))
        assert fn.calls == 3
        assert len(no_sleep) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self, no_sleep: list[float]) -> None:
        fn = Flaky(UnauthorizedError("bad token"))
        with pytest.raises(UnauthorizedError):
            await retry_with_policy(fn)
        assert fn.calls == 1
        assert no_sleep == []

    @pytest.mark.asyncio
    async def test_passes_arguments(self) -> None:
        async def add(a, b, scale=1):
            return (a + b) * scale

        assert await retry_with_policy(add, 1, 2, scale=3) == 9
