"""Retry utility tests"""
import httpx
import pytest

from sharekit.core.exceptions import AuthError, TransientError, UpstreamRateLimitError
from sharekit.utils.retry import RetryPolicy, is_retryable_error, retry_async


class _Flaky:
    """Fails with the given errors in order, then returns 'ok'"""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.mark.critical
class TestRetryAsync:
    """Test linear backoff retries"""

    @pytest.mark.asyncio
    async def test_retryable_errors_are_retried_until_success(self):
        """Test two transient failures then success takes three attempts"""
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        func = _Flaky(UpstreamRateLimitError("429"), UpstreamRateLimitError("429"))
        result = await retry_async(func, policy=RetryPolicy(max_attempts=3, base_delay=1.5), sleep=fake_sleep)

        assert result == "ok"
        assert func.calls == 3
        assert sleeps == [1.5, 3.0]

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        """Test a non-retryable error surfaces after one call"""
        func = _Flaky(AuthError("401"))
        with pytest.raises(AuthError):
            await retry_async(func, policy=RetryPolicy(max_attempts=3, base_delay=0))
        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self):
        """Test the last error surfaces once attempts run out"""
        func = _Flaky(TransientError("first"), TransientError("second"), TransientError("third"))
        with pytest.raises(TransientError, match="third"):
            await retry_async(func, policy=RetryPolicy(max_attempts=3, base_delay=0))
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_on_retry_sees_each_retry(self):
        """Test on_retry is called once per retried failure"""
        seen = []
        func = _Flaky(TransientError("a"))
        await retry_async(
            func,
            policy=RetryPolicy(max_attempts=3, base_delay=0),
            on_retry=lambda attempt, exc: seen.append((attempt, str(exc))),
        )
        assert seen == [(1, "a")]

    @pytest.mark.asyncio
    async def test_custom_classifier_is_used(self):
        """Test a caller-supplied predicate overrides the default"""
        func = _Flaky(ValueError("boom"))
        result = await retry_async(
            func,
            policy=RetryPolicy(max_attempts=2, base_delay=0),
            is_retryable=lambda exc: isinstance(exc, ValueError),
        )
        assert result == "ok"


@pytest.mark.medium
class TestClassifier:
    """Test default retry classification"""

    def test_transport_errors_are_retryable(self):
        """Test raw httpx transport failures are retried"""
        assert is_retryable_error(httpx.ConnectError("refused"))

    def test_flagged_errors(self):
        """Test the retryable flag on the error taxonomy"""
        assert is_retryable_error(TransientError("x"))
        assert is_retryable_error(UpstreamRateLimitError("x"))
        assert not is_retryable_error(AuthError("x"))
        assert not is_retryable_error(ValueError("x"))

    def test_policy_rejects_zero_attempts(self):
        """Test RetryPolicy needs at least one attempt"""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
