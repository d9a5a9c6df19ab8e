"""Rate limiter tests"""
import pytest

from sharekit.core.exceptions import InputValidationError, RateLimitExceededError
from sharekit.services.rate_limiter import DEFAULT_LIMITS, RateLimiter


@pytest.fixture
def limiter(fake_redis):
    """Limiter with small limits and a 15 minute window"""
    return RateLimiter(fake_redis, limits={"upload": 3, "post": 5}, window=900)


@pytest.mark.critical
class TestCheckAndConsume:
    """Test fixed-window counting"""

    @pytest.mark.asyncio
    async def test_limit_calls_succeed_then_next_is_rejected(self, limiter):
        """Test exactly `limit` calls pass and the next one raises"""
        for expected in range(1, 4):
            assert await limiter.check_and_consume("upload", "wallet123") == expected

        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.check_and_consume("upload", "wallet123")
        assert exc_info.value.operation == "upload"
        assert await limiter.remaining("upload", "wallet123") == 0

    @pytest.mark.asyncio
    async def test_rejected_call_still_counts(self, limiter, fake_redis):
        """Test the increment is not rolled back on rejection"""
        for _ in range(3):
            await limiter.check_and_consume("upload", "w")
        with pytest.raises(RateLimitExceededError):
            await limiter.check_and_consume("upload", "w")
        assert await fake_redis.get("ratelimit:upload:w") == "4"

    @pytest.mark.asyncio
    async def test_window_expiry_set_on_first_increment(self, limiter, fake_redis):
        """Test the counter key expires with the window"""
        await limiter.check_and_consume("post", "w")
        ttl = await fake_redis.ttl("ratelimit:post:w")
        assert 890 <= ttl <= 900
        assert 890 <= await limiter.ttl("post", "w") <= 900

    @pytest.mark.asyncio
    async def test_later_increments_do_not_extend_window(self, limiter, fake_redis):
        """Test only the first increment sets the expiry"""
        await limiter.check_and_consume("post", "w")
        await fake_redis.expire("ratelimit:post:w", 100)
        await limiter.check_and_consume("post", "w")
        assert await fake_redis.ttl("ratelimit:post:w") <= 100

    @pytest.mark.asyncio
    async def test_operations_and_subjects_are_independent(self, limiter):
        """Test counters are keyed by (operation, subject)"""
        for _ in range(3):
            await limiter.check_and_consume("upload", "a")
        assert await limiter.check_and_consume("upload", "b") == 1
        assert await limiter.check_and_consume("post", "a") == 1

    @pytest.mark.asyncio
    async def test_unknown_operation_is_rejected(self, limiter):
        """Test an unconfigured operation is a validation error"""
        with pytest.raises(InputValidationError):
            await limiter.check_and_consume("delete", "a")


@pytest.mark.high
class TestRemainingAndReset:
    """Test remaining allowance and reset"""

    @pytest.mark.asyncio
    async def test_remaining_without_counter_is_full_limit(self, limiter):
        """Test remaining() with no counter returns the limit"""
        assert await limiter.remaining("post", "new") == 5

    @pytest.mark.asyncio
    async def test_remaining_decreases(self, limiter):
        """Test remaining() is limit - count"""
        await limiter.check_and_consume("post", "w")
        await limiter.check_and_consume("post", "w")
        assert await limiter.remaining("post", "w") == 3

    @pytest.mark.asyncio
    async def test_reset_clears_all_operations_for_subject(self, limiter):
        """Test reset() clears every counter for one subject only"""
        await limiter.check_and_consume("upload", "w")
        await limiter.check_and_consume("post", "w")
        await limiter.check_and_consume("post", "other")

        await limiter.reset("w")

        assert await limiter.remaining("upload", "w") == 3
        assert await limiter.remaining("post", "w") == 5
        assert await limiter.remaining("post", "other") == 4
        assert await limiter.ttl("upload", "w") is None

    @pytest.mark.asyncio
    async def test_default_limits(self, fake_redis):
        """Test the defaults are 30 uploads and 50 posts per window"""
        assert DEFAULT_LIMITS == {"upload": 30, "post": 50}
        assert RateLimiter(fake_redis).limit_for("post") == 50
