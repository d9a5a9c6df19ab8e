"""Fixed-window rate limiting per (operation, subject) backed by Redis"""
import logging
from typing import Dict, Optional

from sharekit.core.exceptions import InputValidationError, RateLimitExceededError
from sharekit.core.metrics import rate_limit_rejections_counter
from sharekit.db.redis import get_rate_limit_count, increment_rate_limit, rate_limit_key

logger = logging.getLogger(__name__)

DEFAULT_LIMITS = {"upload": 30, "post": 50}
DEFAULT_WINDOW = 15 * 60  # seconds


class RateLimiter:
    """Counts operations in expiring windows under ratelimit:{operation}:{subject}

    Counters are incremented atomically together with their expiry and are
    never decremented; a rejected call still counts against the window.
    """

    def __init__(self, redis_client, limits: Optional[Dict[str, int]] = None, window: int = DEFAULT_WINDOW):
        self._redis = redis_client
        self._limits = dict(limits or DEFAULT_LIMITS)
        self._window = window

    def limit_for(self, operation: str) -> int:
        try:
            return self._limits[operation]
        except KeyError:
            raise InputValidationError(f"Unknown rate-limited operation: {operation}")

    async def check_and_consume(self, operation: str, subject_id: str) -> int:
        """Count one operation; raises RateLimitExceededError once the window's limit is passed

        Returns:
            The post-increment count
        """
        limit = self.limit_for(operation)
        count = await increment_rate_limit(self._redis, rate_limit_key(operation, subject_id), self._window)
        if count > limit:
            rate_limit_rejections_counter.labels(operation=operation).inc()
            logger.warning(f"Rate limit exceeded for {operation} by {subject_id} ({count}/{limit})")
            raise RateLimitExceededError(operation, limit)
        return count

    async def remaining(self, operation: str, subject_id: str) -> int:
        limit = self.limit_for(operation)
        count = await get_rate_limit_count(self._redis, rate_limit_key(operation, subject_id))
        return max(0, limit - count)

    async def reset(self, subject_id: str) -> None:
        """Clear every operation counter for a subject"""
        keys = [rate_limit_key(operation, subject_id) for operation in self._limits]
        if keys:
            await self._redis.delete(*keys)

    async def ttl(self, operation: str, subject_id: str) -> Optional[int]:
        """Seconds until the current window resets, or None without a counter"""
        self.limit_for(operation)
        seconds = await self._redis.ttl(rate_limit_key(operation, subject_id))
        return seconds if seconds is not None and seconds >= 0 else None
