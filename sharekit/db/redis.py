"""Redis client and key helpers for tokens, PKCE state and rate limits"""
import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis

from sharekit.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_async_client = None

# Key prefixes
TOKENS_PREFIX = "tokens"
PKCE_PREFIX = "pkce"
RATE_LIMIT_PREFIX = "ratelimit"
BROWSER_SESSION_PREFIX = "session"

# Sorted set of outstanding OAuth states scored by creation time (epoch seconds)
PKCE_PENDING_KEY = "pkce_pending"

# Lua script: increment counter, set TTL if key is new (count == 1), return count
_INCREMENT_WITH_EXPIRY = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""


def get_async_redis_client(url: Optional[str] = None):
    """Get or create async Redis client (lazy initialization)

    Automatically recreates the client if it's tied to a different event loop,
    which can happen when tests create new event loops.
    """
    global _async_client

    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        current_loop = None

    if _async_client is not None and current_loop is not None:
        client_loop = getattr(_async_client.connection_pool, '_loop', None)
        if client_loop is not None and client_loop is not current_loop:
            # Loop mismatch detected! Clear the stale client.
            _async_client = None

    if _async_client is None:
        _async_client = aioredis.from_url(
            url or settings.REDIS_URL,
            decode_responses=True,
            max_connections=20
        )
        _async_client.connection_pool._loop = current_loop

    return _async_client


def token_key(user_id: str) -> str:
    return f"{TOKENS_PREFIX}:{user_id}"


def pkce_key(state: str) -> str:
    return f"{PKCE_PREFIX}:{state}"


def rate_limit_key(operation: str, subject_id: str) -> str:
    return f"{RATE_LIMIT_PREFIX}:{operation}:{subject_id}"


def browser_session_key(session_id: str) -> str:
    return f"{BROWSER_SESSION_PREFIX}:{session_id}"


async def increment_rate_limit(client, key: str, window: int) -> int:
    """Increment rate limit counter and return current count.
    Uses Lua script to atomically increment and set TTL only for new keys (fixed window rate limiting)."""
    count = await client.eval(_INCREMENT_WITH_EXPIRY, 1, key, window)
    return int(count)


async def get_rate_limit_count(client, key: str) -> int:
    """Get current rate limit count"""
    count = await client.get(key)
    return int(count) if count else 0


async def scan_keys(client, prefix: str):
    """Collect all keys under a prefix (SCAN, never KEYS)"""
    keys = []
    async for key in client.scan_iter(match=f"{prefix}:*", count=100):
        keys.append(key)
    return keys
