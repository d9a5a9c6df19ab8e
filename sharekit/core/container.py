"""Wiring of the X integration services

Every service is an explicit object with injected collaborators; the
container only builds them once and hands them out.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from sharekit.core.config import Settings
from sharekit.core.exceptions import InvalidKeyError
from sharekit.core.security import BrowserSessionStore
from sharekit.services.event_service import EventBus, attach_redis_relay
from sharekit.services.oauth_service import XOAuthService
from sharekit.services.platforms.x_api import XApiClient
from sharekit.services.rate_limiter import RateLimiter
from sharekit.services.session_manager import SessionManager
from sharekit.services.share_service import SharePipeline
from sharekit.services.token_storage import TokenStorage
from sharekit.utils.encryption import EnvelopeCipher, key_from_hex
from sharekit.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    redis: object
    http: httpx.AsyncClient
    events: EventBus
    token_storage: TokenStorage
    rate_limiter: RateLimiter
    oauth: XOAuthService
    sessions: SessionManager
    share: SharePipeline
    browser_sessions: BrowserSessionStore

    async def aclose(self) -> None:
        await self.sessions.close()
        await self.events.drain()
        await self.http.aclose()


def build_container(
    settings: Settings,
    redis_client,
    http_client: Optional[httpx.AsyncClient] = None,
    event_bus: Optional[EventBus] = None,
    relay_events: bool = True,
) -> ServiceContainer:
    """Build every service from settings and a Redis client

    Raises:
        InvalidKeyError: If ENCRYPTION_KEY is missing or not a 32-byte hex key
    """
    if not settings.ENCRYPTION_KEY:
        raise InvalidKeyError(
            "ENCRYPTION_KEY environment variable is required. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    cipher = EnvelopeCipher(key_from_hex(settings.ENCRYPTION_KEY))

    http = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)
    events = event_bus or EventBus()
    if relay_events:
        attach_redis_relay(events, redis_client)

    retry_policy = RetryPolicy(max_attempts=settings.RETRY_MAX_ATTEMPTS, base_delay=settings.RETRY_BASE_DELAY)
    token_storage = TokenStorage(redis_client, cipher, default_ttl=settings.TOKEN_DEFAULT_TTL)
    rate_limiter = RateLimiter(redis_client, limits=settings.rate_limits, window=settings.RATE_LIMIT_WINDOW)
    oauth = XOAuthService(settings, redis_client, token_storage, events, http, retry_policy=retry_policy)

    def client_factory(access_token: str) -> XApiClient:
        return XApiClient(access_token, http, api_base=settings.X_API_BASE, upload_url=settings.X_UPLOAD_URL)

    sessions = SessionManager(
        token_storage,
        oauth,
        client_factory,
        events,
        refresh_threshold=settings.SESSION_REFRESH_THRESHOLD,
    )
    share = SharePipeline(settings, sessions, rate_limiter, events, retry_policy=retry_policy)
    browser_sessions = BrowserSessionStore(redis_client, ttl=settings.BROWSER_SESSION_TTL)

    return ServiceContainer(
        settings=settings,
        redis=redis_client,
        http=http,
        events=events,
        token_storage=token_storage,
        rate_limiter=rate_limiter,
        oauth=oauth,
        sessions=sessions,
        share=share,
        browser_sessions=browser_sessions,
    )
