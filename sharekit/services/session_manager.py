"""In-memory cache of authenticated X sessions with transparent token refresh"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sharekit.core.exceptions import AuthError, SessionRefreshFailedError
from sharekit.schemas.credentials import CredentialRecord
from sharekit.services.event_service import AuthFailed, EventBus
from sharekit.services.oauth_service import XOAuthService
from sharekit.services.platforms.base import BasePlatformClient
from sharekit.services.token_storage import TokenStorage

logger = logging.getLogger(__name__)
twitter_logger = logging.getLogger("twitter")

DEFAULT_REFRESH_THRESHOLD = 5 * 60  # seconds


@dataclass
class Session:
    user_id: str
    username: str
    client: BasePlatformClient
    expires_at: Optional[datetime] = None


ClientFactory = Callable[[str], BasePlatformClient]


class SessionManager:
    """Read-through/write-through session cache over TokenStorage

    Args:
        token_storage: Source of truth for credentials
        oauth_service: Used to refresh tokens near expiry
        client_factory: Builds an authenticated client from an access token
        event_bus: Receives AuthFailed when a refresh drops a session
        refresh_threshold: Seconds before expiry at which a refresh is triggered
    """

    def __init__(
        self,
        token_storage: TokenStorage,
        oauth_service: XOAuthService,
        client_factory: ClientFactory,
        event_bus: EventBus,
        refresh_threshold: int = DEFAULT_REFRESH_THRESHOLD,
    ):
        self._storage = token_storage
        self._oauth = oauth_service
        self._client_factory = client_factory
        self._events = event_bus
        self._refresh_threshold = refresh_threshold
        self._sessions: Dict[str, Session] = {}
        # One in-flight refresh per user; concurrent callers await the same task
        self._refreshing: Dict[str, asyncio.Task] = {}

    def _cache(self, record: CredentialRecord) -> Session:
        session = Session(
            user_id=record.user_id,
            username=record.username,
            client=self._client_factory(record.access_token),
            expires_at=record.expires_at,
        )
        self._sessions[record.user_id] = session
        return session

    def _needs_refresh(self, session: Session) -> bool:
        if session.expires_at is None:
            return False
        remaining = (session.expires_at - datetime.now(timezone.utc)).total_seconds()
        return remaining < self._refresh_threshold

    async def create_session(self, record: CredentialRecord) -> Session:
        """Persist the record and cache a session built from it"""
        await self._storage.store(record.user_id, record)
        session = self._cache(record)
        logger.debug(f"Created X session for user {record.user_id}")
        return session

    async def get_session(self, user_id: str) -> Optional[Session]:
        """Return a live session, restoring it from storage and refreshing near expiry

        Raises:
            SessionRefreshFailedError: If a needed refresh failed; the session
                and stored credentials have been removed
        """
        session = self._sessions.get(user_id)
        if session is None:
            record = await self._storage.retrieve(user_id)
            if record is None:
                return None
            session = self._cache(record)

        if self._needs_refresh(session):
            session = await self._refresh_session(user_id)
        return session

    async def _refresh_session(self, user_id: str) -> Session:
        task = self._refreshing.get(user_id)
        if task is None:
            task = asyncio.create_task(self._do_refresh(user_id))
            self._refreshing[user_id] = task
            task.add_done_callback(lambda _t: self._refreshing.pop(user_id, None))
        return await asyncio.shield(task)

    async def _do_refresh(self, user_id: str) -> Session:
        twitter_logger.info(f"X session for user {user_id} is near expiry, refreshing")
        try:
            record = await self._oauth.refresh(user_id)
        except Exception as e:
            twitter_logger.error(f"Failed to refresh X session for user {user_id}: {e}")
            await self.remove_session(user_id)
            self._events.publish(AuthFailed(error=f"Session refresh failed: {e}", user_id=user_id))
            raise SessionRefreshFailedError(f"Session refresh failed for user {user_id}: {e}") from e
        return self._cache(record)

    async def remove_session(self, user_id: str) -> None:
        """Evict the cached session and delete stored credentials"""
        self._sessions.pop(user_id, None)
        await self._storage.remove(user_id)

    async def revoke_session(self, user_id: str) -> None:
        """Revoke the account's tokens and evict its session"""
        await self._oauth.revoke(user_id)
        self._sessions.pop(user_id, None)

    async def validate_session(self, user_id: str) -> bool:
        """Live identity check; auth rejection reads as False, infrastructure errors propagate"""
        try:
            session = await self.get_session(user_id)
            if session is None:
                return False
            await session.client.get_me()
        except AuthError as e:
            logger.info(f"X session for user {user_id} is no longer valid: {e}")
            return False
        return True

    async def list_active_sessions(self) -> List[Session]:
        """Materialize a session for every valid stored record, skipping users that fail"""
        sessions = []
        for record in await self._storage.list_valid():
            try:
                session = await self.get_session(record.user_id)
            except Exception as e:
                logger.warning(f"Failed to restore X session for user {record.user_id}: {e}")
                continue
            if session is not None:
                sessions.append(session)
        return sessions

    async def close(self) -> None:
        """Cancel in-flight refreshes and drop every cached session"""
        tasks = list(self._refreshing.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._sessions.clear()
        logger.debug("Session manager closed")
