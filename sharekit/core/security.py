"""Browser sessions and the auth dependencies that bind requests to an X account"""
import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, Response
from pydantic import ValidationError

from sharekit.core.config import Settings
from sharekit.db.redis import browser_session_key
from sharekit.schemas.credentials import BrowserSessionData

security_logger = logging.getLogger("security")


class BrowserSessionStore:
    """Opaque session ids handed to the browser, with their data kept in Redis

    The cookie only carries a random id; the pending OAuth state and the
    connected X user id never leave the server.
    """

    def __init__(self, redis_client, ttl: int):
        self._redis = redis_client
        self._ttl = ttl

    async def create(self, data: Optional[BrowserSessionData] = None) -> str:
        session_id = secrets.token_urlsafe(32)
        await self.save(session_id, data or BrowserSessionData())
        return session_id

    async def save(self, session_id: str, data: BrowserSessionData) -> None:
        await self._redis.set(browser_session_key(session_id), data.model_dump_json(), ex=self._ttl)

    async def get(self, session_id: Optional[str]) -> Optional[BrowserSessionData]:
        if not session_id:
            return None
        raw = await self._redis.get(browser_session_key(session_id))
        if raw is None:
            return None
        try:
            return BrowserSessionData.model_validate_json(raw)
        except ValidationError:
            security_logger.warning(f"Discarding malformed browser session {session_id[:8]}...")
            await self.delete(session_id)
            return None

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(browser_session_key(session_id))


def set_session_cookie(response: Response, session_id: str, settings: Settings) -> None:
    """Set the session cookie; lax so it survives the redirect back from X"""
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session_id,
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=settings.BROWSER_SESSION_TTL,
    )


def _container(request: Request):
    return request.app.state.container


def session_id_from(request: Request) -> Optional[str]:
    return request.cookies.get(_container(request).settings.SESSION_COOKIE_NAME)


async def current_user_id(request: Request) -> Optional[str]:
    """Dependency: X user id connected in this browser session, or None"""
    data = await _container(request).browser_sessions.get(session_id_from(request))
    return data.userId if data else None


async def require_auth(user_id: Optional[str] = Depends(current_user_id)) -> str:
    """Dependency: require a connected X account, return its user id"""
    if not user_id:
        raise HTTPException(401, "Not authenticated. Please connect your X account.")
    return user_id


def ensure_owner(request: Request, session_user_id: str, requested_user_id: str) -> None:
    """Reject a request naming an X account other than the session's own"""
    if requested_user_id != session_user_id:
        client = request.client.host if request.client else "unknown"
        security_logger.warning(
            f"Ownership check failed - session user {session_user_id} requested {requested_user_id}, "
            f"IP: {client}, Path: {request.url.path}"
        )
        raise HTTPException(403, "You can only act on your own X account")
