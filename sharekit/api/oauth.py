"""OAuth API routes for X (Twitter) authentication"""
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse

from sharekit.api.deps import get_container
from sharekit.core.container import ServiceContainer
from sharekit.core.exceptions import ShareKitError
from sharekit.core.security import ensure_owner, require_auth, session_id_from, set_session_cookie
from sharekit.schemas.credentials import BrowserSessionData

# Loggers
logger = logging.getLogger(__name__)
twitter_logger = logging.getLogger("twitter")
security_logger = logging.getLogger("security")

router = APIRouter(prefix="/api/auth/twitter", tags=["oauth"])


def _error_redirect(frontend: str, reason: str) -> RedirectResponse:
    return RedirectResponse(url=f"{frontend}/auth/error?{urlencode({'reason': reason})}")


@router.get("/login")
async def auth_twitter_login(
    request: Request,
    response: Response,
    container: ServiceContainer = Depends(get_container),
):
    """Start X OAuth flow - returns the authorization URL and binds its state to this browser"""
    auth = await container.oauth.begin_authorization()

    store = container.browser_sessions
    session_id = session_id_from(request)
    data = await store.get(session_id)
    if data is None:
        session_id = await store.create(BrowserSessionData(oauthState=auth.state))
    else:
        data.oauthState = auth.state
        await store.save(session_id, data)

    set_session_cookie(response, session_id, container.settings)
    return {"url": auth.url, "state": auth.state}


@router.get("/callback")
async def auth_twitter_callback(
    request: Request,
    code: str = "",
    state: str = "",
    error: str = "",
    container: ServiceContainer = Depends(get_container),
):
    """X OAuth callback - exchanges the code, stores credentials, redirects to the frontend"""
    frontend = container.settings.FRONTEND_URL
    store = container.browser_sessions
    session_id = session_id_from(request)
    data = await store.get(session_id)

    if error:
        twitter_logger.warning(f"X authorization denied: {error}")
        return _error_redirect(frontend, error)

    # The state must have been issued to this browser, otherwise the callback is a login CSRF attempt
    if data is None or not state or data.oauthState != state:
        client = request.client.host if request.client else "unknown"
        security_logger.warning(f"OAuth callback state not bound to the requesting browser, IP: {client}")
        return _error_redirect(frontend, "InvalidStateError")

    data.oauthState = None
    try:
        record = await container.oauth.complete_authorization(code, state)
        await container.sessions.create_session(record)
    except ShareKitError as e:
        await store.save(session_id, data)
        return _error_redirect(frontend, type(e).__name__)

    data.userId = record.user_id
    await store.save(session_id, data)
    return RedirectResponse(url=f"{frontend}/auth/success?{urlencode({'user_id': record.user_id})}")


@router.post("/{user_id}/revoke")
async def auth_twitter_revoke(
    user_id: str,
    request: Request,
    session_user_id: str = Depends(require_auth),
    container: ServiceContainer = Depends(get_container),
):
    """Disconnect the X account connected in this browser session"""
    ensure_owner(request, session_user_id, user_id)
    await container.sessions.revoke_session(user_id)

    session_id = session_id_from(request)
    data = await container.browser_sessions.get(session_id)
    if data is not None:
        data.userId = None
        await container.browser_sessions.save(session_id, data)
    return {"message": "X account disconnected"}


@router.get("/{user_id}/status")
async def auth_twitter_status(
    user_id: str,
    request: Request,
    session_user_id: str = Depends(require_auth),
    container: ServiceContainer = Depends(get_container),
):
    """Whether the X account is connected and its token still works"""
    ensure_owner(request, session_user_id, user_id)
    authenticated = await container.sessions.validate_session(user_id)
    username = None
    if authenticated:
        session = await container.sessions.get_session(user_id)
        username = session.username if session else None
    return {"authenticated": authenticated, "username": username}
