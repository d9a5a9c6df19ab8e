"""OAuth service - X (Twitter) OAuth 2.0 authorization code flow with PKCE"""
import base64
import enum
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from sharekit.core.config import Settings
from sharekit.core.exceptions import (
    InputValidationError, InvalidStateError, ShareKitError, TokenExchangeError,
    TokenRefreshError, TransientError, UpstreamRateLimitError
)
from sharekit.core.metrics import auth_attempts_counter, token_refreshes_counter
from sharekit.db.redis import PKCE_PENDING_KEY, pkce_key
from sharekit.schemas.credentials import CredentialRecord, PKCEEntry
from sharekit.schemas.twitter import TokenResponse, parse_response
from sharekit.services.event_service import (
    AuthCompleted, AuthFailed, AuthRevoked, AuthStarted, EventBus, TokenRefreshed
)
from sharekit.services.platforms.x_api import XApiClient
from sharekit.services.token_storage import TokenStorage
from sharekit.utils.retry import RetryPolicy, retry_async

# Loggers
logger = logging.getLogger(__name__)
twitter_logger = logging.getLogger("twitter")
security_logger = logging.getLogger("security")


class AuthorizationState(str, enum.Enum):
    INIT = "init"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class PKCEChallenge:
    state: str
    code_verifier: str
    code_challenge: str
    created_at: datetime


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_pkce_challenge() -> PKCEChallenge:
    """Random CSRF state plus an S256 PKCE verifier/challenge pair"""
    verifier = _b64url(secrets.token_bytes(32))
    challenge = _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return PKCEChallenge(
        state=secrets.token_urlsafe(32),
        code_verifier=verifier,
        code_challenge=challenge,
        created_at=datetime.now(timezone.utc),
    )


def _log_transition(state: str, new_state: AuthorizationState) -> None:
    twitter_logger.debug(f"OAuth attempt {state[:8]}... -> {new_state.value}")


class XOAuthService:
    """Builds authorization URLs, exchanges codes, refreshes and revokes tokens

    Args:
        settings: Client credentials, endpoints and lifetimes
        redis_client: Async Redis client holding pkce:{state} entries
        token_storage: Where credential records are persisted
        event_bus: Receives AuthStarted/AuthCompleted/AuthFailed/AuthRevoked/TokenRefreshed
        http_client: Shared httpx.AsyncClient (owned by the caller)
    """

    def __init__(
        self,
        settings: Settings,
        redis_client,
        token_storage: TokenStorage,
        event_bus: EventBus,
        http_client: httpx.AsyncClient,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._settings = settings
        self._redis = redis_client
        self._storage = token_storage
        self._events = event_bus
        self._http = http_client
        self._retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.RETRY_MAX_ATTEMPTS, base_delay=settings.RETRY_BASE_DELAY
        )

    @property
    def state_ttl(self) -> int:
        return self._settings.PKCE_STATE_TTL

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def begin_authorization(self) -> AuthorizationRequest:
        """Create a PKCE challenge and return the X authorization URL"""
        if not self._settings.X_CLIENT_ID:
            raise InputValidationError("X OAuth credentials not configured. Set X_CLIENT_ID and X_CLIENT_SECRET.")

        challenge = generate_pkce_challenge()
        _log_transition(challenge.state, AuthorizationState.INIT)

        entry = PKCEEntry(codeVerifier=challenge.code_verifier, createdAt=challenge.created_at)
        await self._redis.set(pkce_key(challenge.state), entry.model_dump_json(), ex=self.state_ttl)
        # Outlives the challenge key so the sweep can report attempts Redis has already expired
        await self._redis.zadd(PKCE_PENDING_KEY, {challenge.state: challenge.created_at.timestamp()})

        params = {
            "response_type": "code",
            "client_id": self._settings.X_CLIENT_ID,
            "redirect_uri": self._settings.X_REDIRECT_URI,
            "scope": " ".join(self._settings.X_SCOPES),
            "state": challenge.state,
            "code_challenge": challenge.code_challenge,
            "code_challenge_method": "S256",
        }
        url = f"{self._settings.X_AUTH_URL}?{urlencode(params)}"

        _log_transition(challenge.state, AuthorizationState.AWAITING_CALLBACK)
        self._events.publish(AuthStarted(state=challenge.state))
        return AuthorizationRequest(url=url, state=challenge.state)

    async def _consume_challenge(self, state: str) -> PKCEEntry:
        await self._redis.zrem(PKCE_PENDING_KEY, state)
        # GETDEL makes the state single use whether or not it is still valid
        raw = await self._redis.getdel(pkce_key(state))
        if raw is None:
            security_logger.warning(f"OAuth callback with unknown or reused state {state[:8]}...")
            raise InvalidStateError("Invalid or expired OAuth state")
        try:
            entry = PKCEEntry.model_validate_json(raw)
        except ValidationError:
            raise InvalidStateError("Invalid or expired OAuth state")

        age = datetime.now(timezone.utc) - entry.createdAt
        if age > timedelta(seconds=self.state_ttl):
            security_logger.warning(f"OAuth callback with expired state {state[:8]}... (age {age})")
            raise InvalidStateError("Invalid or expired OAuth state")
        return entry

    async def complete_authorization(self, code: str, state: str) -> CredentialRecord:
        """Exchange the callback code for tokens and persist the resulting credentials

        Raises:
            InputValidationError: Missing code or state
            InvalidStateError: Unknown, reused or expired state
            TokenExchangeError: Token endpoint rejected the exchange
            InvalidResponseFormatError: Token or identity response had the wrong shape
        """
        try:
            if not code or not state:
                raise InputValidationError("Malformed OAuth callback: code and state are required")

            entry = await self._consume_challenge(state)
            _log_transition(state, AuthorizationState.EXCHANGING)

            token = await self._request_token(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self._settings.X_REDIRECT_URI,
                    "code_verifier": entry.codeVerifier,
                },
                TokenExchangeError,
                "Token exchange",
            )

            client = XApiClient(
                token.access_token,
                self._http,
                api_base=self._settings.X_API_BASE,
                upload_url=self._settings.X_UPLOAD_URL,
            )
            user = await client.get_me()

            now = datetime.now(timezone.utc)
            record = CredentialRecord(
                user_id=user.id,
                username=user.username,
                access_token=token.access_token,
                refresh_token=token.refresh_token,
                scope=token.scope_set(),
                expires_at=now + timedelta(seconds=token.expires_in) if token.expires_in else None,
                created_at=now,
            )
            await self._storage.store(record.user_id, record)
        except Exception as e:
            if state:
                _log_transition(state, AuthorizationState.FAILED)
            auth_attempts_counter.labels(status="failure").inc()
            twitter_logger.error(f"X authorization failed: {type(e).__name__}: {e}")
            self._events.publish(AuthFailed(error=str(e)))
            raise

        _log_transition(state, AuthorizationState.AUTHENTICATED)
        auth_attempts_counter.labels(status="success").inc()
        twitter_logger.info(f"X account @{record.username} ({record.user_id}) connected")
        self._events.publish(AuthCompleted(user_id=record.user_id, username=record.username))
        return record

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def _request_token(self, form: dict, error_cls, context: str) -> TokenResponse:
        try:
            response = await self._http.post(
                self._settings.X_TOKEN_URL,
                data=form,
                auth=(self._settings.X_CLIENT_ID, self._settings.X_CLIENT_SECRET),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.TransportError as e:
            raise TransientError(f"{context} failed: {type(e).__name__}: {e}")

        if response.status_code == 429:
            raise UpstreamRateLimitError(f"{context} rate limited by X")
        if response.status_code >= 500:
            raise TransientError(f"{context} failed (HTTP {response.status_code})")
        if response.status_code != 200:
            try:
                body = response.json()
                detail = f"{body.get('error', 'unknown')} - {body.get('error_description', '')}".strip(" -")
            except ValueError:
                detail = response.text[:200]
            twitter_logger.error(f"{context} failed (HTTP {response.status_code}): {detail}")
            raise error_cls(f"{context} failed (HTTP {response.status_code}): {detail}")

        try:
            payload = response.json()
        except ValueError:
            payload = None
        return parse_response(TokenResponse, payload, "token")

    # ------------------------------------------------------------------
    # Refresh / revoke
    # ------------------------------------------------------------------

    async def refresh(self, user_id: str) -> CredentialRecord:
        """Exchange the stored refresh token for a new access token and persist it

        Transport errors, 429 and 5xx are retried with linear backoff. On
        failure the caller is responsible for dropping any live session.
        """
        record = await self._storage.retrieve(user_id)
        if record is None or not record.refresh_token:
            token_refreshes_counter.labels(status="failure").inc()
            raise TokenRefreshError("No refresh token available. Please reconnect your X account.")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": record.refresh_token,
            "client_id": self._settings.X_CLIENT_ID,
        }
        try:
            token = await retry_async(
                lambda: self._request_token(form, TokenRefreshError, "Token refresh"),
                policy=self._retry_policy,
                description=f"X token refresh for user {user_id}",
            )
        except ShareKitError:
            token_refreshes_counter.labels(status="failure").inc()
            raise

        now = datetime.now(timezone.utc)
        refreshed = CredentialRecord(
            user_id=record.user_id,
            username=record.username,
            access_token=token.access_token,
            refresh_token=token.refresh_token or record.refresh_token,
            scope=token.scope_set() or record.scope,
            expires_at=now + timedelta(seconds=token.expires_in) if token.expires_in else None,
            created_at=record.created_at,
        )
        await self._storage.store(user_id, refreshed)

        token_refreshes_counter.labels(status="success").inc()
        twitter_logger.info(f"Refreshed X token for user {user_id}")
        self._events.publish(TokenRefreshed(user_id=user_id, expires_at=refreshed.expires_at))
        return refreshed

    async def revoke(self, user_id: str) -> None:
        """Revoke the token at X (best effort) and delete the stored credentials"""
        record = await self._storage.retrieve(user_id)
        if record is not None:
            try:
                response = await self._http.post(
                    self._settings.X_REVOKE_URL,
                    data={"token": record.access_token, "token_type_hint": "access_token"},
                    auth=(self._settings.X_CLIENT_ID, self._settings.X_CLIENT_SECRET),
                )
                if response.status_code != 200:
                    twitter_logger.warning(
                        f"X token revocation returned HTTP {response.status_code} for user {user_id}"
                    )
            except httpx.HTTPError as e:
                twitter_logger.warning(f"X token revocation request failed for user {user_id}: {e}")

        await self._storage.remove(user_id)
        twitter_logger.info(f"Revoked X credentials for user {user_id}")
        self._events.publish(AuthRevoked(user_id=user_id))

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def sweep_expired_challenges(self) -> int:
        """Fail authorization attempts whose callback never arrived within the window

        Outstanding states are indexed in a sorted set scored by creation time.
        Entries older than the window are removed from the index (and their
        challenge key, if Redis has not expired it yet), and an AuthFailed
        event is published for each. A callback racing the sweep wins if it
        removes the index entry first.

        Returns:
            Number of attempts failed
        """
        cutoff = datetime.now(timezone.utc).timestamp() - self.state_ttl
        swept = 0
        for state in await self._redis.zrangebyscore(PKCE_PENDING_KEY, "-inf", cutoff):
            if not await self._redis.zrem(PKCE_PENDING_KEY, state):
                continue
            await self._redis.delete(pkce_key(state))
            _log_transition(state, AuthorizationState.FAILED)
            self._events.publish(AuthFailed(error="Authorization expired before callback"))
            swept += 1
        if swept:
            twitter_logger.info(f"Swept {swept} expired OAuth authorization attempt(s)")
        return swept
