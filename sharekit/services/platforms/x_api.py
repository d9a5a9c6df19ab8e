"""X (Twitter) API client and upstream error classification"""
import json
import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from sharekit.core.exceptions import (
    AuthError, InputValidationError, InvalidResponseFormatError,
    PermissionDeniedError, TransientError, UpstreamRateLimitError
)
from sharekit.schemas.twitter import (
    MediaUploadResponse, TweetResponse, UserResponse, XApiErrorBody, parse_response
)
from sharekit.services.platforms.base import BasePlatformClient

twitter_logger = logging.getLogger("twitter")

# X error code returned when the app's access tier does not include an endpoint
TIER_INSUFFICIENT_CODE = 453

TIER_REMEDIATION = (
    "Your X developer app's access tier does not include this endpoint. "
    "Upgrade the project to a tier that allows posting with media (Basic or higher) "
    "in the X developer portal, then reconnect the account."
)
FORBIDDEN_REMEDIATION = (
    "The X account or app is not allowed to perform this action. "
    "Check that the app has Read and Write permissions and that the account "
    "granted the tweet.write scope, then reconnect the account."
)


def _error_summary(response: httpx.Response) -> XApiErrorBody:
    try:
        return XApiErrorBody.model_validate(response.json())
    except (json.JSONDecodeError, ValidationError, ValueError):
        return XApiErrorBody(detail=response.text[:200] if response.text else None)


def _error_message(body: XApiErrorBody) -> str:
    if body.errors and body.errors[0].message:
        return body.errors[0].message
    return body.detail or body.error_description or body.title or body.error or "unknown error"


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("retry-after")
    if value and value.isdigit():
        return int(value)
    return None


def raise_for_platform_status(response: httpx.Response, context: str) -> None:
    """Map a non-2xx X response to a classified error

    401 is fatal AuthError, 403 is fatal PermissionDeniedError carrying
    remediation text, 429 and 5xx are retryable, other 4xx are fatal.
    """
    status = response.status_code
    if 200 <= status < 300:
        return

    body = _error_summary(response)
    message = f"{context} failed (HTTP {status}): {_error_message(body)}"

    if status == 401:
        raise AuthError(message)
    if status == 403:
        codes = {e.code for e in body.errors if e.code is not None}
        if TIER_INSUFFICIENT_CODE in codes or body.reason == "client-not-enrolled":
            raise PermissionDeniedError(message, TIER_REMEDIATION)
        raise PermissionDeniedError(message, FORBIDDEN_REMEDIATION)
    if status == 429:
        raise UpstreamRateLimitError(message, retry_after=_retry_after(response))
    if status >= 500:
        raise TransientError(message)
    raise InputValidationError(message)


def build_post_url(web_base: str, post_id: str) -> str:
    """Canonical URL for a post"""
    return f"{web_base.rstrip('/')}/i/web/status/{post_id}"


class XApiClient(BasePlatformClient):
    """Authenticated X API handle bound to one user's access token

    The underlying httpx.AsyncClient is shared and owned by the caller.
    """

    def __init__(
        self,
        access_token: str,
        http_client: httpx.AsyncClient,
        *,
        api_base: str = "https://api.twitter.com/2",
        upload_url: str = "https://upload.twitter.com/1.1/media/upload.json",
    ):
        if not access_token or not access_token.strip():
            raise AuthError("No X access token or token is empty")
        self._access_token = access_token.strip()
        self._http = http_client
        self._api_base = api_base.rstrip("/")
        self._upload_url = upload_url

    @property
    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self._access_token}"}

    async def _request(self, method: str, url: str, context: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.request(method, url, headers=self._auth_headers, **kwargs)
        except httpx.TransportError as e:
            raise TransientError(f"{context} failed: {type(e).__name__}: {e}")
        raise_for_platform_status(response, context)
        return response

    @staticmethod
    def _json(response: httpx.Response, context: str):
        if not response.text or not response.text.strip():
            raise InvalidResponseFormatError(f"{context}: empty response body")
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise InvalidResponseFormatError(f"{context}: invalid JSON ({e})")

    async def get_me(self):
        response = await self._request("GET", f"{self._api_base}/users/me", "Identity check")
        return parse_response(UserResponse, self._json(response, "Identity check"), "user").data

    async def upload_media(self, data: bytes, mime_type: str) -> MediaUploadResponse:
        response = await self._request(
            "POST",
            self._upload_url,
            "Media upload",
            files={"media": ("media", data, mime_type)},
        )
        return parse_response(MediaUploadResponse, self._json(response, "Media upload"), "media upload")

    async def init_upload(self, total_bytes: int, media_type: str) -> MediaUploadResponse:
        response = await self._request(
            "POST",
            self._upload_url,
            "Media upload INIT",
            data={"command": "INIT", "total_bytes": str(total_bytes), "media_type": media_type},
        )
        return parse_response(MediaUploadResponse, self._json(response, "Media upload INIT"), "media INIT")

    async def append_upload(self, media_id: str, segment_index: int, chunk: bytes) -> None:
        await self._request(
            "POST",
            self._upload_url,
            f"Media upload APPEND (segment {segment_index})",
            data={"command": "APPEND", "media_id": media_id, "segment_index": str(segment_index)},
            files={"media": ("chunk", chunk, "application/octet-stream")},
        )

    async def finalize_upload(self, media_id: str) -> MediaUploadResponse:
        response = await self._request(
            "POST",
            self._upload_url,
            "Media upload FINALIZE",
            data={"command": "FINALIZE", "media_id": media_id},
        )
        return parse_response(MediaUploadResponse, self._json(response, "Media upload FINALIZE"), "media FINALIZE")

    async def upload_status(self, media_id: str) -> MediaUploadResponse:
        response = await self._request(
            "GET",
            self._upload_url,
            "Media status",
            params={"command": "STATUS", "media_id": media_id},
        )
        return parse_response(MediaUploadResponse, self._json(response, "Media status"), "media STATUS")

    async def create_post(self, text: str, media_ids: Optional[List[str]] = None):
        payload = {"text": text}
        if media_ids:
            payload["media"] = {"media_ids": list(media_ids)}
        response = await self._request("POST", f"{self._api_base}/tweets", "Create post", json=payload)
        twitter_logger.debug(f"Create post response: {response.text[:500]}")
        return parse_response(TweetResponse, self._json(response, "Create post"), "post").data
