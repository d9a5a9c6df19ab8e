"""X API client and error classification tests"""
import json

import httpx
import pytest

from sharekit.core.exceptions import (
    AuthError, InputValidationError, InvalidResponseFormatError,
    PermissionDeniedError, TransientError, UpstreamRateLimitError
)
from sharekit.services.platforms.x_api import (
    TIER_REMEDIATION, XApiClient, build_post_url, raise_for_platform_status
)


def _response(status, json=None, headers=None):
    return httpx.Response(status, json=json, headers=headers, request=httpx.Request("GET", "https://api.twitter.com/2/x"))


@pytest.mark.critical
class TestErrorClassification:
    """Test mapping of X status codes to typed errors"""

    def test_success_does_not_raise(self):
        """Test 2xx passes through"""
        raise_for_platform_status(_response(201, {"data": {}}), "Create post")

    def test_401_is_auth_error(self):
        """Test 401 is a fatal AuthError"""
        with pytest.raises(AuthError) as exc_info:
            raise_for_platform_status(_response(401, {"title": "Unauthorized"}), "Create post")
        assert not exc_info.value.retryable

    def test_403_tier_code_carries_tier_remediation(self):
        """Test 403 with error code 453 explains the access tier"""
        body = {"errors": [{"code": 453, "message": "You currently have access to a subset of endpoints"}]}
        with pytest.raises(PermissionDeniedError) as exc_info:
            raise_for_platform_status(_response(403, body), "Media upload")
        assert exc_info.value.remediation == TIER_REMEDIATION
        assert "453" not in exc_info.value.remediation
        assert not exc_info.value.retryable

    def test_403_client_not_enrolled_is_tier_problem(self):
        """Test the v2 client-not-enrolled reason maps to tier remediation"""
        body = {"title": "Client Forbidden", "reason": "client-not-enrolled", "detail": "not enrolled"}
        with pytest.raises(PermissionDeniedError) as exc_info:
            raise_for_platform_status(_response(403, body), "Create post")
        assert exc_info.value.remediation == TIER_REMEDIATION

    def test_plain_403_has_generic_remediation(self):
        """Test other 403s still carry remediation text"""
        with pytest.raises(PermissionDeniedError) as exc_info:
            raise_for_platform_status(_response(403, {"detail": "Forbidden"}), "Create post")
        assert exc_info.value.remediation
        assert exc_info.value.remediation != TIER_REMEDIATION

    def test_429_is_retryable_with_retry_after(self):
        """Test 429 is a retryable upstream rate limit"""
        with pytest.raises(UpstreamRateLimitError) as exc_info:
            raise_for_platform_status(_response(429, {"title": "Too Many Requests"}, {"retry-after": "30"}), "Post")
        assert exc_info.value.retryable
        assert exc_info.value.retry_after == 30

    @pytest.mark.parametrize("status", [500, 502, 503])
    def test_5xx_is_transient(self, status):
        """Test 5xx is retryable"""
        with pytest.raises(TransientError):
            raise_for_platform_status(_response(status, {"title": "oops"}), "Post")

    def test_other_4xx_is_validation_error(self):
        """Test 400 is fatal"""
        with pytest.raises(InputValidationError):
            raise_for_platform_status(_response(400, {"errors": [{"message": "bad media"}]}), "Post")

    def test_non_json_error_body(self):
        """Test classification works without a JSON body"""
        response = httpx.Response(503, text="<html>down</html>", request=httpx.Request("GET", "https://x"))
        with pytest.raises(TransientError, match="down"):
            raise_for_platform_status(response, "Post")


@pytest.mark.high
class TestXApiClient:
    """Test request building and response validation"""

    @pytest.mark.asyncio
    async def test_get_me_sends_bearer_token(self, provider, http_client):
        """Test identity check uses the access token"""
        client = XApiClient("tok", http_client)
        user = await client.get_me()
        assert user.username == "roaster"
        assert provider.calls[0].request.headers["authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_get_me_rejects_wrong_shape(self, provider, http_client):
        """Test an identity response missing data fails validation"""
        provider.respond("GET", provider.USERS_ME, (200, {"id": "u1"}))
        with pytest.raises(InvalidResponseFormatError):
            await XApiClient("tok", http_client).get_me()

    @pytest.mark.asyncio
    async def test_create_post_body(self, provider, http_client):
        """Test posts send {text, media: {media_ids}}"""
        post = await XApiClient("tok", http_client).create_post("hello", ["m1"])
        assert post.id == "1234567890"
        sent = provider.calls[0].request
        assert sent.url.path == "/2/tweets"
        assert json.loads(sent.content) == {"text": "hello", "media": {"media_ids": ["m1"]}}

    @pytest.mark.asyncio
    async def test_transport_failure_is_transient(self):
        """Test connection errors become TransientError"""
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as http:
            with pytest.raises(TransientError):
                await XApiClient("tok", http).get_me()

    @pytest.mark.asyncio
    async def test_empty_token_is_rejected(self, http_client):
        """Test a client cannot be built without a token"""
        with pytest.raises(AuthError):
            XApiClient("  ", http_client)

    def test_build_post_url(self):
        """Test canonical post URL format"""
        assert build_post_url("https://twitter.com/", "42") == "https://twitter.com/i/web/status/42"
