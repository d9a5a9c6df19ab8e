"""Shared pytest fixtures for test suite"""
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs

import fakeredis
import fakeredis.aioredis
import httpx
import pytest

from sharekit.core.config import Settings
from sharekit.core.container import build_container
from sharekit.schemas.credentials import CredentialRecord
from sharekit.services.event_service import ALL_EVENT_TYPES, EventBus
from sharekit.utils.encryption import EnvelopeCipher

TEST_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"

TOKEN_PATH = "/2/oauth2/token"
REVOKE_PATH = "/2/oauth2/revoke"
USERS_ME_PATH = "/2/users/me"
TWEETS_PATH = "/2/tweets"
UPLOAD_PATH = "/1.1/media/upload.json"

_MULTIPART_FIELD = re.compile(rb'name="(command|segment_index|media_id)"\r\n\r\n([^\r]*)\r\n')

ResponseSpec = Tuple[int, Optional[dict], Dict[str, str]]


@dataclass
class ProviderCall:
    method: str
    path: str
    command: Optional[str]
    fields: Dict[str, str]
    request: httpx.Request


class FakeXProvider:
    """Programmable stand-in for the X API behind httpx.MockTransport

    Routes are keyed by (method, path, command). Each route holds a queue of
    responses; the last one repeats once the queue is down to it.
    """

    TOKEN = TOKEN_PATH
    REVOKE = REVOKE_PATH
    USERS_ME = USERS_ME_PATH
    TWEETS = TWEETS_PATH
    UPLOAD = UPLOAD_PATH

    def __init__(self):
        self.calls: List[ProviderCall] = []
        self._routes: Dict[Tuple[str, str, Optional[str]], List[ResponseSpec]] = {}
        self.reset_defaults()

    def reset_defaults(self):
        self.respond("POST", TOKEN_PATH, (200, {
            "access_token": "access-1",
            "token_type": "bearer",
            "refresh_token": "refresh-1",
            "expires_in": 7200,
            "scope": "tweet.read tweet.write users.read offline.access",
        }))
        self.respond("POST", REVOKE_PATH, (200, {"revoked": True}))
        self.respond("GET", USERS_ME_PATH, (200, {"data": {"id": "u1", "username": "roaster", "name": "Roaster"}}))
        self.respond("POST", UPLOAD_PATH, (200, {"media_id_string": "m1"}), command="UPLOAD")
        self.respond("POST", UPLOAD_PATH, (202, {"media_id_string": "m1"}), command="INIT")
        self.respond("POST", UPLOAD_PATH, (204, None), command="APPEND")
        self.respond("POST", UPLOAD_PATH, (201, {"media_id_string": "m1"}), command="FINALIZE")
        self.respond("GET", UPLOAD_PATH, (200, {
            "media_id_string": "m1", "processing_info": {"state": "succeeded"}
        }), command="STATUS")
        self.respond("POST", TWEETS_PATH, (201, {"data": {"id": "1234567890", "text": "posted"}}))

    def respond(self, method: str, path: str, *responses, command: Optional[str] = None):
        """Queue responses for a route; each is (status, json) or (status, json, headers)"""
        specs = []
        for response in responses:
            if len(response) == 2:
                response = (response[0], response[1], {})
            specs.append(response)
        self._routes[(method, path, command)] = specs

    @staticmethod
    def _fields(request: httpx.Request) -> Dict[str, str]:
        if request.method == "GET":
            return dict(request.url.params)
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("application/x-www-form-urlencoded"):
            return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        if content_type.startswith("multipart/form-data"):
            return {m.group(1).decode(): m.group(2).decode() for m in _MULTIPART_FIELD.finditer(request.content)}
        return {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        fields = self._fields(request)
        command = None
        if path == UPLOAD_PATH:
            command = fields.get("command", "UPLOAD")
        self.calls.append(ProviderCall(request.method, path, command, fields, request))

        queue = self._routes.get((request.method, path, command))
        if not queue:
            return httpx.Response(404, json={"title": "Not Found"})
        status, body, headers = queue.pop(0) if len(queue) > 1 else queue[0]
        if body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    def count(self, method: str, path: str, command: Optional[str] = None) -> int:
        return sum(
            1 for c in self.calls
            if c.method == method and c.path == path and (command is None or c.command == command)
        )

    def commands(self) -> List[str]:
        return [c.command for c in self.calls if c.path == UPLOAD_PATH]


class EventRecorder:
    """Subscribes to every event kind and keeps them in publish order"""

    def __init__(self, bus: EventBus):
        self.bus = bus
        self.events = []
        for event_type in ALL_EVENT_TYPES:
            bus.subscribe(event_type, self.events.append)

    async def collected(self):
        await self.bus.drain()
        return self.events

    async def kinds(self):
        return [e.kind for e in await self.collected()]


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    """Settings with a fixed key, fake client credentials and no real waiting"""
    return Settings(
        ENCRYPTION_KEY=TEST_KEY_HEX,
        X_CLIENT_ID="client-id",
        X_CLIENT_SECRET="client-secret",
        X_REDIRECT_URI="http://localhost:8000/api/auth/twitter/callback",
        X_POSTING_USER_ID="",
        RETRY_BASE_DELAY=0.0,
        MEDIA_STATUS_POLL_INTERVAL=0.0,
        MEDIA_STATUS_POLL_ATTEMPTS=3,
        FRONTEND_URL="http://localhost:3000",
    )


@pytest.fixture(scope="function")
async def fake_redis():
    """Isolated async Redis using fakeredis"""
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest.fixture(scope="function")
def cipher() -> EnvelopeCipher:
    """Envelope cipher under the test key"""
    return EnvelopeCipher(bytes.fromhex(TEST_KEY_HEX))


@pytest.fixture(scope="function")
def provider() -> FakeXProvider:
    """Fake X API that succeeds on every endpoint until told otherwise"""
    return FakeXProvider()


@pytest.fixture(scope="function")
async def http_client(provider):
    """httpx client routed to the fake provider"""
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture(scope="function")
def event_bus() -> EventBus:
    """Fresh event bus per test"""
    return EventBus()


@pytest.fixture(scope="function")
def recorder(event_bus) -> EventRecorder:
    """Records every event published on the test bus"""
    return EventRecorder(event_bus)


@pytest.fixture(scope="function")
async def container(test_settings, fake_redis, http_client, event_bus):
    """All services wired against fakeredis and the fake provider"""
    built = build_container(test_settings, fake_redis, http_client=http_client, event_bus=event_bus, relay_events=False)
    yield built
    await event_bus.drain()


def _make_record(
    user_id: str = "u1",
    username: str = "roaster",
    expires_in: Optional[int] = 7200,
    refresh_token: Optional[str] = "refresh-0",
    access_token: str = "access-0",
) -> CredentialRecord:
    """Credential record expiring ``expires_in`` seconds from now (None for no expiry)"""
    now = datetime.now(timezone.utc)
    created = now - timedelta(hours=3)
    return CredentialRecord(
        user_id=user_id,
        username=username,
        access_token=access_token,
        refresh_token=refresh_token,
        scope={"tweet.read", "tweet.write"},
        expires_at=now + timedelta(seconds=expires_in) if expires_in is not None else None,
        created_at=created,
    )


@pytest.fixture(scope="function")
def record_factory():
    """Builds credential records expiring a given number of seconds from now"""
    return _make_record


@pytest.fixture(scope="function")
async def connected_user(container):
    """User u1 with a live session valid for two hours"""
    record = _make_record()
    await container.sessions.create_session(record)
    return record
