"""Typed event bus for auth and share lifecycle events

One channel per event class. Publishing never waits for handlers: each handler
runs in its own task and a failing handler is logged without affecting the
others.
"""
import asyncio
import inspect
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Type

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Event:
    timestamp: datetime = field(default_factory=_now, kw_only=True)

    @property
    def kind(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class AuthStarted(Event):
    state: str


@dataclass(frozen=True)
class AuthCompleted(Event):
    user_id: str
    username: str


@dataclass(frozen=True)
class AuthFailed(Event):
    error: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class AuthRevoked(Event):
    user_id: str


@dataclass(frozen=True)
class TokenRefreshed(Event):
    user_id: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class ShareStarted(Event):
    subject_id: str
    share_method: str = "user"


@dataclass(frozen=True)
class ShareCompleted(Event):
    subject_id: str
    post_url: str
    share_method: str = "user"


@dataclass(frozen=True)
class ShareFailed(Event):
    subject_id: str
    error: str
    share_method: str = "user"


Handler = Callable[[Any], Any]


class EventBus:
    """In-process publish/subscribe keyed by event class"""

    def __init__(self):
        self._handlers: Dict[Type[Event], List[Handler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event_type: Type[Event], handler: Handler) -> Callable[[], None]:
        """Register a handler for one event class; returns an unsubscribe callable"""
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe():
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        """Schedule delivery of an event to every subscriber of its class

        Must be called from within a running event loop.
        """
        handlers = list(self._handlers.get(type(event), []))
        logger.debug(f"Publishing {event.kind} to {len(handlers)} handler(s)")
        for handler in handlers:
            task = asyncio.create_task(self._deliver(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, handler: Handler, event: Event) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            name = getattr(handler, "__qualname__", repr(handler))
            logger.error(f"Event handler {name} failed for {event.kind}: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait for all scheduled deliveries to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending))


def event_to_dict(event: Event) -> Dict[str, Any]:
    """Serializable form of an event: {type, data, timestamp}"""
    data = asdict(event)
    timestamp = data.pop("timestamp")
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return {"type": event.kind, "data": data, "timestamp": timestamp.isoformat()}


def redis_event_relay(redis_client, prefix: str = "events") -> Handler:
    """Build a subscriber that republishes events to Redis pub/sub for real-time updates

    Each event is published as JSON on channel ``{prefix}:{EventKind}``.
    """

    async def relay(event: Event) -> None:
        channel = f"{prefix}:{event.kind}"
        event_json = json.dumps(event_to_dict(event))
        result = await redis_client.publish(channel, event_json)
        if result > 0:
            logger.info(f"Event {event.kind} published to {channel}: {result} subscriber(s) received it")
        else:
            logger.debug(f"Event {event.kind} published to {channel} but no subscribers received it")

    return relay


ALL_EVENT_TYPES = (
    AuthStarted, AuthCompleted, AuthFailed, AuthRevoked, TokenRefreshed,
    ShareStarted, ShareCompleted, ShareFailed,
)


def attach_redis_relay(bus: EventBus, redis_client) -> None:
    """Relay every event kind to Redis pub/sub"""
    relay = redis_event_relay(redis_client)
    for event_type in ALL_EVENT_TYPES:
        bus.subscribe(event_type, relay)
