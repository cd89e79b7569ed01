"""Domain event publishing for care plan notifications."""
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List
from uuid import uuid4

import redis.asyncio as redis

from revolucare.models.enums import CarePlanEventType
from revolucare.config.logging_config import get_logger
from revolucare.config.request_context import get_correlation_id

logger = get_logger(__name__)


class EventPublisher(ABC):
    """Transport that delivers serialized events to a channel."""

    @abstractmethod
    async def publish(self, channel: str, message: str) -> None:
        """Deliver one message."""

    async def close(self) -> None:
        """Release connections."""


class RedisEventPublisher(EventPublisher):
    """Publishes events over Redis pub/sub."""

    def __init__(self, client: "redis.Redis"):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisEventPublisher":
        return cls(redis.from_url(url, decode_responses=True))

    async def publish(self, channel: str, message: str) -> None:
        await self.client.publish(channel, message)

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryEventPublisher(EventPublisher):
    """Keeps published events in memory and forwards them to local subscribers."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []
        self._subscribers: List[Callable[[Dict[str, Any]], None]] = []

    def subscribe(self, handler: Callable[[Dict[str, Any]], None]) -> None:
        self._subscribers.append(handler)

    async def publish(self, channel: str, message: str) -> None:
        event = {"channel": channel, **json.loads(message)}
        self.messages.append(event)
        for handler in self._subscribers:
            handler(event)

    def events_of_type(self, event_type: CarePlanEventType) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m.get("type") == event_type.value]


class NotificationService:
    """
    Fire-and-forget publisher for care plan domain events.

    Publishing never fails the operation that triggered it: transport
    errors are logged and dropped.
    """

    def __init__(self, publisher: EventPublisher, channel: str = "care-plan-events"):
        """Initialize notification service."""
        self.publisher = publisher
        self.channel = channel

    async def publish(self, event_type: CarePlanEventType, payload: Dict[str, Any]) -> None:
        """
        Publish a domain event.

        Args:
            event_type: Kind of event
            payload: JSON-serializable event data
        """
        event = {
            "id": str(uuid4()),
            "type": event_type.value,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "correlation_id": get_correlation_id(),
        }
        try:
            await self.publisher.publish(self.channel, json.dumps(event, default=str))
            logger.info("Event published", type=event_type.value, channel=self.channel)
        except Exception as e:
            logger.error("Failed to publish event", type=event_type.value, error=str(e))
