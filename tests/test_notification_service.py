"""Tests for care plan event publishing."""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from revolucare.config.request_context import correlation_id_var
from revolucare.models.enums import CarePlanEventType
from revolucare.services.notification_service import (
    InMemoryEventPublisher,
    NotificationService,
    RedisEventPublisher,
)


class TestNotificationService:
    @pytest.mark.asyncio
    async def test_event_envelope(self):
        publisher = InMemoryEventPublisher()
        received = []
        publisher.subscribe(received.append)
        service = NotificationService(publisher, channel="plans")

        token = correlation_id_var.set("req-123")
        try:
            await service.publish(CarePlanEventType.CARE_PLAN_APPROVED, {"care_plan_id": "p1"})
        finally:
            correlation_id_var.reset(token)

        event = publisher.messages[0]
        assert event["channel"] == "plans"
        assert event["type"] == "care_plan_approved"
        assert event["payload"] == {"care_plan_id": "p1"}
        assert event["correlation_id"] == "req-123"
        assert event["id"]
        assert event["timestamp"]
        assert received == [event]

    @pytest.mark.asyncio
    async def test_transport_failure_is_not_raised(self):
        publisher = MagicMock()
        publisher.publish = AsyncMock(side_effect=ConnectionError("redis down"))
        service = NotificationService(publisher)

        await service.publish(CarePlanEventType.CARE_PLAN_CREATED, {"care_plan_id": "p1"})

        publisher.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_publisher(self):
        client = MagicMock()
        client.publish = AsyncMock(return_value=1)
        service = NotificationService(RedisEventPublisher(client))

        await service.publish(CarePlanEventType.CARE_PLAN_UPDATED, {"version": 2})

        channel, message = client.publish.await_args.args
        assert channel == "care-plan-events"
        assert json.loads(message)["payload"] == {"version": 2}
