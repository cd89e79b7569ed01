"""Service layer for business logic."""
from .care_plan_service import CarePlanService
from .document_service import DocumentService
from .notification_service import (
    EventPublisher,
    RedisEventPublisher,
    InMemoryEventPublisher,
    NotificationService,
)

__all__ = [
    "CarePlanService",
    "DocumentService",
    "EventPublisher",
    "RedisEventPublisher",
    "InMemoryEventPublisher",
    "NotificationService",
]
