"""
Domain events emitted by the dispatch engine.

Delivery is fire-and-forget: the engine publishes after a state change has
been committed and never rolls back because a sink failed.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol
import uuid

import structlog
from pydantic import BaseModel, Field

from ..models.booking import utcnow

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    """Names of the events the engine emits."""

    BOOKING_CREATED = "booking.created"
    BOOKING_ACCEPTED = "booking.accepted"
    BOOKING_REJECTED = "booking.rejected"
    BOOKING_STATUS_CHANGED = "booking.status_changed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_RATED = "booking.rated"
    BOOKING_CHARGES_UPDATED = "booking.charges_updated"
    BOOKING_MESSAGE_POSTED = "booking.message_posted"
    VEHICLE_LOCATION_UPDATED = "vehicle.location_updated"


class DomainEvent(BaseModel):
    """One event, addressed to whoever listens on the sink."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    actor_id: str
    booking_ref: Optional[str] = None
    vehicle_id: Optional[str] = None

    # Parties to notify
    recipients: list[str] = Field(default_factory=list)

    payload: dict[str, Any] = Field(default_factory=dict)


class EventSink(Protocol):
    """Outbound channel for domain events."""

    def publish(self, event: DomainEvent) -> None:
        ...


class LoggingEventSink:
    """Writes every event to the structured log."""

    def publish(self, event: DomainEvent) -> None:
        logger.info(
            "Domain event",
            event_type=event.type.value,
            event_id=event.id,
            booking_ref=event.booking_ref,
            vehicle_id=event.vehicle_id,
            actor_id=event.actor_id,
            recipients=event.recipients,
        )


class RecordingEventSink:
    """Keeps published events in memory, for tests and the CLI."""

    def __init__(self):
        self.events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[DomainEvent]:
        return [e for e in self.events if e.type == event_type]

    def clear(self) -> None:
        self.events.clear()
