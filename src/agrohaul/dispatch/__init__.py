"""Booking dispatch: lifecycle, claims, pricing, ratings and orchestration."""

from .claims import ClaimManager, ClaimResult
from .engine import DispatchEngine, NearbyResult
from .events import DomainEvent, EventSink, EventType, LoggingEventSink, RecordingEventSink
from .pricing import PricingCalculator, quote
from .ratings import RatingAggregator, running_average
from .state_machine import TRANSITIONS, allowed_targets, can_transition, validate_transition

__all__ = [
    "DispatchEngine",
    "NearbyResult",
    "ClaimManager",
    "ClaimResult",
    "DomainEvent",
    "EventSink",
    "EventType",
    "LoggingEventSink",
    "RecordingEventSink",
    "PricingCalculator",
    "quote",
    "RatingAggregator",
    "running_average",
    "TRANSITIONS",
    "allowed_targets",
    "can_transition",
    "validate_transition",
]
