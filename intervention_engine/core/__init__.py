from intervention_engine.core.event_bus import (
    ClosureStageRecorded,
    DomainEvent,
    EventBus,
    InterventionCreated,
    InterventionTransitioned,
    QuoteReviewed,
    QuotesRequested,
    QuoteSubmitted,
    QuoteWithdrawn,
    SlotConfirmed,
    SlotResponded,
    SlotsProposed,
    get_event_bus,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "InterventionCreated",
    "InterventionTransitioned",
    "QuotesRequested",
    "QuoteSubmitted",
    "QuoteWithdrawn",
    "QuoteReviewed",
    "SlotsProposed",
    "SlotResponded",
    "SlotConfirmed",
    "ClosureStageRecorded",
    "get_event_bus",
]
