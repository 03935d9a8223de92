from app.core.event_bus import (
    DomainEvent,
    EventBus,
    OfferSubmitted,
    PurchaseOrderPlaced,
    RequestCreated,
    RequestStatusChanged,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "RequestCreated",
    "RequestStatusChanged",
    "OfferSubmitted",
    "PurchaseOrderPlaced",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
