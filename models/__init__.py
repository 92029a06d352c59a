"""
Data models package for the coverage scheduler.

This package exports the core pillars of the data architecture:
1. Demand (CoverageRequest)
2. Supply (Resource, BookingEntry)
3. Output (Event, Assignment, and the result shapes)
"""

from .window import (
    TimeWindow,
    GeoPoint,
    Location,
    haversine_km
)

from .request import (
    CoverageRequest,
    RequestStatus,
    Priority,
    EscalationRecord
)

from .resource import (
    Resource,
    ResourceKind,
    Availability,
    BookingEntry,
    BookingStatus,
    ResourceIssue,
    HOLDING_STATUSES
)

from .event import (
    Event,
    EventStatus,
    ResourceAllocation,
    Incident,
    ACTIVE_EVENT_STATUSES
)

from .assignment import (
    Assignment,
    AssignmentStatus
)

from .schedule import (
    ConflictSet,
    ConflictingEvent,
    ScheduleOutcome,
    AllocationResult,
    GrantedResource,
    EscalationReport,
    EscalationOutcome,
    ReminderOutcome,
    ItemFailure
)

__all__ = [
    # --- Primitives ---
    "TimeWindow",
    "GeoPoint",
    "Location",
    "haversine_km",

    # --- Demand Models ---
    "CoverageRequest",
    "RequestStatus",
    "Priority",
    "EscalationRecord",

    # --- Resource Models ---
    "Resource",
    "ResourceKind",
    "Availability",
    "BookingEntry",
    "BookingStatus",
    "ResourceIssue",
    "HOLDING_STATUSES",

    # --- Scheduled Work ---
    "Event",
    "EventStatus",
    "ResourceAllocation",
    "Incident",
    "ACTIVE_EVENT_STATUSES",
    "Assignment",
    "AssignmentStatus",

    # --- Output Models ---
    "ConflictSet",
    "ConflictingEvent",
    "ScheduleOutcome",
    "AllocationResult",
    "GrantedResource",
    "EscalationReport",
    "EscalationOutcome",
    "ReminderOutcome",
    "ItemFailure",
]
