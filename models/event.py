"""
Event models.

An Event is the committed 'Output' of scheduling: one approved request
turned into a concrete time window, with the resources booked for it.
"""

from enum import Enum
from typing import List, Optional, Set
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict

from .window import TimeWindow, Location
from .request import EscalationRecord


class EventStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


ACTIVE_EVENT_STATUSES = frozenset({EventStatus.SCHEDULED, EventStatus.IN_PROGRESS})


class ResourceAllocation(BaseModel):
    """One resource booked for the event."""
    resource_id: str
    category: str = Field(description="Requirement key this resource satisfies")
    score: float = Field(default=0.0, description="Ranking score at selection time")
    allocated_at: Optional[datetime] = None
    released: bool = Field(default=False, description="True once the booking was cancelled/completed")


class Incident(BaseModel):
    """Something that went wrong (or was escalated) during an event."""
    kind: str = Field(description="e.g. 'escalation', 'equipment', 'access'")
    description: str
    severity: str = Field(default="medium", description="low / medium / high / critical")
    reported_by: str = Field(default="system")
    reported_at: datetime


class Event(BaseModel):
    """
    A scheduled occurrence derived from exactly one approved CoverageRequest.
    The time window invariant (end > start) is enforced by TimeWindow itself.
    """

    id: str = Field(description="Unique identifier")
    request_id: str = Field(description="Source CoverageRequest")
    title: str = Field(default="")
    category: Optional[str] = None
    priority: Optional[str] = None
    department: Optional[str] = None

    window: TimeWindow
    location: Location = Field(default_factory=Location)
    status: EventStatus = Field(default=EventStatus.SCHEDULED)

    # --- Derived timing, set by status transitions ---
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None

    allocations: List[ResourceAllocation] = Field(default_factory=list)
    incidents: List[Incident] = Field(default_factory=list)
    escalation: EscalationRecord = Field(default_factory=EscalationRecord)
    reminders_sent: Set[int] = Field(
        default_factory=set,
        description="Reminder horizons (hours before start) already sent"
    )

    revision: int = Field(default=1, ge=1, description="Bumped on every schedule change")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency counter")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_EVENT_STATUSES

    def active_allocations(self) -> List[ResourceAllocation]:
        return [a for a in self.allocations if not a.released]

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "evt_parliament_01",
            "request_id": "req_parliament_01",
            "title": "Parliament budget session",
            "window": {"start": "2025-03-10T09:00:00", "end": "2025-03-10T12:00:00"},
            "location": {"name": "Parliament", "coordinates": {"lat": 9.0301, "lng": 38.7631}},
            "status": "scheduled",
            "revision": 1
        }
    })
