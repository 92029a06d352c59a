"""
Result models returned by the scheduling core.

These are the 'Output' shapes callers branch on:
1. ConflictSet (temporal vs spatial collisions)
2. AllocationResult (granted resources plus shortfall)
3. EscalationReport (escalations, reminders and per-item failures)
"""

from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from .event import Event
from .resource import BookingEntry


class ConflictingEvent(BaseModel):
    """An existing event that collides with a proposed window."""
    event_id: str
    title: str = ""
    start: datetime
    end: datetime
    status: str
    priority: Optional[str] = None
    distance_km: Optional[float] = Field(default=None, description="Set for spatial conflicts")


class ConflictSet(BaseModel):
    temporal: List[ConflictingEvent] = Field(default_factory=list)
    spatial: List[ConflictingEvent] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.temporal and not self.spatial

    def event_ids(self) -> List[str]:
        seen = []
        for c in self.temporal + self.spatial:
            if c.event_id not in seen:
                seen.append(c.event_id)
        return seen


class ScheduleOutcome(BaseModel):
    """
    Result of schedule/reschedule. Exactly one of `event` or `conflicts` is meaningful:
    when conflicts were found and not overridden, nothing was written.
    """
    event: Optional[Event] = None
    conflicts: ConflictSet = Field(default_factory=ConflictSet)
    overridden: bool = Field(default=False, description="Conflicts existed but the caller overrode them")
    dropped_resources: List[str] = Field(
        default_factory=list,
        description="Resources whose booking could not follow a reschedule"
    )

    @property
    def scheduled(self) -> bool:
        return self.event is not None


class GrantedResource(BaseModel):
    resource_id: str
    name: str
    category: str
    score: float
    booking: BookingEntry


class AllocationResult(BaseModel):
    """Partial allocation is a normal result: callers must check `shortfall`."""
    event_id: str
    granted: Dict[str, List[GrantedResource]] = Field(default_factory=dict)
    shortfall: Dict[str, int] = Field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return not self.shortfall

    def granted_count(self, category: str) -> int:
        return len(self.granted.get(category, []))


class EscalationOutcome(BaseModel):
    kind: str = Field(description="'request', 'assignment' or 'event'")
    item_id: str
    previous_tier: int
    tier: int
    hours_overdue: float
    recipients: List[str] = Field(default_factory=list)
    failed_recipients: List[str] = Field(default_factory=list)


class ReminderOutcome(BaseModel):
    kind: str = Field(description="'draft', 'assignment', 'sla' or 'event'")
    item_id: str
    recipients: List[str] = Field(default_factory=list)


class ItemFailure(BaseModel):
    kind: str
    item_id: str
    error: str


class EscalationReport(BaseModel):
    """What a single pass did. One item failing never hides the others."""
    ran_at: datetime
    escalated: List[EscalationOutcome] = Field(default_factory=list)
    reminders: List[ReminderOutcome] = Field(default_factory=list)
    failures: List[ItemFailure] = Field(default_factory=list)

    @property
    def notifications_sent(self) -> int:
        return (
            sum(len(e.recipients) for e in self.escalated)
            + sum(len(r.recipients) for r in self.reminders)
        )
