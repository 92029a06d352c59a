"""
Resource data models for the coverage scheduler.

This module defines the 'Supply' side of the scheduler:
1. Personnel (reporters, cameramen, drivers)
2. Equipment (cameras, microphones, uplink kits)
3. Vehicles (vans, OB trucks)

Every resource carries its own booking schedule. For one resource the
tentative/confirmed entries never overlap in time.
"""

from enum import Enum
from typing import Iterable, List, Optional
from datetime import datetime
from uuid import uuid4
from pydantic import BaseModel, Field, ConfigDict

from .window import TimeWindow, Location


class ResourceKind(str, Enum):
    PERSONNEL = "personnel"
    EQUIPMENT = "equipment"
    VEHICLE = "vehicle"


class Availability(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"


class BookingStatus(str, Enum):
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


HOLDING_STATUSES = frozenset({BookingStatus.TENTATIVE, BookingStatus.CONFIRMED})


class BookingEntry(BaseModel):
    """A single reservation of a resource for an event."""
    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    event_id: str
    start: datetime
    end: datetime
    status: BookingStatus = Field(default=BookingStatus.CONFIRMED)

    # --- Check-in bookkeeping ---
    checkin_time: Optional[datetime] = None
    condition: Optional[str] = Field(default=None, description="Condition reported at check-in")
    notes: Optional[str] = None

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(start=self.start, end=self.end)

    @property
    def is_holding(self) -> bool:
        """True while the entry still blocks the resource."""
        return self.status in HOLDING_STATUSES

    def overlaps(self, window: TimeWindow) -> bool:
        return self.start < window.end and self.end > window.start


class ResourceIssue(BaseModel):
    """A defect reported against a resource, typically at check-in."""
    description: str
    severity: str = Field(default="low")
    reported_at: datetime
    event_id: Optional[str] = None


class Resource(BaseModel):
    """
    An allocatable unit. Availability and bookings are mutated only by the allocator.
    """
    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1)
    kind: ResourceKind
    category: str = Field(description="Personnel role, equipment subtype or vehicle subtype")

    availability: Availability = Field(default=Availability.AVAILABLE)
    location: Optional[Location] = Field(default=None, description="Last known position")

    bookings: List[BookingEntry] = Field(default_factory=list)

    # --- Maintenance ---
    last_maintenance_at: Optional[datetime] = None
    next_maintenance_at: Optional[datetime] = None
    condition: Optional[str] = None
    issues: List[ResourceIssue] = Field(default_factory=list)

    # Personnel resources point at the user who gets notified
    linked_user_id: Optional[str] = None

    # --- Personnel skills (lower-case tags) ---
    expertise: List[str] = Field(default_factory=list, description="Beats covered, e.g. politics, sports")
    languages: List[str] = Field(default_factory=list)

    version: int = Field(default=0, ge=0, description="Optimistic concurrency counter")

    # --- Booking queries ---

    def holding_bookings(self) -> List[BookingEntry]:
        return [b for b in self.bookings if b.is_holding]

    def conflicting_bookings(self, window: TimeWindow, ignore_event_id: Optional[str] = None) -> List[BookingEntry]:
        """Tentative/confirmed entries that intersect the window."""
        return [
            b for b in self.bookings
            if b.is_holding and b.overlaps(window) and b.event_id != ignore_event_id
        ]

    def is_free(self, window: TimeWindow, ignore_event_id: Optional[str] = None) -> bool:
        return not self.conflicting_bookings(window, ignore_event_id)

    def future_bookings(self, now: datetime) -> List[BookingEntry]:
        return [b for b in self.bookings if b.is_holding and b.end > now]

    def has_skills(self, expertise: Optional[Iterable[str]] = None, languages: Optional[Iterable[str]] = None) -> bool:
        """Each given filter needs at least one match; an empty filter matches everyone."""
        wanted = {e.lower() for e in expertise or ()}
        if wanted and not wanted & {e.lower() for e in self.expertise}:
            return False
        spoken = {lang.lower() for lang in languages or ()}
        if spoken and not spoken & {lang.lower() for lang in self.languages}:
            return False
        return True

    def booking_for(self, event_id: str, status: Optional[BookingStatus] = None) -> Optional[BookingEntry]:
        for booking in self.bookings:
            if booking.event_id == event_id and (status is None or booking.status == status):
                return booking
        return None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "res_cam_03",
            "name": "Abebe K.",
            "kind": "personnel",
            "category": "cameraman",
            "availability": "available",
            "location": {"name": "HQ", "coordinates": {"lat": 9.0108, "lng": 38.7613}},
            "linked_user_id": "user_cam_03",
            "expertise": ["politics", "event-coverage"],
            "languages": ["amharic", "english"]
        }
    })
