"""
Calendar view of scheduled events.

Read-only formatting: turns Events into display entries with a colour
derived from status/priority and a text colour that stays readable on it.
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from models import ACTIVE_EVENT_STATUSES, Event, EventStatus, Location
from .ports import Persistence

STATUS_COLORS = {
    EventStatus.CANCELLED: "#95a5a6",
    EventStatus.COMPLETED: "#27ae60",
    EventStatus.IN_PROGRESS: "#3498db",
}

PRIORITY_COLORS = {
    "urgent": "#e74c3c",
    "high": "#e74c3c",
    "medium": "#f39c12",
    "low": "#2ecc71",
}

DEFAULT_COLOR = "#3498db"
ALL_DAY_THRESHOLD = timedelta(hours=24)


class CalendarEntry(BaseModel):
    """One event as a calendar widget wants it."""
    id: str
    title: str
    start: datetime
    end: datetime
    location: Location
    category: Optional[str] = None
    priority: Optional[str] = None
    status: str
    color: str = Field(description="Background colour, hex")
    text_color: str = Field(description="Foreground colour chosen for contrast")
    all_day: bool = False
    assigned_to_me: bool = False
    resources: int = Field(default=0, description="Number of live resource allocations")
    revision: int = 1


def event_color(event: Event) -> str:
    """Status wins over priority; scheduled/postponed events are coloured by priority."""
    if event.status in STATUS_COLORS:
        return STATUS_COLORS[event.status]
    priority = (event.priority or "").lower()
    return PRIORITY_COLORS.get(priority, DEFAULT_COLOR)


def text_color(background: str) -> str:
    hex_value = background.lstrip("#")
    r, g, b = (int(hex_value[i:i + 2], 16) for i in (0, 2, 4))
    luminance = (0.299 * r + 0.587 * g + 0.114 * b) / 255
    return "#000000" if luminance > 0.5 else "#ffffff"


def is_all_day(event: Event) -> bool:
    return event.window.duration >= ALL_DAY_THRESHOLD


class CalendarFormatter:
    def __init__(self, store: Persistence):
        self.store = store

    def entries(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Optional[Iterable[EventStatus]] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        department: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[CalendarEntry]:
        """
        Events intersecting [start, end), ordered by start.
        Defaults to active events only.
        """
        wanted = list(statuses) if statuses is not None else list(ACTIVE_EVENT_STATUSES)
        entries = []
        for event in self.store.list_events(wanted):
            if start is not None and event.window.end <= start:
                continue
            if end is not None and event.window.start >= end:
                continue
            if category and event.category != category:
                continue
            if priority and event.priority != priority:
                continue
            if department and event.department != department:
                continue
            entries.append(self.format(event, user_id))
        return entries

    def format(self, event: Event, user_id: Optional[str] = None) -> CalendarEntry:
        color = event_color(event)
        return CalendarEntry(
            id=event.id,
            title=event.title,
            start=event.window.start,
            end=event.window.end,
            location=event.location,
            category=event.category,
            priority=event.priority,
            status=event.status.value,
            color=color,
            text_color=text_color(color),
            all_day=is_all_day(event),
            assigned_to_me=self.is_assigned_to(event, user_id) if user_id else False,
            resources=len(event.active_allocations()),
            revision=event.revision
        )

    def is_assigned_to(self, event: Event, user_id: str) -> bool:
        for allocation in event.active_allocations():
            resource = self.store.get_resource(allocation.resource_id)
            if resource is not None and resource.linked_user_id == user_id:
                return True
        return False
