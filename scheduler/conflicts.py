"""
Conflict Detection Logic.

This module answers the question: "What else is happening at time T near place P?"
It never rejects anything. It reports two classes of collision and lets the
caller decide whether to block or override:
1. Temporal: active events whose window intersects the proposal.
2. Spatial: active events within a fixed radius whose window also intersects.
"""

from typing import Iterable, List, Optional

from models import (
    ACTIVE_EVENT_STATUSES, ConflictingEvent, ConflictSet, Event, Location, TimeWindow,
)
from .ports import Persistence


class ConflictDetector:
    """
    Read-only overlap/proximity checker over committed events.
    """

    def __init__(self, store: Persistence, radius_km: float = 5.0, result_cap: int = 20):
        self.store = store
        self.radius_km = radius_km
        self.result_cap = result_cap

    def find_conflicts(
        self,
        window: TimeWindow,
        location: Optional[Location] = None,
        exclude_event_id: Optional[str] = None
    ) -> ConflictSet:
        """
        Master check. `exclude_event_id` keeps an event from colliding with itself on reschedule.
        """
        candidates = self.store.list_events(ACTIVE_EVENT_STATUSES)
        return self.evaluate(window, location, candidates, exclude_event_id)

    def evaluate(
        self,
        window: TimeWindow,
        location: Optional[Location],
        candidates: Iterable[Event],
        exclude_event_id: Optional[str] = None
    ) -> ConflictSet:
        """Pure part of the check, split out so it can run over any event list."""
        temporal: List[ConflictingEvent] = []
        spatial: List[ConflictingEvent] = []

        for event in candidates:
            if event.id == exclude_event_id or not event.is_active:
                continue

            # Standard Overlap Logic: StartA < EndB and EndA > StartB
            if not window.overlaps(event.window):
                continue

            temporal.append(self._describe(event))

            if location is not None:
                distance = location.distance_km(event.location)
                # Closed boundary: exactly `radius_km` away still counts as nearby
                if distance is not None and distance <= self.radius_km:
                    spatial.append(self._describe(event, distance))

        temporal.sort(key=lambda c: (c.start, c.event_id))
        spatial.sort(key=lambda c: (c.distance_km, c.start, c.event_id))

        return ConflictSet(
            temporal=temporal[:self.result_cap],
            spatial=spatial[:self.result_cap]
        )

    @staticmethod
    def _describe(event: Event, distance_km: Optional[float] = None) -> ConflictingEvent:
        return ConflictingEvent(
            event_id=event.id,
            title=event.title,
            start=event.window.start,
            end=event.window.end,
            status=event.status.value,
            priority=event.priority,
            distance_km=round(distance_km, 3) if distance_km is not None else None
        )
