"""
Resource Allocation Engine.

This module turns a requirement manifest ("2 cameramen, 1 van") into concrete
bookings. It combines three steps:
1. Filtering (hard availability: status, booking overlap, maintenance).
2. Ranking (ResourceScorer: proximity, maintenance recency, load, expertise).
3. Committing (compare-and-swap writes, so two allocators racing for the
   same resource can never both book it).

Shortfall is a normal outcome, not an error. Booked personnel are told about
their booking; that notice is best-effort and never undoes the booking.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from models import (
    AllocationResult, Availability, BookingEntry, BookingStatus, Event, EventStatus,
    GrantedResource, Location, Resource, ResourceAllocation, ResourceIssue, ResourceKind, TimeWindow,
)
from .escalation import deliver
from .exceptions import (
    ConflictingBooking, Contended, NoActiveBooking, NotAvailable, ResourceInUse,
    TerminalState, UnknownEventId, UnknownResourceId, ValidationError,
)
from .ports import Notifier, Persistence
from .scoring import ResourceScorer
from .state import retry_on_conflict

logger = logging.getLogger(__name__)

BLOCKED_AVAILABILITY = frozenset({Availability.MAINTENANCE, Availability.UNAVAILABLE})

# Events that can still take new bookings
BOOKABLE_EVENT_STATUSES = frozenset({EventStatus.SCHEDULED, EventStatus.IN_PROGRESS, EventStatus.POSTPONED})


def validate_window(window: TimeWindow) -> TimeWindow:
    """Reject inverted/empty windows (including ones built with model_construct)."""
    if window is None or window.end <= window.start:
        raise ValidationError("Window end must be strictly after window start", field="window")
    return window


def validate_requirements(requirements: Dict[str, int]) -> Dict[str, int]:
    if not requirements:
        raise ValidationError("At least one resource category is required", field="requirements")
    cleaned = {}
    for category, count in requirements.items():
        if not isinstance(category, str) or not category.strip():
            raise ValidationError("Resource category must be a non-empty string", field="requirements")
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValidationError(
                f"Requested count for '{category}' must be a positive integer",
                field=f"requirements.{category}",
                value=count
            )
        cleaned[category.strip()] = count
    return cleaned


class ResourceAllocator:
    """
    Owns every mutation of resource availability and booking schedules.
    """

    def __init__(
        self,
        store: Persistence,
        scorer: Optional[ResourceScorer] = None,
        retry_attempts: int = 3,
        notifier: Optional[Notifier] = None
    ):
        self.store = store
        self.scorer = scorer or ResourceScorer()
        self.retry_attempts = retry_attempts
        self.notifier = notifier

    # --- Candidate Search ---

    @staticmethod
    def is_candidate(resource: Resource, window: TimeWindow) -> bool:
        """Hard availability check for allocation."""
        if resource.availability in BLOCKED_AVAILABILITY:
            return False
        if not resource.is_free(window):
            return False
        # Planned servicing inside the window takes the unit out of the pool
        if resource.next_maintenance_at and window.start <= resource.next_maintenance_at < window.end:
            return False
        return True

    def find_candidates(
        self,
        category: str,
        window: TimeWindow,
        location: Optional[Location],
        now: datetime,
        event_category: Optional[str] = None,
        expertise: Optional[Iterable[str]] = None,
        languages: Optional[Iterable[str]] = None
    ) -> List[Tuple[float, Resource]]:
        """
        Available resources of one category, best first (ties broken by id).
        `expertise` / `languages` narrow personnel only: each needs one match.
        """
        expertise = list(expertise or ())
        languages = list(languages or ())
        scored = []
        for resource in self.store.list_resources(category=category):
            if not self.is_candidate(resource, window):
                continue
            if resource.kind == ResourceKind.PERSONNEL and not resource.has_skills(expertise, languages):
                continue
            score = self.scorer.calculate_score(resource, location, now, event_category)
            scored.append((score, resource))
        scored.sort(key=lambda x: (-x[0], x[1].id))
        return scored

    # --- Allocation ---

    def allocate(
        self,
        event_id: str,
        requirements: Dict[str, int],
        now: datetime,
        expertise: Optional[Iterable[str]] = None,
        languages: Optional[Iterable[str]] = None
    ) -> AllocationResult:
        """
        Book the top-N candidates per category for the event's window.
        """
        requirements = validate_requirements(requirements)
        event = self._bookable_event(event_id)

        result = AllocationResult(event_id=event_id)
        granted_all: List[GrantedResource] = []

        try:
            for category, count in requirements.items():
                granted = self._allocate_category(event, category, count, now, expertise, languages)
                granted_all.extend(granted)
                if granted:
                    result.granted[category] = granted
                if len(granted) < count:
                    result.shortfall[category] = count - len(granted)
                    logger.warning(
                        f"Shortfall for event {event_id}: {category} needs {count}, got {len(granted)}"
                    )
        finally:
            # Whatever was booked is recorded on the event, even if a later category was contended
            if granted_all:
                self._record_allocations(event_id, granted_all, now)

        logger.info(
            f"Allocated {len(granted_all)} resources to event {event_id} "
            f"(shortfall: {result.shortfall or 'none'})"
        )
        return result

    def _bookable_event(self, event_id: str) -> Event:
        event = self.store.get_event(event_id)
        if event is None:
            raise UnknownEventId(event_id)
        if event.status not in BOOKABLE_EVENT_STATUSES:
            raise TerminalState(
                f"Event {event_id} is {event.status.value} and cannot take bookings",
                current_state=event.status.value
            )
        return event

    def _allocate_category(
        self,
        event: Event,
        category: str,
        count: int,
        now: datetime,
        expertise: Optional[Iterable[str]] = None,
        languages: Optional[Iterable[str]] = None
    ) -> List[GrantedResource]:
        granted: List[GrantedResource] = []
        candidates = self.find_candidates(
            category, event.window, event.location, now, event.category, expertise, languages
        )

        for score, candidate in candidates:
            if len(granted) >= count:
                break
            booking = self._try_book(candidate.id, event.id, event.window, now)
            if booking is None:
                # Lost the race for this one since the candidate query; move on
                logger.info(f"Resource {candidate.id} was taken before it could be booked")
                continue
            granted.append(GrantedResource(
                resource_id=candidate.id,
                name=candidate.name,
                category=category,
                score=round(score, 4),
                booking=booking
            ))
            self._notify_booked(candidate, f'You have been assigned to event "{event.title}" as {category}')
        return granted

    def _try_book(self, resource_id: str, event_id: str, window: TimeWindow, now: datetime) -> Optional[BookingEntry]:
        """
        Re-read, re-check and write one booking. Returns None when the resource
        is no longer a candidate; raises Contended when writes keep colliding.
        """
        def attempt() -> Optional[BookingEntry]:
            resource = self.store.get_resource(resource_id)
            if resource is None or not self.is_candidate(resource, window):
                return None
            booking = BookingEntry(
                event_id=event_id,
                start=window.start,
                end=window.end,
                status=BookingStatus.CONFIRMED
            )
            resource.bookings.append(booking)
            if window.contains(now):
                resource.availability = Availability.ASSIGNED
            self.store.save_resource(resource)
            return booking

        return retry_on_conflict(attempt, self.retry_attempts, f"resource {resource_id}")

    def _record_allocations(self, event_id: str, granted: List[GrantedResource], now: datetime) -> None:
        def mutate(event: Event) -> None:
            for g in granted:
                event.allocations.append(ResourceAllocation(
                    resource_id=g.resource_id,
                    category=g.category,
                    score=g.score,
                    allocated_at=now
                ))
        self._update_event(event_id, mutate)

    # --- Checkout / Checkin ---

    def checkout(
        self,
        resource_id: str,
        event_id: str,
        window: TimeWindow,
        now: datetime,
        condition: Optional[str] = None,
        notes: Optional[str] = None
    ) -> BookingEntry:
        """
        Explicitly book one named resource for an event.
        Unlike allocate(), failures here are errors: the caller asked for this unit.
        Only an 'available' resource can be checked out.
        """
        validate_window(window)
        event = self._bookable_event(event_id)

        def attempt() -> Tuple[Resource, BookingEntry]:
            resource = self.store.get_resource(resource_id)
            if resource is None:
                raise UnknownResourceId(resource_id)
            if resource.availability != Availability.AVAILABLE:
                raise NotAvailable(
                    f"Resource {resource_id} is currently {resource.availability.value}",
                    details={"resource_id": resource_id, "availability": resource.availability.value}
                )
            clashes = resource.conflicting_bookings(window)
            if clashes:
                raise ConflictingBooking(
                    f"Resource {resource_id} is already booked in that window",
                    details={
                        "resource_id": resource_id,
                        "conflicting_events": [b.event_id for b in clashes]
                    }
                )
            booking = BookingEntry(
                event_id=event_id,
                start=window.start,
                end=window.end,
                status=BookingStatus.CONFIRMED,
                condition=condition,
                notes=notes
            )
            resource.bookings.append(booking)
            if window.contains(now):
                resource.availability = Availability.ASSIGNED
            if condition:
                resource.condition = condition
            self.store.save_resource(resource)
            return resource, booking

        resource, booking = retry_on_conflict(attempt, self.retry_attempts, f"checkout of {resource_id}")

        def mutate(event: Event) -> None:
            event.allocations.append(ResourceAllocation(
                resource_id=resource_id,
                category=resource.category,
                allocated_at=now
            ))
        self._update_event(event_id, mutate)

        logger.info(f"Checked out {resource_id} for event {event_id} [{window.start} - {window.end})")
        self._notify_booked(resource, f'Resource "{resource.name}" has been checked out for event "{event.title}"')
        return booking

    def _notify_booked(self, resource: Resource, message: str) -> None:
        if self.notifier is None or not resource.linked_user_id:
            return
        deliver(self.notifier, [resource.linked_user_id], message, "medium")

    def checkin(
        self,
        resource_id: str,
        event_id: str,
        condition: str,
        now: datetime,
        issues: Optional[str] = None
    ) -> Resource:
        """
        Close the confirmed booking for the event and record the reported condition.
        Any reported issue sends the resource to maintenance.
        """
        def attempt() -> Resource:
            resource = self.store.get_resource(resource_id)
            if resource is None:
                raise UnknownResourceId(resource_id)
            booking = resource.booking_for(event_id, BookingStatus.CONFIRMED)
            if booking is None:
                raise NoActiveBooking(
                    f"No active booking of {resource_id} for event {event_id}",
                    details={"resource_id": resource_id, "event_id": event_id}
                )
            booking.status = BookingStatus.COMPLETED
            booking.checkin_time = now
            booking.condition = condition
            resource.condition = condition

            if issues and issues.strip():
                resource.issues.append(ResourceIssue(
                    description=issues.strip(),
                    reported_at=now,
                    event_id=event_id
                ))
                resource.availability = Availability.MAINTENANCE
            else:
                resource.availability = self.derive_availability(resource, now)
            return self.store.save_resource(resource)

        resource = retry_on_conflict(attempt, self.retry_attempts, f"checkin of {resource_id}")
        self._mark_released(event_id, [resource_id])

        logger.info(
            f"Checked in {resource_id} from event {event_id} "
            f"(condition={condition}, availability={resource.availability.value})"
        )
        return resource

    # --- Release / Rebook ---

    def release(self, event_id: str, now: datetime) -> List[str]:
        """
        Close every holding booking tied to the event.
        Bookings become 'completed' if the event already started, otherwise 'cancelled'.
        """
        event = self.store.get_event(event_id)
        started = False
        if event is not None:
            started = (
                event.status in (EventStatus.IN_PROGRESS, EventStatus.COMPLETED)
                or event.actual_start is not None
                or event.window.start <= now
            )
        final_status = BookingStatus.COMPLETED if started else BookingStatus.CANCELLED

        released = []
        for resource in self.store.resources_booked_for(event_id):
            if self._close_bookings(resource.id, event_id, final_status, now):
                released.append(resource.id)

        if released and event is not None:
            self._mark_released(event_id, released)

        logger.info(f"Released {len(released)} resources from event {event_id} as {final_status.value}")
        return released

    def _close_bookings(self, resource_id: str, event_id: str, final_status: BookingStatus, now: datetime) -> bool:
        def attempt() -> bool:
            resource = self.store.get_resource(resource_id)
            if resource is None:
                return False
            touched = False
            for booking in resource.bookings:
                if booking.event_id == event_id and booking.is_holding:
                    booking.status = final_status
                    touched = True
            if not touched:
                return False
            resource.availability = self.derive_availability(resource, now)
            self.store.save_resource(resource)
            return True

        return retry_on_conflict(attempt, self.retry_attempts, f"release of {resource_id}")

    def rebook(self, event_id: str, new_window: TimeWindow, now: datetime) -> Tuple[List[str], List[str]]:
        """
        Move an event's holding bookings to a new window.
        Resources that are busy in the new window lose the booking (cancelled).
        A resource keeps one entry per event; further entries are cancelled.
        Returns (kept, dropped) resource ids.
        """
        kept, dropped = [], []
        for resource in self.store.resources_booked_for(event_id):
            outcome = self._move_booking(resource.id, event_id, new_window, now)
            if outcome is True:
                kept.append(resource.id)
            elif outcome is False:
                dropped.append(resource.id)

        if dropped:
            self._mark_released(event_id, dropped)
            logger.warning(f"Reschedule of {event_id} dropped bookings for: {', '.join(dropped)}")
        return kept, dropped

    def _move_booking(self, resource_id: str, event_id: str, new_window: TimeWindow, now: datetime) -> Optional[bool]:
        def attempt() -> Optional[bool]:
            resource = self.store.get_resource(resource_id)
            if resource is None:
                return None
            holding = [b for b in resource.bookings if b.event_id == event_id and b.is_holding]
            if not holding:
                return None
            moved = resource.is_free(new_window, ignore_event_id=event_id)
            keep = holding[0] if moved else None
            for booking in holding:
                if booking is keep:
                    booking.start, booking.end = new_window.start, new_window.end
                else:
                    # One entry per resource and event survives a move
                    booking.status = BookingStatus.CANCELLED
            resource.availability = self.derive_availability(resource, now)
            self.store.save_resource(resource)
            return moved

        return retry_on_conflict(attempt, self.retry_attempts, f"rebook of {resource_id}")

    # --- Lifecycle ---

    def retire(self, resource_id: str, now: datetime) -> None:
        """Delete a resource. Refused while it holds a confirmed future booking."""
        resource = self.store.get_resource(resource_id)
        if resource is None:
            raise UnknownResourceId(resource_id)
        upcoming = [b for b in resource.future_bookings(now) if b.status == BookingStatus.CONFIRMED]
        if upcoming:
            raise ResourceInUse(
                f"Resource {resource_id} has {len(upcoming)} confirmed future bookings",
                details={"events": [b.event_id for b in upcoming]}
            )
        self.store.delete_resource(resource_id)
        logger.info(f"Retired resource {resource_id}")

    @staticmethod
    def derive_availability(resource: Resource, now: datetime) -> Availability:
        """
        Availability after a booking change. Maintenance/unavailable are sticky;
        otherwise 'assigned' only while a confirmed booking covers `now`.
        """
        if resource.availability in BLOCKED_AVAILABILITY:
            return resource.availability
        for booking in resource.bookings:
            if booking.status == BookingStatus.CONFIRMED and booking.start <= now < booking.end:
                return Availability.ASSIGNED
        return Availability.AVAILABLE

    # --- Event bookkeeping ---

    def _mark_released(self, event_id: str, resource_ids: List[str]) -> None:
        ids = set(resource_ids)

        def mutate(event: Event) -> None:
            for allocation in event.allocations:
                if allocation.resource_id in ids:
                    allocation.released = True
        self._update_event(event_id, mutate)

    def _update_event(self, event_id: str, mutate: Callable[[Event], None]) -> Optional[Event]:
        def attempt() -> Optional[Event]:
            event = self.store.get_event(event_id)
            if event is None:
                return None
            mutate(event)
            return self.store.save_event(event)

        return retry_on_conflict(attempt, self.retry_attempts, f"event {event_id}")
