"""
Scheduler State Management.

This module acts as the 'Memory' of the system: an in-memory implementation
of the Persistence port. It tracks:
1. Coverage requests, events, resources and assignments.
2. A category index over resources so allocation queries stay cheap.
3. Per-entity versions, checked on every write (compare-and-swap).

Reads hand out deep copies, so two handlers racing on the same resource each
work on their own snapshot; whichever writes second sees a VersionConflict
instead of silently overwriting the first booking.
"""

import logging
import threading
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, TypeVar

from pydantic import BaseModel

from models import (
    Assignment, AssignmentStatus, CoverageRequest, Event, EventStatus,
    RequestStatus, Resource, ResourceKind,
)
from .exceptions import Contended, VersionConflict

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class CoverageStore:
    """
    Thread-safe versioned store.
    A write must carry the version it read; the stored copy gets version + 1.
    """

    def __init__(self):
        self._lock = threading.RLock()

        self._requests: Dict[str, CoverageRequest] = {}
        self._events: Dict[str, Event] = {}
        self._resources: Dict[str, Resource] = {}
        self._assignments: Dict[str, Assignment] = {}

        # Resource index (category -> ids)
        self._resources_by_category: Dict[str, Set[str]] = defaultdict(set)

    # --- Generic CAS write ---

    def _write(self, table: Dict[str, T], entity: T, label: str) -> T:
        with self._lock:
            current = table.get(entity.id)
            actual = current.version if current is not None else 0
            if entity.version != actual:
                raise VersionConflict(label, entity.id, entity.version, actual)
            stored = entity.model_copy(deep=True)
            stored.version = actual + 1
            table[entity.id] = stored
            return stored.model_copy(deep=True)

    @staticmethod
    def _read(table: Dict[str, T], key: str) -> Optional[T]:
        found = table.get(key)
        return found.model_copy(deep=True) if found is not None else None

    # --- Coverage Requests ---

    def get_request(self, request_id: str) -> Optional[CoverageRequest]:
        with self._lock:
            return self._read(self._requests, request_id)

    def save_request(self, request: CoverageRequest) -> CoverageRequest:
        return self._write(self._requests, request, "CoverageRequest")

    def list_requests(self, statuses: Optional[Iterable[RequestStatus]] = None) -> List[CoverageRequest]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                r.model_copy(deep=True) for r in self._requests.values()
                if wanted is None or r.status in wanted
            ]

    # --- Events ---

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            return self._read(self._events, event_id)

    def save_event(self, event: Event) -> Event:
        return self._write(self._events, event, "Event")

    def delete_event(self, event_id: str) -> None:
        with self._lock:
            self._events.pop(event_id, None)

    def list_events(self, statuses: Optional[Iterable[EventStatus]] = None) -> List[Event]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            events = [
                e.model_copy(deep=True) for e in self._events.values()
                if wanted is None or e.status in wanted
            ]
        events.sort(key=lambda e: (e.window.start, e.id))
        return events

    # --- Resources ---

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        with self._lock:
            return self._read(self._resources, resource_id)

    def save_resource(self, resource: Resource) -> Resource:
        with self._lock:
            previous = self._resources.get(resource.id)
            stored = self._write(self._resources, resource, "Resource")
            if previous is not None and previous.category != resource.category:
                self._resources_by_category[previous.category].discard(resource.id)
            self._resources_by_category[resource.category].add(resource.id)
            return stored

    def delete_resource(self, resource_id: str) -> None:
        with self._lock:
            removed = self._resources.pop(resource_id, None)
            if removed is not None:
                self._resources_by_category[removed.category].discard(resource_id)

    def list_resources(self, category: Optional[str] = None, kind: Optional[ResourceKind] = None) -> List[Resource]:
        with self._lock:
            if category is None:
                ids = list(self._resources)
            else:
                ids = list(self._resources_by_category.get(category, ()))
            resources = [
                self._resources[i].model_copy(deep=True) for i in ids
                if kind is None or self._resources[i].kind == kind
            ]
        resources.sort(key=lambda r: r.id)
        return resources

    def resources_booked_for(self, event_id: str) -> List[Resource]:
        """Every resource that has any booking entry (any status) for the event."""
        with self._lock:
            return [
                r.model_copy(deep=True) for r in self._resources.values()
                if any(b.event_id == event_id for b in r.bookings)
            ]

    # --- Assignments ---

    def get_assignment(self, assignment_id: str) -> Optional[Assignment]:
        with self._lock:
            return self._read(self._assignments, assignment_id)

    def save_assignment(self, assignment: Assignment) -> Assignment:
        return self._write(self._assignments, assignment, "Assignment")

    def list_assignments(self, statuses: Optional[Iterable[AssignmentStatus]] = None) -> List[Assignment]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return [
                a.model_copy(deep=True) for a in self._assignments.values()
                if wanted is None or a.status in wanted
            ]

    def clear(self) -> None:
        """Reset state (useful for testing or re-running the demo)."""
        with self._lock:
            self._requests.clear()
            self._events.clear()
            self._resources.clear()
            self._assignments.clear()
            self._resources_by_category.clear()


def retry_on_conflict(operation, attempts: int, label: str):
    """
    Run a read-modify-write `operation` until it stops hitting VersionConflict.
    The operation must redo its reads on every call. Raises Contended once
    `attempts` tries have all lost the race.
    """
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except VersionConflict as exc:
            last_error = exc
            logger.info(f"Version conflict on {label} (attempt {attempt}/{attempts}): {exc.message}")
    raise Contended(
        f"Gave up on {label} after {attempts} conflicting writes",
        details={"attempts": attempts, "last_conflict": last_error.details if last_error else None},
    )
