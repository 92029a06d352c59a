"""
Status state machines for requests, events and assignments.

Each entity has a fixed table of legal moves. Terminal statuses raise
TerminalState; any other illegal move raises InvalidTransition. The
workflow methods persist the change (compare-and-swap, retried) and stamp
the derived timing fields the escalation sweeps read.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from models import (
    Assignment, AssignmentStatus, CoverageRequest, EscalationRecord, Event, EventStatus,
    RequestStatus,
)
from .allocator import ResourceAllocator
from .config import SchedulerSettings
from .exceptions import (
    InvalidTransition, TerminalState, UnknownAssignmentId, UnknownEventId, UnknownRequestId,
    ValidationError,
)
from .ports import Persistence
from .state import retry_on_conflict

logger = logging.getLogger(__name__)

# --- Transition tables ---

REQUEST_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({RequestStatus.PENDING_APPROVAL}),
    RequestStatus.PENDING_APPROVAL: frozenset({
        RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.PENDING_REVISION
    }),
    RequestStatus.PENDING_REVISION: frozenset({RequestStatus.PENDING_APPROVAL}),
    RequestStatus.APPROVED: frozenset({RequestStatus.SCHEDULED, RequestStatus.ARCHIVED}),
    RequestStatus.SCHEDULED: frozenset({RequestStatus.APPROVED, RequestStatus.ARCHIVED}),
    RequestStatus.REJECTED: frozenset({RequestStatus.ARCHIVED}),
    RequestStatus.ARCHIVED: frozenset(),
}
# A rejected request can only be filed away
REQUEST_TERMINAL = frozenset({RequestStatus.REJECTED, RequestStatus.ARCHIVED})

# postponed -> scheduled is only reachable through a reschedule
EVENT_TRANSITIONS: Dict[EventStatus, FrozenSet[EventStatus]] = {
    EventStatus.SCHEDULED: frozenset({
        EventStatus.IN_PROGRESS, EventStatus.CANCELLED, EventStatus.POSTPONED
    }),
    EventStatus.IN_PROGRESS: frozenset({
        EventStatus.COMPLETED, EventStatus.CANCELLED, EventStatus.POSTPONED
    }),
    EventStatus.POSTPONED: frozenset({EventStatus.CANCELLED}),
    EventStatus.COMPLETED: frozenset(),
    EventStatus.CANCELLED: frozenset(),
}
EVENT_TERMINAL = frozenset({EventStatus.COMPLETED, EventStatus.CANCELLED})

ASSIGNMENT_TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.PENDING: frozenset({
        AssignmentStatus.ACCEPTED, AssignmentStatus.DECLINED, AssignmentStatus.CANCELLED
    }),
    AssignmentStatus.ACCEPTED: frozenset({AssignmentStatus.IN_PROGRESS, AssignmentStatus.CANCELLED}),
    AssignmentStatus.IN_PROGRESS: frozenset({AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED}),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.DECLINED: frozenset(),
    AssignmentStatus.CANCELLED: frozenset(),
}
ASSIGNMENT_TERMINAL = frozenset({
    AssignmentStatus.COMPLETED, AssignmentStatus.DECLINED, AssignmentStatus.CANCELLED
})


def check_transition(kind: str, current, target, table: Dict, terminal: FrozenSet) -> None:
    """Raise unless `current -> target` is a legal move in `table`."""
    if target in table.get(current, frozenset()):
        return
    allowed = sorted(s.value for s in table.get(current, ()))
    if current in terminal:
        raise TerminalState(
            f"{kind} is {current.value} and can no longer change status",
            current_state=current.value
        )
    raise InvalidTransition(
        f"{kind} cannot move from {current.value} to {target.value}",
        current_state=current.value,
        allowed_states=allowed
    )


class StatusWorkflow:
    """
    Applies status changes and their side effects.
    Completing or cancelling an event releases its bookings.
    """

    def __init__(self, store: Persistence, allocator: ResourceAllocator, settings: SchedulerSettings):
        self.store = store
        self.allocator = allocator
        self.settings = settings
        self.retry_attempts = settings.allocation_retry_attempts

    # --- Coverage Requests ---

    def transition_request(
        self,
        request_id: str,
        target: RequestStatus,
        now: datetime,
        actor_id: Optional[str] = None,
        note: Optional[str] = None
    ) -> CoverageRequest:
        """
        Move a request through the approval workflow.
        `note` is the rejection reason or the revision notes, depending on target.
        """
        if target == RequestStatus.REJECTED and not (note and note.strip()):
            raise ValidationError("A rejection needs a reason", field="note")

        def attempt() -> CoverageRequest:
            request = self.store.get_request(request_id)
            if request is None:
                raise UnknownRequestId(request_id)
            check_transition("CoverageRequest", request.status, target, REQUEST_TRANSITIONS, REQUEST_TERMINAL)
            self._apply_request(request, target, now, actor_id, note)
            return self.store.save_request(request)

        request = retry_on_conflict(attempt, self.retry_attempts, f"request {request_id}")
        logger.info(f"Request {request_id} -> {target.value}")
        return request

    def _apply_request(
        self,
        request: CoverageRequest,
        target: RequestStatus,
        now: datetime,
        actor_id: Optional[str],
        note: Optional[str]
    ) -> None:
        if target == RequestStatus.PENDING_APPROVAL:
            # A fresh approval clock; a stale due instant from an earlier round is replaced
            if request.approval_due_at is None or request.approval_due_at <= now:
                request.approval_due_at = now + timedelta(hours=self.settings.default_approval_hours)
            request.escalation = EscalationRecord()
        elif target == RequestStatus.APPROVED:
            if actor_id:
                request.approver_id = actor_id
        elif target == RequestStatus.REJECTED:
            request.rejection_reason = note.strip()
            if actor_id:
                request.approver_id = actor_id
        elif target == RequestStatus.PENDING_REVISION:
            request.revision_notes = note
        request.status = target
        request.updated_at = now

    # --- Events ---

    def transition_event(self, event_id: str, target: EventStatus, now: datetime) -> Event:
        """
        Forward-only event status change. completed/cancelled release bookings.
        """
        def attempt() -> Event:
            event = self.store.get_event(event_id)
            if event is None:
                raise UnknownEventId(event_id)
            check_transition("Event", event.status, target, EVENT_TRANSITIONS, EVENT_TERMINAL)
            self._apply_event(event, target, now)
            return self.store.save_event(event)

        event = retry_on_conflict(attempt, self.retry_attempts, f"event {event_id}")
        logger.info(f"Event {event_id} -> {target.value}")

        if target in EVENT_TERMINAL:
            self.allocator.release(event_id, now)
            event = self.store.get_event(event_id)
        return event

    @staticmethod
    def _apply_event(event: Event, target: EventStatus, now: datetime) -> None:
        if target == EventStatus.IN_PROGRESS:
            event.actual_start = now
        elif target in EVENT_TERMINAL:
            event.actual_end = now
        event.status = target

    def delete_event(self, event_id: str, now: datetime) -> None:
        """
        Remove an event that has not run. Bookings are released before the
        event disappears and the source request goes back to 'approved'.
        """
        event = self.store.get_event(event_id)
        if event is None:
            raise UnknownEventId(event_id)
        if event.status in (EventStatus.IN_PROGRESS, EventStatus.COMPLETED):
            raise InvalidTransition(
                f"Event {event_id} is {event.status.value} and cannot be deleted",
                current_state=event.status.value,
                allowed_states=[EventStatus.SCHEDULED.value, EventStatus.POSTPONED.value, EventStatus.CANCELLED.value]
            )

        self.allocator.release(event_id, now)
        self.store.delete_event(event_id)

        def reopen() -> None:
            request = self.store.get_request(event.request_id)
            if request is None or request.status != RequestStatus.SCHEDULED:
                return
            request.status = RequestStatus.APPROVED
            request.updated_at = now
            self.store.save_request(request)

        retry_on_conflict(reopen, self.retry_attempts, f"request {event.request_id}")
        logger.info(f"Deleted event {event_id}; request {event.request_id} reopened")

    # --- Assignments ---

    def transition_assignment(self, assignment_id: str, target: AssignmentStatus, now: datetime) -> Assignment:
        def attempt() -> Assignment:
            assignment = self.store.get_assignment(assignment_id)
            if assignment is None:
                raise UnknownAssignmentId(assignment_id)
            check_transition(
                "Assignment", assignment.status, target, ASSIGNMENT_TRANSITIONS, ASSIGNMENT_TERMINAL
            )
            if target == AssignmentStatus.ACCEPTED:
                assignment.accepted_at = now
            elif target == AssignmentStatus.IN_PROGRESS:
                assignment.actual_start = now
            elif target == AssignmentStatus.COMPLETED:
                assignment.actual_end = now
            assignment.status = target
            return self.store.save_assignment(assignment)

        assignment = retry_on_conflict(attempt, self.retry_attempts, f"assignment {assignment_id}")
        logger.info(f"Assignment {assignment_id} -> {target.value}")
        return assignment
