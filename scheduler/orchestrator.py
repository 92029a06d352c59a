"""
The Coverage Scheduling Orchestrator.

This is the single entry point other subsystems call. It composes:
1. ConflictDetector (report collisions, never reject).
2. ResourceAllocator (book, release, checkout/checkin).
3. EscalationEngine + ReminderService (periodic overdue sweeps).
4. StatusWorkflow (forward-only state machines).

Every write goes through the store's compare-and-swap; events also carry a
`revision` the caller can pin (`expected_revision`) to detect stale edits.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from models import (
    AllocationResult, Assignment, AssignmentStatus, BookingEntry, ConflictSet, CoverageRequest,
    EscalationOutcome, EscalationReport, Event, EventStatus, Incident, Location, RequestStatus,
    Resource, ScheduleOutcome, TimeWindow,
)
from .advisor import CrewAdvisor, CrewSuggestion
from .allocator import ResourceAllocator, validate_window
from .calendar import CalendarEntry, CalendarFormatter
from .config import SchedulerSettings, get_settings
from .conflicts import ConflictDetector
from .escalation import EscalationEngine, deliver
from .exceptions import (
    NotApproved, StaleRevision, TerminalState, UnknownEventId, UnknownRequestId, ValidationError,
)
from .jobs import JobRunner
from .ports import Directory, Notifier, Persistence
from .reminders import ReminderService
from .scoring import ResourceScorer
from .state import retry_on_conflict
from .transitions import StatusWorkflow

logger = logging.getLogger(__name__)

RESCHEDULE_BLOCKED = frozenset({EventStatus.COMPLETED, EventStatus.CANCELLED})


class CoverageScheduler:
    """
    Facade over the scheduling core.
    Collaborators (store, notifier, directory) are injected; policy comes from settings.
    """

    def __init__(
        self,
        store: Persistence,
        notifier: Notifier,
        directory: Directory,
        settings: Optional[SchedulerSettings] = None,
        advisor_model=None
    ):
        self.store = store
        self.notifier = notifier
        self.directory = directory
        self.settings = settings or get_settings()

        s = self.settings
        self.detector = ConflictDetector(store, radius_km=s.conflict_radius_km, result_cap=s.conflict_result_cap)
        self.scorer = ResourceScorer(
            weights=s.scoring,
            proximity_horizon_km=s.proximity_horizon_km,
            maintenance_horizon_days=s.maintenance_horizon_days,
            load_horizon=s.load_horizon
        )
        self.allocator = ResourceAllocator(
            store, self.scorer, retry_attempts=s.allocation_retry_attempts, notifier=notifier
        )
        self.workflow = StatusWorkflow(store, self.allocator, s)
        self.escalation = EscalationEngine(store, notifier, directory, s)
        self.reminders = ReminderService(store, notifier, s)
        self.calendar_formatter = CalendarFormatter(store)
        self.advisor = CrewAdvisor(self.allocator, s, model=advisor_model)

    # --- Conflict Detection ---

    def check_conflicts(
        self,
        window: TimeWindow,
        location: Optional[Location] = None,
        exclude_event_id: Optional[str] = None
    ) -> ConflictSet:
        validate_window(window)
        return self.detector.find_conflicts(window, location, exclude_event_id)

    # --- Scheduling ---

    def schedule_event(
        self,
        request_id: str,
        window: TimeWindow,
        location: Optional[Location] = None,
        override_conflicts: bool = False,
        now: Optional[datetime] = None
    ) -> ScheduleOutcome:
        """
        Turn an approved request into an Event.
        Conflicts without override return the ConflictSet and write nothing.
        """
        validate_window(window)
        now = now or datetime.now()

        request = self.store.get_request(request_id)
        if request is None:
            raise UnknownRequestId(request_id)
        if request.status != RequestStatus.APPROVED:
            raise NotApproved(
                f"Request {request_id} is {request.status.value}; only approved requests can be scheduled",
                current_state=request.status.value,
                allowed_states=[RequestStatus.APPROVED.value]
            )

        location = location or request.location
        conflicts = self.detector.find_conflicts(window, location)
        if not conflicts.is_empty and not override_conflicts:
            logger.info(f"Scheduling {request_id} blocked by {len(conflicts.event_ids())} conflicting events")
            return ScheduleOutcome(conflicts=conflicts)

        event = self.store.save_event(Event(
            id=f"evt_{uuid4().hex[:10]}",
            request_id=request.id,
            title=request.title,
            category=request.category,
            priority=request.priority.value,
            department=request.department or self.settings.default_department,
            window=window,
            location=location,
            status=EventStatus.SCHEDULED,
            revision=1
        ))

        # NotApproved is re-checked under CAS: a concurrent reject/schedule loses the event
        def mark_scheduled() -> CoverageRequest:
            current = self.store.get_request(request_id)
            if current is None or current.status != RequestStatus.APPROVED:
                raise NotApproved(
                    f"Request {request_id} changed while scheduling",
                    current_state=current.status.value if current else None
                )
            current.status = RequestStatus.SCHEDULED
            current.updated_at = now
            return self.store.save_request(current)

        try:
            retry_on_conflict(mark_scheduled, self.settings.allocation_retry_attempts, f"request {request_id}")
        except Exception:
            self.store.delete_event(event.id)
            raise

        if conflicts.is_empty:
            logger.info(f"Scheduled event {event.id} for request {request_id}")
        else:
            logger.warning(f"Scheduled event {event.id} for request {request_id} overriding conflicts with {conflicts.event_ids()}")
        deliver(
            self.notifier,
            [request.requester_id],
            f'Your coverage request "{request.title}" has been scheduled for {window.start:%Y-%m-%d %H:%M}',
            "medium"
        )
        return ScheduleOutcome(event=event, conflicts=conflicts, overridden=not conflicts.is_empty)

    def reschedule_event(
        self,
        event_id: str,
        new_window: TimeWindow,
        override_conflicts: bool = False,
        now: Optional[datetime] = None,
        expected_revision: Optional[int] = None,
        location: Optional[Location] = None
    ) -> ScheduleOutcome:
        """
        Move an event. The event never conflicts with itself. Bookings follow
        the new window where the resource is still free; the rest are dropped.
        """
        validate_window(new_window)
        now = now or datetime.now()

        event = self.store.get_event(event_id)
        if event is None:
            raise UnknownEventId(event_id)
        self._guard_reschedule(event, expected_revision)

        target_location = location or event.location
        conflicts = self.detector.find_conflicts(new_window, target_location, exclude_event_id=event_id)
        if not conflicts.is_empty and not override_conflicts:
            return ScheduleOutcome(conflicts=conflicts)

        def attempt() -> Event:
            current = self.store.get_event(event_id)
            if current is None:
                raise UnknownEventId(event_id)
            self._guard_reschedule(current, expected_revision)
            current.window = new_window
            current.location = target_location
            if current.status == EventStatus.POSTPONED:
                current.status = EventStatus.SCHEDULED
            current.revision += 1
            # New window, new reminder horizons
            current.reminders_sent = set()
            return self.store.save_event(current)

        updated = retry_on_conflict(attempt, self.settings.allocation_retry_attempts, f"event {event_id}")
        _, dropped = self.allocator.rebook(event_id, new_window, now)
        if dropped:
            updated = self.store.get_event(event_id)

        logger.info(f"Rescheduled event {event_id} to revision {updated.revision}")
        return ScheduleOutcome(
            event=updated,
            conflicts=conflicts,
            overridden=not conflicts.is_empty,
            dropped_resources=dropped
        )

    @staticmethod
    def _guard_reschedule(event: Event, expected_revision: Optional[int]) -> None:
        if event.status in RESCHEDULE_BLOCKED:
            raise TerminalState(
                f"Event {event.id} is {event.status.value} and cannot be rescheduled",
                current_state=event.status.value
            )
        if expected_revision is not None and event.revision != expected_revision:
            raise StaleRevision(
                f"Event {event.id} is at revision {event.revision}, not {expected_revision}",
                details={"event_id": event.id, "expected": expected_revision, "actual": event.revision}
            )

    # --- Resources ---

    def allocate_resources(
        self,
        event_id: str,
        requirements: Dict[str, int],
        now: Optional[datetime] = None,
        expertise: Optional[Iterable[str]] = None,
        languages: Optional[Iterable[str]] = None
    ) -> AllocationResult:
        """Personnel can be narrowed by `expertise` and `languages` (any match each)."""
        return self.allocator.allocate(event_id, requirements, now or datetime.now(), expertise, languages)

    def release_resources(self, event_id: str, now: Optional[datetime] = None) -> List[str]:
        if self.store.get_event(event_id) is None:
            raise UnknownEventId(event_id)
        return self.allocator.release(event_id, now or datetime.now())

    def checkout_resource(
        self,
        resource_id: str,
        event_id: str,
        window: TimeWindow,
        now: Optional[datetime] = None,
        condition: Optional[str] = None,
        notes: Optional[str] = None
    ) -> BookingEntry:
        return self.allocator.checkout(resource_id, event_id, window, now or datetime.now(), condition, notes)

    def checkin_resource(
        self,
        resource_id: str,
        event_id: str,
        condition: str,
        issues: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Resource:
        return self.allocator.checkin(resource_id, event_id, condition, now or datetime.now(), issues)

    def retire_resource(self, resource_id: str, now: Optional[datetime] = None) -> None:
        self.allocator.retire(resource_id, now or datetime.now())

    def suggest_resources(
        self,
        event_id: str,
        category: str,
        limit: int = 5,
        now: Optional[datetime] = None
    ) -> List[CrewSuggestion]:
        event = self.store.get_event(event_id)
        if event is None:
            raise UnknownEventId(event_id)
        return self.advisor.suggest(
            category, event.window, event.location, now or datetime.now(), limit,
            event_title=event.title, event_category=event.category
        )

    # --- Status transitions ---

    def submit_request(self, request_id: str, now: Optional[datetime] = None) -> CoverageRequest:
        return self.workflow.transition_request(request_id, RequestStatus.PENDING_APPROVAL, now or datetime.now())

    def approve_request(self, request_id: str, approver_id: str, now: Optional[datetime] = None) -> CoverageRequest:
        return self.workflow.transition_request(
            request_id, RequestStatus.APPROVED, now or datetime.now(), actor_id=approver_id
        )

    def reject_request(
        self,
        request_id: str,
        approver_id: str,
        reason: str,
        now: Optional[datetime] = None
    ) -> CoverageRequest:
        return self.workflow.transition_request(
            request_id, RequestStatus.REJECTED, now or datetime.now(), actor_id=approver_id, note=reason
        )

    def request_revision(self, request_id: str, notes: str, now: Optional[datetime] = None) -> CoverageRequest:
        return self.workflow.transition_request(
            request_id, RequestStatus.PENDING_REVISION, now or datetime.now(), note=notes
        )

    def archive_request(self, request_id: str, now: Optional[datetime] = None) -> CoverageRequest:
        return self.workflow.transition_request(request_id, RequestStatus.ARCHIVED, now or datetime.now())

    def transition_event(self, event_id: str, status: EventStatus, now: Optional[datetime] = None) -> Event:
        return self.workflow.transition_event(event_id, status, now or datetime.now())

    def delete_event(self, event_id: str, now: Optional[datetime] = None) -> None:
        self.workflow.delete_event(event_id, now or datetime.now())

    def create_assignment(
        self,
        event_id: str,
        assignee_id: str,
        assigned_by: Optional[str] = None,
        resource_id: Optional[str] = None,
        window: Optional[TimeWindow] = None,
        now: Optional[datetime] = None
    ) -> Assignment:
        """Hand work on an event to a person. Defaults to the event's own window."""
        event = self.store.get_event(event_id)
        if event is None:
            raise UnknownEventId(event_id)
        if not assignee_id:
            raise ValidationError("An assignment needs an assignee", field="assignee_id")
        assignment = self.store.save_assignment(Assignment(
            id=f"asg_{uuid4().hex[:10]}",
            event_id=event_id,
            resource_id=resource_id,
            assignee_id=assignee_id,
            assigned_by=assigned_by,
            department=event.department,
            window=validate_window(window) if window is not None else event.window,
            status=AssignmentStatus.PENDING,
            created_at=now or datetime.now()
        ))
        deliver(
            self.notifier,
            [assignee_id],
            f'You have been assigned to "{event.title}" starting {assignment.window.start:%Y-%m-%d %H:%M}',
            "medium"
        )
        return assignment

    def transition_assignment(
        self,
        assignment_id: str,
        status: AssignmentStatus,
        now: Optional[datetime] = None
    ) -> Assignment:
        return self.workflow.transition_assignment(assignment_id, status, now or datetime.now())

    def add_incident(
        self,
        event_id: str,
        kind: str,
        description: str,
        severity: str = "medium",
        reported_by: str = "system",
        now: Optional[datetime] = None
    ) -> Event:
        if not description or not description.strip():
            raise ValidationError("Incident description is required", field="description")
        incident = Incident(
            kind=kind,
            description=description.strip(),
            severity=severity,
            reported_by=reported_by,
            reported_at=now or datetime.now()
        )

        def attempt() -> Event:
            event = self.store.get_event(event_id)
            if event is None:
                raise UnknownEventId(event_id)
            event.incidents.append(incident)
            return self.store.save_event(event)

        return retry_on_conflict(attempt, self.settings.allocation_retry_attempts, f"event {event_id}")

    # --- Escalation & Reminders ---

    def run_escalation_pass(self, now: datetime) -> EscalationReport:
        return self.escalation.run_escalation_pass(now)

    def escalate_manually(
        self,
        kind: str,
        item_id: str,
        target_tier: int,
        reason: str,
        now: Optional[datetime] = None
    ) -> Optional[EscalationOutcome]:
        return self.escalation.escalate_manually(kind, item_id, target_tier, reason, now or datetime.now())

    def run_sla_pass(self, now: datetime) -> EscalationReport:
        return self.reminders.run_sla_pass(now)

    def run_event_reminders(self, now: datetime, hours_before: Optional[int] = None) -> EscalationReport:
        return self.reminders.run_event_reminders(now, hours_before)

    # --- Calendar ---

    def calendar(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        statuses: Optional[Iterable[EventStatus]] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        department: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[CalendarEntry]:
        return self.calendar_formatter.entries(start, end, statuses, category, priority, department, user_id)

    # --- Background jobs ---

    def build_job_runner(self, clock=datetime.now) -> JobRunner:
        """A runner with the three periodic sweeps registered, not yet started."""
        runner = JobRunner(clock=clock)
        runner.add("escalation", self.settings.escalation_interval, self.run_escalation_pass)
        runner.add("sla_alerts", self.settings.sla_interval, self.run_sla_pass)
        runner.add("event_reminders", self.settings.reminder_interval, self.run_event_reminders)
        return runner
