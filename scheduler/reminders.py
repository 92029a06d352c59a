"""
Time-based reminder sweeps that sit beside the escalation ladder:
SLA deadline alerts and upcoming-event reminders.

Both follow the escalation engine's rule: mark the item as reminded first,
then deliver, so a sweep that runs twice never double-notifies.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from models import (
    AssignmentStatus, EscalationReport, Event, EventStatus, ReminderOutcome, RequestStatus,
)
from .config import SchedulerSettings
from .escalation import deliver, run_isolated
from .ports import Notifier, Persistence
from .state import retry_on_conflict

logger = logging.getLogger(__name__)

SLA_WATCHED_STATUSES = (RequestStatus.APPROVED, RequestStatus.SCHEDULED)
_LIVE_ASSIGNMENTS = (AssignmentStatus.PENDING, AssignmentStatus.ACCEPTED, AssignmentStatus.IN_PROGRESS)


class ReminderService:
    def __init__(self, store: Persistence, notifier: Notifier, settings: SchedulerSettings):
        self.store = store
        self.notifier = notifier
        self.settings = settings

    # --- SLA alerts ---

    def run_sla_pass(self, now: datetime) -> EscalationReport:
        """
        Alert requester and approver once when a request's SLA deadline is
        less than `sla_alert_window_hours` away (and not yet passed).
        """
        report = EscalationReport(ran_at=now)
        horizon = now + timedelta(hours=self.settings.sla_alert_window_hours)

        for request in self.store.list_requests(SLA_WATCHED_STATUSES):
            if request.sla_deadline is None or request.sla_alert_sent_at is not None:
                continue
            if not (now < request.sla_deadline <= horizon):
                continue
            run_isolated(report, "sla", request.id, lambda r=request: self._alert_sla(report, r.id, now))

        logger.info(f"SLA pass done: {len(report.reminders)} alerts, {len(report.failures)} failures")
        return report

    def _alert_sla(self, report: EscalationReport, request_id: str, now: datetime) -> None:
        def claim():
            request = self.store.get_request(request_id)
            if request is None or request.sla_alert_sent_at is not None:
                return None
            request.sla_alert_sent_at = now
            return self.store.save_request(request)

        request = retry_on_conflict(claim, self.settings.allocation_retry_attempts, f"request {request_id}")
        if request is None:
            return

        hours_left = (request.sla_deadline - now).total_seconds() / 3600
        message = (
            f'Urgent: coverage request "{request.title}" has {hours_left:.1f} hours '
            f"remaining until SLA deadline"
        )
        recipients = [r for r in (request.requester_id, request.approver_id) if r]
        delivered, _ = deliver(self.notifier, list(dict.fromkeys(recipients)), message, "critical")
        report.reminders.append(ReminderOutcome(kind="sla", item_id=request_id, recipients=delivered))

    # --- Upcoming events ---

    def run_event_reminders(self, now: datetime, hours_before: Optional[int] = None) -> EscalationReport:
        """
        Remind the people working an event that it starts soon.
        Runs every configured horizon when `hours_before` is None.
        """
        report = EscalationReport(ran_at=now)
        horizons = [hours_before] if hours_before is not None else list(self.settings.event_reminder_hours)

        events = self.store.list_events([EventStatus.SCHEDULED])
        for hours in horizons:
            cutoff = now + timedelta(hours=hours)
            for event in events:
                if not (now <= event.window.start <= cutoff):
                    continue
                if hours in event.reminders_sent:
                    continue
                run_isolated(
                    report, "event", event.id,
                    lambda e=event, h=hours: self._remind_event(report, e.id, h, now)
                )

        logger.info(f"Event reminders done: {len(report.reminders)} events reminded")
        return report

    def _remind_event(self, report: EscalationReport, event_id: str, hours: int, now: datetime) -> None:
        def claim():
            event = self.store.get_event(event_id)
            if event is None or event.status != EventStatus.SCHEDULED or hours in event.reminders_sent:
                return None
            event.reminders_sent.add(hours)
            return self.store.save_event(event)

        event = retry_on_conflict(claim, self.settings.allocation_retry_attempts, f"event {event_id}")
        if event is None:
            return

        message = f'Reminder: event "{event.title}" starts in {hours} hours'
        delivered, _ = deliver(self.notifier, self.crew_of(event), message, "medium")
        report.reminders.append(ReminderOutcome(kind="event", item_id=event_id, recipients=delivered))

    def crew_of(self, event: Event) -> List[str]:
        """Users behind the event's live personnel bookings and open assignments."""
        users = []
        for allocation in event.active_allocations():
            resource = self.store.get_resource(allocation.resource_id)
            if resource is not None and resource.linked_user_id:
                users.append(resource.linked_user_id)
        for assignment in self.store.list_assignments(_LIVE_ASSIGNMENTS):
            if assignment.event_id == event.id:
                users.append(assignment.assignee_id)
        return list(dict.fromkeys(users))
