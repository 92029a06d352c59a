"""
Escalation Engine.

A periodic sweep over three overdue classes:
1. Requests waiting for approval past their due instant.
2. Assignments (accepted / in progress) past their scheduled end.
3. Events still in progress past their scheduled end.

Elapsed overdue time maps to a tier on the configured ladder. An item is
escalated only when that tier is strictly higher than the one already
recorded, which keeps repeated passes from re-notifying.

The new tier is persisted (compare-and-swap) *before* anyone is notified.
Two passes racing on the same item cannot both win the write, so each tier
crossing notifies exactly once. Delivery is best-effort: a failed notify is
logged and reported, never rolled back.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel

from models import (
    AssignmentStatus, EscalationOutcome, EscalationRecord, EscalationReport, EventStatus,
    Incident, ItemFailure, ReminderOutcome, RequestStatus,
)
from .config import EscalationTierConfig, SchedulerSettings
from .exceptions import (
    UnknownAssignmentId, UnknownEventId, UnknownRequestId, ValidationError,
)
from .ports import Directory, Notifier, Persistence
from .state import retry_on_conflict

logger = logging.getLogger(__name__)

ESCALATABLE_KINDS = ("request", "assignment", "event")


def deliver(notifier: Notifier, recipients: List[str], message: str, priority: str) -> Tuple[List[str], List[str]]:
    """
    Notify each recipient once. Returns (delivered, failed).
    """
    delivered, failed = [], []
    for recipient in recipients:
        try:
            notifier.notify(recipient, message, priority)
            delivered.append(recipient)
        except Exception:
            logger.exception(f"Notification to {recipient} failed")
            failed.append(recipient)
    return delivered, failed


def run_isolated(report: EscalationReport, kind: str, item_id: str, step: Callable[[], None]) -> None:
    """One item's failure is recorded on the report and never stops the sweep."""
    try:
        step()
    except Exception as exc:
        logger.exception(f"Processing {kind} {item_id} failed")
        report.failures.append(ItemFailure(kind=kind, item_id=item_id, error=str(exc)))


@dataclass
class _Claim:
    item: BaseModel
    previous_tier: int
    tier: int
    hours_overdue: float


class EscalationEngine:
    """
    Decides who to notify about overdue work. Delivery is the Notifier's job.
    """

    def __init__(
        self,
        store: Persistence,
        notifier: Notifier,
        directory: Directory,
        settings: SchedulerSettings
    ):
        self.store = store
        self.notifier = notifier
        self.directory = directory
        self.settings = settings
        self.ladder: List[EscalationTierConfig] = list(settings.escalation_ladder)

    # --- Ladder ---

    def tier_for(self, hours_overdue: float) -> int:
        """Highest tier whose threshold has been reached. 0 means not yet escalatable."""
        tier = 0
        for rung in self.ladder:
            if hours_overdue >= rung.threshold_hours:
                tier = rung.tier
        return tier

    def rung(self, tier: int) -> Optional[EscalationTierConfig]:
        for rung in self.ladder:
            if rung.tier == tier:
                return rung
        return None

    def priority_for(self, tier: int) -> str:
        return "critical" if tier >= self.settings.critical_tier else "high"

    def recipients_for(self, tier: int, department: Optional[str]) -> List[str]:
        rung = self.rung(tier)
        if rung is None:
            return []
        scope = department if rung.department_scoped else None
        users = self.directory.users_with_role(rung.role, scope)
        # Keep directory order, drop duplicates
        return list(dict.fromkeys(users))

    # --- Pass ---

    def run_escalation_pass(self, now: datetime) -> EscalationReport:
        """
        Scan every overdue class plus the reminder sweeps. Never raises for
        a single item: failures land in `report.failures`.
        """
        logger.info(f"Starting escalation pass at {now}")
        report = EscalationReport(ran_at=now)

        for request in self.store.list_requests([RequestStatus.PENDING_APPROVAL]):
            if request.approval_due_at and request.approval_due_at < now:
                self._sweep_item(report, "request", request.id, now)

        for assignment in self.store.list_assignments([AssignmentStatus.ACCEPTED, AssignmentStatus.IN_PROGRESS]):
            if assignment.window.end < now:
                self._sweep_item(report, "assignment", assignment.id, now)

        for event in self.store.list_events([EventStatus.IN_PROGRESS]):
            if event.window.end < now:
                self._sweep_item(report, "event", event.id, now)

        self._remind_stale_drafts(report, now)
        self._remind_pending_assignments(report, now)

        logger.info(
            f"Escalation pass done: {len(report.escalated)} escalated, "
            f"{len(report.reminders)} reminders, {len(report.failures)} failures"
        )
        return report

    def _sweep_item(self, report: EscalationReport, kind: str, item_id: str, now: datetime) -> None:
        def step() -> None:
            outcome = self.escalate(kind, item_id, now)
            if outcome is not None:
                report.escalated.append(outcome)
        run_isolated(report, kind, item_id, step)

    def escalate_manually(
        self,
        kind: str,
        item_id: str,
        target_tier: int,
        reason: str,
        now: datetime
    ) -> Optional[EscalationOutcome]:
        """
        Force an item to a given tier. A tier at or below the recorded one is a no-op.
        """
        if kind not in ESCALATABLE_KINDS:
            raise ValidationError(f"Unknown escalation kind '{kind}'", field="kind", value=kind)
        if self.rung(target_tier) is None:
            raise ValidationError(f"No escalation tier {target_tier} configured", field="target_tier", value=target_tier)
        outcome = self.escalate(kind, item_id, now, forced_tier=target_tier, reason=reason)
        if outcome is None:
            logger.info(f"Manual escalation of {kind} {item_id} to tier {target_tier} skipped: already at or above")
        return outcome

    # --- Escalation of one item ---

    def escalate(
        self,
        kind: str,
        item_id: str,
        now: datetime,
        forced_tier: Optional[int] = None,
        reason: Optional[str] = None
    ) -> Optional[EscalationOutcome]:
        claim = retry_on_conflict(
            lambda: self._claim(kind, item_id, now, forced_tier, reason),
            self.settings.allocation_retry_attempts,
            f"{kind} {item_id} escalation"
        )
        if claim is None:
            return None

        department = self._department_of(kind, claim.item)
        recipients = self.recipients_for(claim.tier, department)
        if not recipients:
            logger.warning(f"No recipients for tier {claim.tier} ({kind} {item_id}, department={department})")

        message = f"Level {claim.tier} escalation: {self._describe(kind, claim.item, claim.hours_overdue)}"
        delivered, failed = deliver(self.notifier, recipients, message, self.priority_for(claim.tier))

        logger.info(f"Escalated {kind} {item_id} to tier {claim.tier} ({len(delivered)} notified)")
        return EscalationOutcome(
            kind=kind,
            item_id=item_id,
            previous_tier=claim.previous_tier,
            tier=claim.tier,
            hours_overdue=round(claim.hours_overdue, 2),
            recipients=delivered,
            failed_recipients=failed
        )

    def _claim(
        self,
        kind: str,
        item_id: str,
        now: datetime,
        forced_tier: Optional[int],
        reason: Optional[str]
    ) -> Optional[_Claim]:
        """Read, decide and persist the new tier. None when nothing should fire."""
        item = self._load(kind, item_id)
        due = self._due_of(kind, item)
        hours = max(0.0, (now - due).total_seconds() / 3600) if due else 0.0

        tier = forced_tier if forced_tier is not None else self.tier_for(hours)
        previous = item.escalation.tier
        if tier <= 0 or tier <= previous:
            return None

        item.escalation = EscalationRecord(
            tier=tier,
            escalated_at=now,
            reason=reason or f"{kind.capitalize()} overdue by {int(hours)} hours"
        )
        if kind == "event":
            item.incidents.append(Incident(
                kind="escalation",
                description=f"Event escalated to level {tier} - {int(hours)} hours overdue",
                severity="high" if tier >= self.settings.critical_tier else "medium",
                reported_at=now
            ))
        saved = self._save(kind, item)
        return _Claim(item=saved, previous_tier=previous, tier=tier, hours_overdue=hours)

    # --- Per-kind accessors ---

    def _load(self, kind: str, item_id: str):
        if kind == "request":
            item = self.store.get_request(item_id)
            if item is None:
                raise UnknownRequestId(item_id)
        elif kind == "assignment":
            item = self.store.get_assignment(item_id)
            if item is None:
                raise UnknownAssignmentId(item_id)
        else:
            item = self.store.get_event(item_id)
            if item is None:
                raise UnknownEventId(item_id)
        return item

    def _save(self, kind: str, item):
        if kind == "request":
            return self.store.save_request(item)
        if kind == "assignment":
            return self.store.save_assignment(item)
        return self.store.save_event(item)

    @staticmethod
    def _due_of(kind: str, item) -> Optional[datetime]:
        if kind == "request":
            return item.approval_due_at
        return item.window.end

    def _department_of(self, kind: str, item) -> str:
        department = item.department
        if not department and kind == "assignment":
            event = self.store.get_event(item.event_id)
            department = event.department if event else None
        return department or self.settings.default_department

    def _describe(self, kind: str, item, hours: float) -> str:
        hours = int(hours)
        if kind == "request":
            return (
                f'Approval for coverage request "{item.title}" is {hours} hours overdue. '
                f"Current approver: {item.approver_id or 'Unknown'}"
            )
        if kind == "assignment":
            event = self.store.get_event(item.event_id)
            title = event.title if event else item.event_id
            return f'Assignment for event "{title}" is {hours} hours overdue. Assignee: {item.assignee_id}'
        return f'Event "{item.title}" is {hours} hours overdue. Check with assigned team.'

    # --- Reminder sweeps ---

    def _remind_stale_drafts(self, report: EscalationReport, now: datetime) -> None:
        cutoff = now - timedelta(hours=self.settings.stale_draft_hours)
        for draft in self.store.list_requests([RequestStatus.DRAFT]):
            last_touched = draft.updated_at or draft.created_at
            if last_touched is None or last_touched >= cutoff:
                continue
            # One reminder per edit: a reminder newer than the last update means we already nagged
            if draft.draft_reminder_sent_at and draft.draft_reminder_sent_at >= last_touched:
                continue
            run_isolated(report, "draft", draft.id, lambda d=draft: self._remind_draft(report, d.id, now))

    def _remind_draft(self, report: EscalationReport, request_id: str, now: datetime) -> None:
        def claim():
            request = self.store.get_request(request_id)
            if request is None or request.status != RequestStatus.DRAFT:
                return None
            request.draft_reminder_sent_at = now
            return self.store.save_request(request)

        request = retry_on_conflict(claim, self.settings.allocation_retry_attempts, f"draft {request_id}")
        if request is None:
            return
        message = (
            f'Your draft coverage request "{request.title}" has not been submitted in over '
            f"{int(self.settings.stale_draft_hours)} hours. Please submit or discard it."
        )
        delivered, _ = deliver(self.notifier, [request.requester_id], message, "medium")
        report.reminders.append(ReminderOutcome(kind="draft", item_id=request_id, recipients=delivered))

    def _remind_pending_assignments(self, report: EscalationReport, now: datetime) -> None:
        cutoff = now - timedelta(hours=self.settings.pending_assignment_reminder_hours)
        for assignment in self.store.list_assignments([AssignmentStatus.PENDING]):
            if assignment.created_at is None or assignment.created_at >= cutoff:
                continue
            if assignment.pending_reminder_sent_at is not None:
                continue
            run_isolated(
                report, "assignment", assignment.id,
                lambda a=assignment: self._remind_assignment(report, a.id, now)
            )

    def _remind_assignment(self, report: EscalationReport, assignment_id: str, now: datetime) -> None:
        def claim():
            assignment = self.store.get_assignment(assignment_id)
            if assignment is None or assignment.status != AssignmentStatus.PENDING:
                return None
            if assignment.pending_reminder_sent_at is not None:
                return None
            assignment.pending_reminder_sent_at = now
            return self.store.save_assignment(assignment)

        assignment = retry_on_conflict(claim, self.settings.allocation_retry_attempts, f"assignment {assignment_id}")
        if assignment is None:
            return
        message = "You have a pending assignment that requires your response."
        delivered, _ = deliver(self.notifier, [assignment.assignee_id], message, "medium")
        report.reminders.append(ReminderOutcome(kind="assignment", item_id=assignment_id, recipients=delivered))
