"""
Unit tests for SLA alerts and upcoming-event reminders.
"""
from datetime import timedelta

import pytest

from models import AssignmentStatus, EventStatus, RequestStatus, ResourceKind
from scheduler.reminders import ReminderService
from tests.factories import (
    at, create_test_assignment, create_test_event, create_test_request, create_test_resource, window,
)


@pytest.fixture
def reminders(store, notifier, settings):
    return ReminderService(store, notifier, settings)


class TestSlaAlerts:
    def test_alerts_requester_and_approver_once(self, reminders, store, notifier, now):
        request = create_test_request(store, sla_deadline=now + timedelta(hours=1, minutes=30))

        report = reminders.run_sla_pass(now)

        assert [(r.kind, r.item_id) for r in report.reminders] == [("sla", request.id)]
        assert {n.recipient_id for n in notifier.sent} == {request.requester_id, "user_approver"}
        assert all(n.priority == "critical" for n in notifier.sent)
        assert "1.5 hours" in notifier.sent[0].message
        assert store.get_request(request.id).sla_alert_sent_at == now

        assert reminders.run_sla_pass(now + timedelta(minutes=10)).reminders == []
        assert len(notifier.sent) == 2

    def test_outside_window_or_passed_is_ignored(self, reminders, store, now):
        create_test_request(store, sla_deadline=now + timedelta(hours=3))
        create_test_request(store, sla_deadline=now - timedelta(minutes=1))
        create_test_request(store, sla_deadline=None)
        assert reminders.run_sla_pass(now).reminders == []

    def test_only_approved_or_scheduled(self, reminders, store, now):
        create_test_request(store, status=RequestStatus.DRAFT, sla_deadline=now + timedelta(hours=1))
        scheduled = create_test_request(store, status=RequestStatus.SCHEDULED, sla_deadline=now + timedelta(hours=1))
        assert [r.item_id for r in reminders.run_sla_pass(now).reminders] == [scheduled.id]

    def test_boundary_is_inclusive(self, reminders, store, now):
        request = create_test_request(store, sla_deadline=now + timedelta(hours=2))
        assert [r.item_id for r in reminders.run_sla_pass(now).reminders] == [request.id]

    def test_missing_approver_is_skipped(self, reminders, store, notifier, now):
        request = create_test_request(store, approver_id=None, sla_deadline=now + timedelta(hours=1))
        reminders.run_sla_pass(now)
        assert [n.recipient_id for n in notifier.sent] == [request.requester_id]


class TestEventReminders:
    def test_each_horizon_fires_once(self, reminders, store, notifier):
        event = create_test_event(store, window(at(12), at(13)))
        create_test_assignment(store, event, assignee_id="user_rep_01")

        day_before = reminders.run_event_reminders(at(12, day=-1))
        assert [r.item_id for r in day_before.reminders] == [event.id]
        assert store.get_event(event.id).reminders_sent == {24}

        assert reminders.run_event_reminders(at(20, day=-1)).reminders == []

        hour_before = reminders.run_event_reminders(at(11, 15))
        assert [r.item_id for r in hour_before.reminders] == [event.id]
        assert store.get_event(event.id).reminders_sent == {24, 1}
        assert [n.recipient_id for n in notifier.sent] == ["user_rep_01", "user_rep_01"]
        assert "starts in 1 hours" in notifier.sent[-1].message

    def test_explicit_horizon(self, reminders, store):
        event = create_test_event(store, window(at(12), at(13)))
        report = reminders.run_event_reminders(at(10), hours_before=3)
        assert [r.item_id for r in report.reminders] == [event.id]
        assert store.get_event(event.id).reminders_sent == {3}

    def test_started_or_unscheduled_events_are_skipped(self, reminders, store):
        create_test_event(store, window(at(7), at(9)))
        create_test_event(store, window(at(9), at(10)), status=EventStatus.POSTPONED)
        assert reminders.run_event_reminders(at(8)).reminders == []


class TestCrew:
    def test_crew_from_personnel_and_assignments(self, reminders, store, scheduler, now):
        event = create_test_event(store, window(at(12), at(13)))
        cam = create_test_resource(store)
        create_test_resource(store, category="camera", kind=ResourceKind.EQUIPMENT)
        scheduler.allocate_resources(event.id, {"cameraman": 1, "camera": 1}, now=now)
        create_test_assignment(store, event, assignee_id="user_rep_01")
        create_test_assignment(store, event, assignee_id="user_rep_02", status=AssignmentStatus.DECLINED)
        create_test_assignment(store, event, assignee_id=cam.linked_user_id)

        crew = reminders.crew_of(store.get_event(event.id))

        assert crew == [cam.linked_user_id, "user_rep_01"]
