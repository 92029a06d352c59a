"""
Unit Tests for the Escalation Engine

1. Tier ladder and recipients
2. Idempotence and monotonic tiers across passes
3. Failure isolation (notifier and per-item)
4. Stale draft / pending assignment reminders
5. Manual escalation
"""
from datetime import timedelta

import pytest

from models import AssignmentStatus, EventStatus, RequestStatus
from scheduler.escalation import EscalationEngine
from scheduler.exceptions import ValidationError
from tests.factories import (
    FlakyNotifier, at, create_test_assignment, create_test_event, create_test_request, window,
)

T = at(6)


@pytest.fixture
def engine(store, notifier, directory, settings):
    return EscalationEngine(store, notifier, directory, settings)


def _overdue_request(store, due=T, **overrides):
    return create_test_request(store, status=RequestStatus.PENDING_APPROVAL, approval_due_at=due, **overrides)


class TestLadder:
    @pytest.mark.parametrize("hours,tier", [
        (0, 0), (1.99, 0), (2, 1), (3.5, 1), (4, 2), (7.9, 2), (8, 3), (23.9, 3), (24, 4), (100, 4),
    ])
    def test_tier_for(self, engine, hours, tier):
        assert engine.tier_for(hours) == tier

    def test_department_scope(self, engine):
        assert engine.recipients_for(1, "News") == ["user_editor_news"]
        assert engine.recipients_for(1, "Sports") == ["user_editor_sports"]
        # Tier 4 ignores the department filter
        assert engine.recipients_for(4, "Sports") == ["user_admin"]

    def test_priority(self, engine):
        assert engine.priority_for(2) == "high"
        assert engine.priority_for(3) == "critical"


class TestRequestEscalation:
    def test_scenario_tier_crossings_fire_once(self, engine, store, notifier):
        """Due at T: T+3h notifies the lead, T+3h01 nothing, T+5h the senior lead only."""
        request = _overdue_request(store)

        first = engine.run_escalation_pass(T + timedelta(hours=3))
        assert [(e.item_id, e.tier) for e in first.escalated] == [(request.id, 1)]
        assert [n.recipient_id for n in notifier.sent] == ["user_editor_news"]

        second = engine.run_escalation_pass(T + timedelta(hours=3, minutes=1))
        assert second.escalated == []
        assert len(notifier.sent) == 1

        third = engine.run_escalation_pass(T + timedelta(hours=5))
        assert [(e.previous_tier, e.tier) for e in third.escalated] == [(1, 2)]
        assert [n.recipient_id for n in notifier.sent] == ["user_editor_news", "user_senior_news"]
        assert notifier.sent[-1].priority == "high"

    def test_same_instant_twice_is_idempotent(self, engine, store, notifier):
        _overdue_request(store)
        now = T + timedelta(hours=9)
        engine.run_escalation_pass(now)
        sent = len(notifier.sent)
        report = engine.run_escalation_pass(now)
        assert report.escalated == []
        assert len(notifier.sent) == sent

    def test_jump_straight_to_critical(self, engine, store, notifier):
        request = _overdue_request(store)
        report = engine.run_escalation_pass(T + timedelta(hours=10))

        assert report.escalated[0].tier == 3
        assert notifier.sent[0].recipient_id == "user_head_news"
        assert notifier.sent[0].priority == "critical"
        stored = store.get_request(request.id)
        assert stored.escalation.tier == 3
        assert stored.escalation.escalated_at == T + timedelta(hours=10)

    def test_tiers_never_decrease(self, engine, store):
        request = _overdue_request(store)
        tiers = []
        for hours in (3, 5, 9, 30, 31):
            engine.run_escalation_pass(T + timedelta(hours=hours))
            tiers.append(store.get_request(request.id).escalation.tier)
        assert tiers == sorted(tiers)
        assert tiers[-1] == 4

    def test_not_yet_due_or_not_pending_is_ignored(self, engine, store):
        _overdue_request(store, due=T + timedelta(hours=10))
        create_test_request(store, status=RequestStatus.APPROVED, approval_due_at=T)
        assert engine.run_escalation_pass(T + timedelta(hours=3)).escalated == []

    def test_missing_department_uses_default(self, engine, store, notifier):
        _overdue_request(store, department=None)
        engine.run_escalation_pass(T + timedelta(hours=3))
        assert [n.recipient_id for n in notifier.sent] == ["user_editor_news"]


class TestAssignmentAndEventEscalation:
    def test_overdue_assignment(self, engine, store, notifier):
        event = create_test_event(store, window(at(1), at(2)))
        assignment = create_test_assignment(store, event, status=AssignmentStatus.IN_PROGRESS)
        report = engine.run_escalation_pass(at(4, 30))

        assert [(e.kind, e.item_id, e.tier) for e in report.escalated] == [("assignment", assignment.id, 1)]
        assert "Assignee" in notifier.sent[0].message

    def test_overdue_event_gets_incident(self, engine, store):
        event = create_test_event(store, window(at(1), at(2)), status=EventStatus.IN_PROGRESS)
        engine.run_escalation_pass(at(11))

        stored = store.get_event(event.id)
        assert stored.escalation.tier == 3
        assert stored.incidents[-1].kind == "escalation"
        assert stored.incidents[-1].severity == "high"

    def test_scheduled_event_past_end_is_not_escalated(self, engine, store):
        create_test_event(store, window(at(1), at(2)))
        assert engine.run_escalation_pass(at(11)).escalated == []


class TestFailureIsolation:
    def test_notifier_failure_is_reported_not_rolled_back(self, store, directory, settings):
        directory.add("editor", "user_editor_news_2", "News")
        notifier = FlakyNotifier(failing={"user_editor_news"})
        engine = EscalationEngine(store, notifier, directory, settings)
        request = _overdue_request(store)

        report = engine.run_escalation_pass(T + timedelta(hours=3))

        outcome = report.escalated[0]
        assert outcome.recipients == ["user_editor_news_2"]
        assert outcome.failed_recipients == ["user_editor_news"]
        assert store.get_request(request.id).escalation.tier == 1
        # Delivery is not retried on the next pass
        assert engine.run_escalation_pass(T + timedelta(hours=3, minutes=30)).escalated == []

    def test_one_broken_item_does_not_stop_the_pass(self, engine, store, monkeypatch):
        broken = _overdue_request(store)
        healthy = _overdue_request(store)
        real_describe = engine._describe

        def describe(kind, item, hours):
            if item.id == broken.id:
                raise RuntimeError("template exploded")
            return real_describe(kind, item, hours)

        monkeypatch.setattr(engine, "_describe", describe)
        report = engine.run_escalation_pass(T + timedelta(hours=3))

        assert [e.item_id for e in report.escalated] == [healthy.id]
        assert [(f.item_id, f.error) for f in report.failures] == [(broken.id, "template exploded")]


class TestReminders:
    def test_stale_draft_reminded_once(self, engine, store, notifier):
        draft = create_test_request(
            store, status=RequestStatus.DRAFT, updated_at=at(8, day=-2), created_at=at(8, day=-3)
        )
        report = engine.run_escalation_pass(at(9))
        assert [(r.kind, r.item_id) for r in report.reminders] == [("draft", draft.id)]
        assert notifier.sent[0].recipient_id == draft.requester_id

        again = engine.run_escalation_pass(at(10))
        assert again.reminders == []

    def test_draft_edited_after_reminder_can_be_reminded_again(self, engine, store):
        draft = create_test_request(store, status=RequestStatus.DRAFT, updated_at=at(8, day=-2))
        engine.run_escalation_pass(at(9))

        edited = store.get_request(draft.id)
        edited.updated_at = at(10)
        store.save_request(edited)

        assert engine.run_escalation_pass(at(11, day=1)).reminders[0].item_id == draft.id

    def test_fresh_draft_is_left_alone(self, engine, store):
        create_test_request(store, status=RequestStatus.DRAFT, updated_at=at(1))
        assert engine.run_escalation_pass(at(9)).reminders == []

    def test_pending_assignment_reminder(self, engine, store, notifier):
        event = create_test_event(store, window(at(12), at(13)))
        assignment = create_test_assignment(store, event, created_at=at(7))
        create_test_assignment(store, event, created_at=at(8, 45))

        report = engine.run_escalation_pass(at(9))
        assert [(r.kind, r.item_id) for r in report.reminders] == [("assignment", assignment.id)]
        assert notifier.sent[0].recipient_id == assignment.assignee_id
        assert engine.run_escalation_pass(at(9, 30)).reminders == []


class TestManualEscalation:
    def test_forces_tier(self, engine, store, notifier, now):
        request = _overdue_request(store, due=now)
        outcome = engine.escalate_manually("request", request.id, 2, "Editor asked", now)

        assert outcome.tier == 2
        assert store.get_request(request.id).escalation.reason == "Editor asked"
        assert notifier.sent[0].recipient_id == "user_senior_news"

    def test_lower_tier_is_noop(self, engine, store, notifier, now):
        request = _overdue_request(store)
        engine.escalate_manually("request", request.id, 3, "urgent", now)
        assert engine.escalate_manually("request", request.id, 2, "again", now) is None
        assert len(notifier.sent) == 1

    def test_rejects_unknown_kind_and_tier(self, engine, now):
        with pytest.raises(ValidationError):
            engine.escalate_manually("invoice", "x", 1, "?", now)
        with pytest.raises(ValidationError):
            engine.escalate_manually("request", "x", 7, "?", now)
