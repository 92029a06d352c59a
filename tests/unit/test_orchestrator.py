"""
Unit tests for the CoverageScheduler facade: scheduling, rescheduling,
incidents and the job wiring.
"""
import pytest

from models import BookingStatus, EventStatus, RequestStatus
from scheduler.exceptions import (
    NotApproved, StaleRevision, TerminalState, UnknownEventId, UnknownRequestId, ValidationError,
)
from tests.factories import (
    ADAMA, at, book, create_test_event, create_test_request, create_test_resource, window,
)


class TestScheduleEvent:
    def test_clean_schedule(self, scheduler, store, notifier, now):
        request = create_test_request(store)
        outcome = scheduler.schedule_event(request.id, window(at(10), at(11)), now=now)

        assert outcome.scheduled
        assert outcome.overridden is False
        event = outcome.event
        assert event.id.startswith("evt_")
        assert event.revision == 1
        assert event.status == EventStatus.SCHEDULED
        assert event.request_id == request.id
        assert event.location == request.location
        assert store.get_request(request.id).status == RequestStatus.SCHEDULED
        assert len(notifier.sent_to(request.requester_id)) == 1

    @pytest.mark.parametrize("status", [
        RequestStatus.DRAFT, RequestStatus.PENDING_APPROVAL, RequestStatus.REJECTED, RequestStatus.SCHEDULED,
    ])
    def test_only_approved_requests(self, scheduler, store, now, status):
        request = create_test_request(store, status=status)
        with pytest.raises(NotApproved):
            scheduler.schedule_event(request.id, window(at(10)), now=now)
        assert store.list_events() == []

    def test_unknown_request(self, scheduler, now):
        with pytest.raises(UnknownRequestId):
            scheduler.schedule_event("req_missing", window(at(10)), now=now)

    def test_conflict_blocks_without_writing(self, scheduler, store, notifier, now):
        existing = create_test_event(store, window(at(10), at(11)))
        request = create_test_request(store)

        outcome = scheduler.schedule_event(request.id, window(at(10, 30), at(11, 30)), now=now)

        assert not outcome.scheduled
        assert outcome.conflicts.event_ids() == [existing.id]
        assert [e.id for e in store.list_events()] == [existing.id]
        assert store.get_request(request.id).status == RequestStatus.APPROVED
        assert notifier.sent == []

    def test_override_schedules_and_reports(self, scheduler, store, now):
        existing = create_test_event(store, window(at(10), at(11)))
        request = create_test_request(store)

        outcome = scheduler.schedule_event(
            request.id, window(at(10, 30), at(11, 30)), override_conflicts=True, now=now
        )

        assert outcome.scheduled
        assert outcome.overridden is True
        assert outcome.conflicts.event_ids() == [existing.id]
        assert len(store.list_events()) == 2

    def test_location_override(self, scheduler, store, now):
        request = create_test_request(store)
        outcome = scheduler.schedule_event(request.id, window(at(10)), location=ADAMA, now=now)
        assert outcome.event.location == ADAMA


class TestRescheduleEvent:
    def test_event_never_conflicts_with_itself(self, scheduler, store, now):
        event = create_test_event(store, window(at(10), at(11)))
        outcome = scheduler.reschedule_event(event.id, window(at(10, 30), at(11, 30)), now=now)

        assert outcome.conflicts.is_empty
        assert outcome.event.window.start == at(10, 30)
        assert outcome.event.revision == 2

    def test_conflict_with_other_event_blocks(self, scheduler, store, now):
        other = create_test_event(store, window(at(14), at(15)))
        event = create_test_event(store, window(at(10), at(11)))

        outcome = scheduler.reschedule_event(event.id, window(at(14, 30), at(15, 30)), now=now)

        assert outcome.conflicts.event_ids() == [other.id]
        assert store.get_event(event.id).window.start == at(10)
        assert store.get_event(event.id).revision == 1

    @pytest.mark.parametrize("status", [EventStatus.COMPLETED, EventStatus.CANCELLED])
    def test_terminal_events_cannot_move(self, scheduler, store, now, status):
        event = create_test_event(store, status=status)
        with pytest.raises(TerminalState):
            scheduler.reschedule_event(event.id, window(at(15)), now=now)

    def test_stale_revision(self, scheduler, store, now):
        event = create_test_event(store, window(at(10), at(11)))
        scheduler.reschedule_event(event.id, window(at(12), at(13)), now=now, expected_revision=1)

        with pytest.raises(StaleRevision) as exc:
            scheduler.reschedule_event(event.id, window(at(14), at(15)), now=now, expected_revision=1)
        assert exc.value.details["actual"] == 2
        assert store.get_event(event.id).window.start == at(12)

    def test_postponed_event_returns_to_scheduled(self, scheduler, store, now):
        event = create_test_event(store, status=EventStatus.POSTPONED, reminders_sent={24})
        outcome = scheduler.reschedule_event(event.id, window(at(16)), now=now)
        assert outcome.event.status == EventStatus.SCHEDULED
        assert outcome.event.reminders_sent == set()

    def test_bookings_follow_or_drop(self, scheduler, store, now):
        event = create_test_event(store, window(at(10), at(11)))
        free = create_test_resource(store)
        busy = create_test_resource(store)
        scheduler.allocate_resources(event.id, {"cameraman": 2}, now=now)
        book(store, busy, "evt_elsewhere", window(at(14), at(15)))

        outcome = scheduler.reschedule_event(event.id, window(at(14, 30), at(15, 30)), now=now)

        assert outcome.dropped_resources == [busy.id]
        moved = store.get_resource(free.id).booking_for(event.id)
        assert (moved.start, moved.end) == (at(14, 30), at(15, 30))
        assert store.get_resource(busy.id).booking_for(event.id).status == BookingStatus.CANCELLED
        assert [a.resource_id for a in outcome.event.active_allocations()] == [free.id]

    def test_unit_checked_out_twice_keeps_one_booking(self, scheduler, store, now):
        event = create_test_event(store, window(at(10), at(13)))
        r = create_test_resource(store)
        scheduler.checkout_resource(r.id, event.id, window(at(10), at(11)), now=now)
        scheduler.checkout_resource(r.id, event.id, window(at(12), at(13)), now=now)

        outcome = scheduler.reschedule_event(event.id, window(at(15), at(16)), now=now)

        assert outcome.dropped_resources == []
        holding = store.get_resource(r.id).holding_bookings()
        assert [(b.event_id, b.start, b.end) for b in holding] == [(event.id, at(15), at(16))]

    def test_unknown_event(self, scheduler, now):
        with pytest.raises(UnknownEventId):
            scheduler.reschedule_event("evt_missing", window(at(10)), now=now)


class TestIncidentsAndMisc:
    def test_add_incident(self, scheduler, store, now):
        event = create_test_event(store)
        updated = scheduler.add_incident(event.id, "access", "  Gate closed  ", severity="high", now=now)

        incident = updated.incidents[-1]
        assert incident.description == "Gate closed"
        assert incident.severity == "high"
        assert incident.reported_at == now

    def test_incident_needs_description(self, scheduler, store, now):
        event = create_test_event(store)
        with pytest.raises(ValidationError):
            scheduler.add_incident(event.id, "access", "   ", now=now)

    def test_incident_on_unknown_event(self, scheduler, now):
        with pytest.raises(UnknownEventId):
            scheduler.add_incident("evt_missing", "access", "Gate closed", now=now)

    def test_release_unknown_event(self, scheduler, now):
        with pytest.raises(UnknownEventId):
            scheduler.release_resources("evt_missing", now=now)

    def test_suggest_resources_uses_event_window(self, scheduler, store, now):
        event = create_test_event(store, window(at(10), at(11)))
        cam = create_test_resource(store)
        busy = create_test_resource(store)
        book(store, busy, "evt_elsewhere", window(at(10), at(12)))

        picks = scheduler.suggest_resources(event.id, "cameraman", now=now)

        assert [p.resource_id for p in picks] == [cam.id]

    def test_job_runner_wiring(self, scheduler, store):
        create_test_request(store, status=RequestStatus.PENDING_APPROVAL, approval_due_at=at(1))
        runner = scheduler.build_job_runner(clock=lambda: at(4))

        assert runner.list_jobs() == ["escalation", "sla_alerts", "event_reminders"]
        report = runner.run_once("escalation")
        assert [e.tier for e in report.escalated] == [1]
