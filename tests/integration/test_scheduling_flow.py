"""
End-to-end flow through the CoverageScheduler:
draft -> approval -> event -> crew -> coverage -> wrap-up,
plus an approval that stalls and climbs the escalation ladder.
"""
from datetime import timedelta

from models import (
    AssignmentStatus, Availability, BookingStatus, EventStatus, RequestStatus, ResourceKind,
)
from tests.factories import at, create_test_request, create_test_resource, window


def test_request_to_completed_coverage(scheduler, store):
    request = create_test_request(store, status=RequestStatus.DRAFT, requested_window=window(at(14), at(16)))
    cam = create_test_resource(store)
    rep = create_test_resource(store, category="reporter")
    camera = create_test_resource(store, category="camera", kind=ResourceKind.EQUIPMENT)

    scheduler.submit_request(request.id, now=at(8))
    scheduler.approve_request(request.id, "user_editor_news", now=at(9))
    outcome = scheduler.schedule_event(request.id, request.requested_window, now=at(9))
    event_id = outcome.event.id

    allocation = scheduler.allocate_resources(
        event_id, {"cameraman": 1, "reporter": 1, "camera": 1}, now=at(9)
    )
    assert allocation.is_complete
    assert store.get_resource(cam.id).availability == Availability.AVAILABLE
    assert len(scheduler.notifier.sent_to(cam.linked_user_id)) == 1

    assignment = scheduler.create_assignment(event_id, rep.linked_user_id, assigned_by="user_editor_news", now=at(9))
    scheduler.transition_assignment(assignment.id, AssignmentStatus.ACCEPTED, now=at(9, 30))

    reminders = scheduler.run_event_reminders(at(13, 15), hours_before=1)
    assert [r.item_id for r in reminders.reminders] == [event_id]
    assert set(reminders.reminders[0].recipients) == {cam.linked_user_id, rep.linked_user_id}

    scheduler.transition_event(event_id, EventStatus.IN_PROGRESS, now=at(14))
    scheduler.transition_assignment(assignment.id, AssignmentStatus.IN_PROGRESS, now=at(14))
    scheduler.checkin_resource(camera.id, event_id, "good", issues="Battery door loose", now=at(15, 50))
    scheduler.transition_assignment(assignment.id, AssignmentStatus.COMPLETED, now=at(16))
    done = scheduler.transition_event(event_id, EventStatus.COMPLETED, now=at(16, 5))

    assert done.actual_start == at(14)
    assert done.actual_end == at(16, 5)
    assert store.get_resource(cam.id).booking_for(event_id).status == BookingStatus.COMPLETED
    assert store.get_resource(camera.id).availability == Availability.MAINTENANCE
    assert store.get_event(event_id).active_allocations() == []
    assert store.get_request(request.id).status == RequestStatus.SCHEDULED

    # Nothing overdue: everything finished on time
    assert scheduler.run_escalation_pass(at(20)).escalated == []

    entries = scheduler.calendar(statuses=[EventStatus.COMPLETED], user_id=cam.linked_user_id)
    assert [(e.id, e.color) for e in entries] == [(event_id, "#27ae60")]


def test_stalled_approval_climbs_then_stops(scheduler, store, notifier, settings):
    request = create_test_request(store, status=RequestStatus.DRAFT)
    scheduler.submit_request(request.id, now=at(8))
    due = at(8) + timedelta(hours=settings.default_approval_hours)

    passes = [due + timedelta(hours=h) for h in (1, 2.5, 4.5, 4.6, 9)]
    tiers = [[e.tier for e in scheduler.run_escalation_pass(t).escalated] for t in passes]
    assert tiers == [[], [1], [2], [], [3]]
    assert [n.recipient_id for n in notifier.sent] == ["user_editor_news", "user_senior_news", "user_head_news"]

    scheduler.approve_request(request.id, "user_head_news", now=due + timedelta(hours=10))
    assert scheduler.run_escalation_pass(due + timedelta(hours=30)).escalated == []
