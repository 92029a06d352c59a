"""
Main Execution Script for the Coverage Scheduler.
Runs one simulated newsroom day: schedule approved requests, allocate crews,
sweep for overdue work, then export the calendar.
"""

import os
import sys
import logging
import json
from datetime import datetime, timedelta

# Add current directory to path so imports work
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from generators.seed_data import DIRECTORY_SEED, build_demo_dataset, load_dataset, save_dataset
from models import RequestStatus
from scheduler import CoverageScheduler, CoverageStore, LoggingNotifier, StaticDirectory, get_settings
from scheduler.exceptions import CoverageError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("Main")

# --- CONFIGURATION ---
CACHE_FILENAME = "demo_data.json"
CALENDAR_FILENAME = "calendar_data.json"
USE_CACHE = True  # Set to False to rebuild the demo dataset
CREW_MANIFEST = {
    "politics": {"reporter": 1, "cameraman": 1, "camera": 1, "van": 1},
    "sports": {"cameraman": 2, "camera": 2, "uplink": 1},
    "business": {"reporter": 1, "camera": 1},
}
# ---------------------


def export_calendar(scheduler: CoverageScheduler, filename: str) -> None:
    """Serializes the calendar view for the frontend."""
    entries = scheduler.calendar()
    with open(filename, 'w') as f:
        json.dump([e.model_dump(mode='json') for e in entries], f, indent=2)
    logger.info(f"Exported {len(entries)} calendar entries to {filename}")


def main():
    now = datetime.now().replace(second=0, microsecond=0)
    settings = get_settings()

    # --- PHASE 1: DATA ---
    data = load_dataset(CACHE_FILENAME, now=now) if USE_CACHE else None
    if not data:
        data = build_demo_dataset(now)
        save_dataset(data, CACHE_FILENAME, generated_at=now)

    store = CoverageStore()
    for request in data["requests"]:
        store.save_request(request)
    for resource in data["resources"]:
        store.save_resource(resource)

    directory = StaticDirectory()
    for role, user_id, department in DIRECTORY_SEED:
        directory.add(role, user_id, department)

    notifier = LoggingNotifier()
    scheduler = CoverageScheduler(store, notifier, directory, settings)

    # --- PHASE 2: SCHEDULING ---
    logger.info("--- Phase 2: Scheduling approved requests ---")
    scheduled, blocked = [], []
    for request in store.list_requests([RequestStatus.APPROVED]):
        outcome = scheduler.schedule_event(request.id, request.requested_window, now=now)
        if outcome.scheduled:
            scheduled.append(outcome.event)
        else:
            blocked.append((request, outcome.conflicts))

    # --- PHASE 3: ALLOCATION ---
    logger.info("--- Phase 3: Allocating crews ---")
    shortfalls = {}
    for event in scheduled:
        manifest = CREW_MANIFEST.get(event.category)
        if not manifest:
            continue
        try:
            result = scheduler.allocate_resources(event.id, manifest, now=now)
        except CoverageError as e:
            logger.error(f"Allocation for {event.id} failed: {e.message}")
            continue
        if not result.is_complete:
            shortfalls[event.title] = result.shortfall

    # --- PHASE 4: SWEEPS ---
    logger.info("--- Phase 4: Escalation and reminder sweeps ---")
    escalation = scheduler.run_escalation_pass(now)
    sla = scheduler.run_sla_pass(now)
    reminders = scheduler.run_event_reminders(now)

    # --- PHASE 5: REPORTING ---
    print("\n" + "=" * 50)
    print("FINAL EXECUTION REPORT")
    print("=" * 50)
    print(f"Events scheduled:      {len(scheduled)}")
    print(f"Blocked by conflicts:  {len(blocked)}")
    for request, conflicts in blocked:
        print(f"  - {request.title}: clashes with {', '.join(conflicts.event_ids())}")
    print(f"Allocation shortfalls: {len(shortfalls)}")
    for title, shortfall in shortfalls.items():
        print(f"  - {title}: {shortfall}")
    print(f"Escalations:           {len(escalation.escalated)}")
    for outcome in escalation.escalated:
        print(f"  - {outcome.kind} {outcome.item_id} -> tier {outcome.tier} ({', '.join(outcome.recipients)})")
    print(f"Reminders:             {len(escalation.reminders) + len(sla.reminders) + len(reminders.reminders)}")
    print(f"Notifications sent:    {len(notifier.sent)}")

    if scheduled:
        print("\nCREW SUGGESTIONS (first event)")
        for suggestion in scheduler.suggest_resources(scheduled[0].id, "cameraman", now=now):
            print(f"  {suggestion.name}: {suggestion.reason} [{suggestion.source}]")

    # --- PHASE 6: EXPORT ---
    export_calendar(scheduler, CALENDAR_FILENAME)
    print("\nDemo run complete.")


if __name__ == "__main__":
    main()
