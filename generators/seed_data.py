"""
Demo dataset for the coverage scheduler.
STRATEGY: a small newsroom (Addis Ababa desk) with just enough contention to
exercise every path: overlapping events, a scarce category, kit in
maintenance, an overdue approval, a stale draft and an SLA about to lapse.

Datasets round-trip through a JSON cache so demo runs are reproducible.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, ValidationError

from models import (
    Availability, CoverageRequest, GeoPoint, Location, Priority, RequestStatus, Resource,
    ResourceKind, TimeWindow,
)

logger = logging.getLogger(__name__)

# --- Venues ---
HQ = Location(name="Newsroom HQ", address="Churchill Ave", coordinates=GeoPoint(lat=9.0300, lng=38.7469))
PARLIAMENT = Location(name="Parliament", coordinates=GeoPoint(lat=9.0301, lng=38.7631))
MILLENNIUM_HALL = Location(name="Millennium Hall", address="Bole Road", coordinates=GeoPoint(lat=8.9899, lng=38.7881))
STADIUM = Location(name="Addis Ababa Stadium", coordinates=GeoPoint(lat=9.0123, lng=38.7560))
ADAMA = Location(name="Adama Conference Center", coordinates=GeoPoint(lat=8.5400, lng=39.2700))

DIRECTORY_SEED = [
    # (role, user_id, department)
    ("editor", "user_editor_01", "News"),
    ("editor", "user_editor_02", "Sports"),
    ("senior_editor", "user_senior_01", "News"),
    ("department_head", "user_head_news", "News"),
    ("department_head", "user_head_sports", "Sports"),
    ("admin", "user_admin", None),
]


def _person(
    rid: str, name: str, category: str, location: Location, user_id: str,
    expertise: List[str], languages: List[str]
) -> Resource:
    return Resource(
        id=rid, name=name, kind=ResourceKind.PERSONNEL, category=category,
        location=location, linked_user_id=user_id, expertise=expertise, languages=languages
    )


def build_resources(now: datetime) -> List[Resource]:
    serviced = now - timedelta(days=20)
    return [
        # Personnel
        _person("res_cam_01", "Abebe K.", "cameraman", HQ, "user_cam_01", ["politics", "business"], ["amharic", "english"]),
        _person("res_cam_02", "Selam T.", "cameraman", STADIUM, "user_cam_02", ["sports"], ["amharic"]),
        _person("res_rep_01", "Hanna G.", "reporter", PARLIAMENT, "user_rep_01", ["politics"], ["amharic", "english"]),
        _person("res_rep_02", "Dawit M.", "reporter", HQ, "user_rep_02", ["business", "features"], ["english", "oromiffa"]),
        _person("res_drv_01", "Yonas B.", "driver", HQ, "user_drv_01", [], ["amharic"]),
        # Equipment
        Resource(
            id="res_camera_01", name="Sony FX9 #1", kind=ResourceKind.EQUIPMENT, category="camera",
            location=HQ, last_maintenance_at=serviced, condition="good"
        ),
        Resource(
            id="res_camera_02", name="Sony FX9 #2", kind=ResourceKind.EQUIPMENT, category="camera",
            location=HQ, last_maintenance_at=now - timedelta(days=150), condition="fair"
        ),
        Resource(
            id="res_drone_01", name="DJI Inspire", kind=ResourceKind.EQUIPMENT, category="drone",
            location=HQ, availability=Availability.MAINTENANCE, condition="rotor damage"
        ),
        Resource(
            id="res_uplink_01", name="LiveU Uplink", kind=ResourceKind.EQUIPMENT, category="uplink",
            location=HQ, last_maintenance_at=serviced,
            # Servicing booked for tomorrow afternoon
            next_maintenance_at=(now + timedelta(days=1)).replace(hour=14, minute=0, second=0, microsecond=0)
        ),
        # Vehicles
        Resource(
            id="res_van_01", name="Toyota HiAce", kind=ResourceKind.VEHICLE, category="van",
            location=HQ, last_maintenance_at=serviced
        ),
        Resource(
            id="res_ob_01", name="OB Truck", kind=ResourceKind.VEHICLE, category="ob_truck",
            location=ADAMA, last_maintenance_at=now - timedelta(days=60)
        ),
    ]


def build_requests(now: datetime) -> List[CoverageRequest]:
    day = (now + timedelta(days=1)).replace(minute=0, second=0, microsecond=0)

    def window(hour: int, hours: float) -> TimeWindow:
        start = day.replace(hour=hour)
        return TimeWindow(start=start, end=start + timedelta(hours=hours))

    return [
        CoverageRequest(
            id="req_budget", title="Parliament budget session", category="politics",
            priority=Priority.HIGH, requested_window=window(9, 3), location=PARLIAMENT,
            status=RequestStatus.APPROVED, requester_id="user_rep_01", department="News",
            approver_id="user_editor_01", sla_deadline=now + timedelta(hours=1, minutes=30),
            created_at=now - timedelta(days=2), updated_at=now - timedelta(days=1)
        ),
        CoverageRequest(
            id="req_presser", title="Ministry press conference", category="politics",
            priority=Priority.MEDIUM, requested_window=window(10, 1), location=PARLIAMENT,
            status=RequestStatus.APPROVED, requester_id="user_rep_02", department="News",
            approver_id="user_editor_01",
            created_at=now - timedelta(days=1), updated_at=now - timedelta(hours=20)
        ),
        CoverageRequest(
            id="req_derby", title="City derby", category="sports",
            priority=Priority.MEDIUM, requested_window=window(15, 2), location=STADIUM,
            status=RequestStatus.APPROVED, requester_id="user_cam_02", department="Sports",
            approver_id="user_editor_02",
            created_at=now - timedelta(days=3), updated_at=now - timedelta(days=1)
        ),
        CoverageRequest(
            id="req_expo", title="Tech expo opening", category="business",
            priority=Priority.LOW, requested_window=window(13, 4), location=MILLENNIUM_HALL,
            status=RequestStatus.PENDING_APPROVAL, requester_id="user_rep_02", department="News",
            approver_id="user_editor_01", approval_due_at=now - timedelta(hours=5),
            created_at=now - timedelta(days=1), updated_at=now - timedelta(hours=6)
        ),
        CoverageRequest(
            id="req_feature", title="Coffee farmers feature", category="features",
            priority=Priority.LOW, requested_window=window(8, 6), location=ADAMA,
            status=RequestStatus.DRAFT, requester_id="user_rep_01", department="News",
            created_at=now - timedelta(days=3), updated_at=now - timedelta(days=2)
        ),
    ]


def build_demo_dataset(now: Optional[datetime] = None) -> Dict[str, List]:
    now = now or datetime.now()
    data = {
        "requests": build_requests(now),
        "resources": build_resources(now),
    }
    logger.info(f"Built demo dataset: {len(data['requests'])} requests, {len(data['resources'])} resources")
    return data


def save_dataset(data: Dict[str, List], filename: str, generated_at: datetime) -> None:
    """
    Save a dataset so repeated demo runs see the same inputs.
    `generated_at` is the `now` the dataset was built around.
    """
    serializable = {key: [item.model_dump(mode='json') for item in val] for key, val in data.items()}
    serializable["generated_at"] = generated_at.isoformat()
    with open(filename, 'w') as f:
        json.dump(serializable, f, indent=2)
    logger.info(f"Saved dataset to {filename}")


def load_dataset(filename: str, now: Optional[datetime] = None) -> Optional[Dict[str, List]]:
    """
    Load a cached dataset and re-hydrate the models.
    With `now`, every timestamp is moved forward so the dataset sits where it
    did relative to the clock it was built with; overdue items stay overdue.
    Returns None when the cache is missing, unreadable or has no build time.
    """
    try:
        with open(filename, 'r') as f:
            raw = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        logger.warning(f"Cache file {filename} not found or invalid. Building a fresh dataset.")
        return None

    try:
        data = {
            "requests": [CoverageRequest(**item) for item in raw.get('requests', [])],
            "resources": [Resource(**item) for item in raw.get('resources', [])],
        }
    except ValidationError as e:
        logger.error(f"Cached dataset failed validation: {e}")
        return None

    if now is not None:
        generated_at = raw.get('generated_at')
        if not generated_at:
            logger.warning(f"Cache file {filename} has no build time. Building a fresh dataset.")
            return None
        delta = now - datetime.fromisoformat(generated_at)
        data = {key: [_shift(item, delta) for item in items] for key, items in data.items()}
        logger.info(f"Re-anchored cached dataset by {delta}")

    logger.info(f"Cache loaded: {len(data['requests'])} requests, {len(data['resources'])} resources")
    return data


def _shift(value, delta: timedelta):
    """Move every datetime inside a model (nested models and lists included) by `delta`."""
    if isinstance(value, datetime):
        return value + delta
    if isinstance(value, BaseModel):
        for name in type(value).model_fields:
            setattr(value, name, _shift(getattr(value, name), delta))
        return value
    if isinstance(value, list):
        return [_shift(item, delta) for item in value]
    if isinstance(value, dict):
        return {key: _shift(item, delta) for key, item in value.items()}
    return value
