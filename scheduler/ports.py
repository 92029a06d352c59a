"""
Collaborator interfaces consumed by the scheduling core.

The core only *decides* who to notify; delivery, user lookup and storage
belong to other subsystems and are reached through these protocols.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from models import Assignment, CoverageRequest, Event, EventStatus, RequestStatus, AssignmentStatus, Resource, ResourceKind

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, recipient_id: str, message: str, priority: str) -> None:
        ...


class Directory(Protocol):
    def users_with_role(self, role: str, department: Optional[str] = None) -> List[str]:
        ...


class Persistence(Protocol):
    """Versioned entity storage. Writes are compare-and-swap on `version`."""

    def get_request(self, request_id: str) -> Optional[CoverageRequest]: ...
    def save_request(self, request: CoverageRequest) -> CoverageRequest: ...
    def list_requests(self, statuses: Optional[Iterable[RequestStatus]] = None) -> List[CoverageRequest]: ...

    def get_event(self, event_id: str) -> Optional[Event]: ...
    def save_event(self, event: Event) -> Event: ...
    def delete_event(self, event_id: str) -> None: ...
    def list_events(self, statuses: Optional[Iterable[EventStatus]] = None) -> List[Event]: ...

    def get_resource(self, resource_id: str) -> Optional[Resource]: ...
    def save_resource(self, resource: Resource) -> Resource: ...
    def delete_resource(self, resource_id: str) -> None: ...
    def list_resources(self, category: Optional[str] = None, kind: Optional[ResourceKind] = None) -> List[Resource]: ...
    def resources_booked_for(self, event_id: str) -> List[Resource]: ...

    def get_assignment(self, assignment_id: str) -> Optional[Assignment]: ...
    def save_assignment(self, assignment: Assignment) -> Assignment: ...
    def list_assignments(self, statuses: Optional[Iterable[AssignmentStatus]] = None) -> List[Assignment]: ...


@dataclass
class SentNotification:
    recipient_id: str
    message: str
    priority: str
    sent_at: datetime


class LoggingNotifier:
    """Notifier that only logs. Keeps what it 'sent' for inspection."""

    def __init__(self):
        self.sent: List[SentNotification] = []

    def notify(self, recipient_id: str, message: str, priority: str) -> None:
        logger.info(f"[{priority}] -> {recipient_id}: {message}")
        self.sent.append(SentNotification(recipient_id, message, priority, datetime.now()))

    def sent_to(self, recipient_id: str) -> List[SentNotification]:
        return [n for n in self.sent if n.recipient_id == recipient_id]


@dataclass
class StaticDirectory:
    """
    Directory backed by a plain mapping: role -> [(user_id, department)].
    A department filter of None matches every department.
    """
    members: Dict[str, List[Tuple[str, Optional[str]]]] = field(default_factory=dict)

    def add(self, role: str, user_id: str, department: Optional[str] = None) -> None:
        self.members.setdefault(role, []).append((user_id, department))

    def users_with_role(self, role: str, department: Optional[str] = None) -> List[str]:
        return [
            user_id for user_id, dept in self.members.get(role, [])
            if department is None or dept == department
        ]
