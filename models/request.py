"""
Coverage request models.

A CoverageRequest is the 'Demand' side of the scheduler: somebody asks for
an event to be covered, an approver signs it off, and the orchestrator turns
it into an Event.
"""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict

from .window import TimeWindow, Location


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class RequestStatus(str, Enum):
    """Lifecycle of a coverage request."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending-approval"
    PENDING_REVISION = "pending-revision"
    APPROVED = "approved"
    SCHEDULED = "scheduled"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class EscalationRecord(BaseModel):
    """
    How far an overdue item has been escalated.
    Tier 0 means the item was never escalated.
    """
    tier: int = Field(default=0, ge=0, le=4, description="Current escalation tier")
    escalated_at: Optional[datetime] = Field(default=None, description="When the tier was last raised")
    reason: str = Field(default="", description="Why the item was escalated")


class CoverageRequest(BaseModel):
    """
    A proposal for coverage, owned by its requester.
    Only the approval workflow and the orchestrator mutate its status.
    """

    # --- Identity ---
    id: str = Field(description="Unique identifier")
    title: str = Field(min_length=1, description="Short headline of the story")
    category: str = Field(description="Desk/category, e.g. 'politics', 'sports'")
    priority: Priority = Field(default=Priority.MEDIUM)

    # --- What & Where ---
    requested_window: TimeWindow = Field(description="When the requester wants coverage")
    location: Location = Field(default_factory=Location)

    # --- Workflow ---
    status: RequestStatus = Field(default=RequestStatus.DRAFT)
    requester_id: str = Field(description="User who owns the request")
    department: Optional[str] = Field(default=None, description="Requester's department")
    approver_id: Optional[str] = Field(default=None, description="Current approver")
    approval_due_at: Optional[datetime] = Field(
        default=None,
        description="Instant by which the pending approval must be decided"
    )
    sla_deadline: Optional[datetime] = Field(
        default=None,
        description="Absolute time by which the request must reach a terminal state"
    )
    rejection_reason: Optional[str] = None
    revision_notes: Optional[str] = None

    # --- Housekeeping ---
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = Field(default=None, description="Last edit, used for stale-draft sweeps")
    escalation: EscalationRecord = Field(default_factory=EscalationRecord)
    draft_reminder_sent_at: Optional[datetime] = None
    sla_alert_sent_at: Optional[datetime] = None

    version: int = Field(default=0, ge=0, description="Optimistic concurrency counter")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "id": "req_parliament_01",
            "title": "Parliament budget session",
            "category": "politics",
            "priority": "high",
            "requested_window": {"start": "2025-03-10T09:00:00", "end": "2025-03-10T12:00:00"},
            "location": {"name": "Parliament", "coordinates": {"lat": 9.0301, "lng": 38.7631}},
            "status": "pending-approval",
            "requester_id": "user_reporter_07",
            "department": "News",
            "approver_id": "user_editor_02",
            "approval_due_at": "2025-03-08T17:00:00"
        }
    })
