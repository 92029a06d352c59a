"""
Assignment model: a person handed a piece of work for an event.
"""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from .window import TimeWindow
from .request import EscalationRecord


class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DECLINED = "declined"


class Assignment(BaseModel):
    id: str
    event_id: str
    resource_id: Optional[str] = None
    assignee_id: str = Field(description="User doing the work")
    assigned_by: Optional[str] = None
    department: Optional[str] = None

    window: TimeWindow = Field(description="Scheduled window of the work")
    status: AssignmentStatus = Field(default=AssignmentStatus.PENDING)

    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None

    escalation: EscalationRecord = Field(default_factory=EscalationRecord)
    pending_reminder_sent_at: Optional[datetime] = None

    version: int = Field(default=0, ge=0)
