"""Request workflow schemas."""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class RequestCreate(BaseModel):
    """
    Submission payload.

    Field checks happen in the workflow so that API and direct callers get
    the same errors.
    """
    request_type: str
    schedule: Dict[str, Any]
    reason: str
    address: str
    attendance_percent: float
    last_semester_score: float
    approver_emails: Dict[str, Any]


class ApproveAction(BaseModel):
    comment: Optional[str] = None


class RejectAction(BaseModel):
    reason: str


class ApprovalRecordResponse(BaseModel):
    level: str
    approved: bool
    approver_id: Optional[UUID]
    approved_at: Optional[datetime]
    comment: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class RequestResponse(BaseModel):
    id: UUID
    submitter_id: UUID
    request_type: str
    schedule: Dict[str, Optional[datetime]]
    reason: str
    address: str
    attendance_percent: float
    last_semester_score: float
    approver_emails: Dict[str, Optional[str]]
    status: str
    current_level: str
    version: int
    approvals: Dict[str, ApprovalRecordResponse]
    rejected_by: Optional[UUID]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    duration_days: Optional[int]
    duration_hours: Optional[int]
    submitted_at: datetime
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class RequestHistoryResponse(BaseModel):
    id: UUID
    decision: str
    from_status: Optional[str]
    to_status: str
    from_level: Optional[str]
    to_level: str
    actor_id: Optional[UUID]
    comment: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RequestStatistics(BaseModel):
    pending: int
    today: int
    this_week: int
    this_month: int
    leave: int
    outpass: int

