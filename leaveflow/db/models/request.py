"""Leave/outpass request models.

Stores requests, their per-level approval records and their transition history.
"""

import math
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, Uuid, text,
)
from sqlalchemy.orm import attribute_keyed_dict, relationship

from leaveflow.db.base import Base


class LeaveRequest(Base):
    """
    A leave or outpass application.

    A submitter may own at most one pending request; the partial unique index
    below enforces it at write time.
    """
    __tablename__ = "leave_requests"
    __table_args__ = (
        Index(
            "uq_leave_requests_one_pending_per_submitter",
            "submitter_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_leave_requests_level_status", "current_level", "status"),
        Index("ix_leave_requests_type_status", "request_type", "status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    submitter_id = Column(Uuid(as_uuid=True), ForeignKey("identities.id"), nullable=False, index=True)
    request_type = Column(String(20), nullable=False)  # leave, outpass

    # Outpass schedule
    initial_time = Column(DateTime, nullable=True)
    expected_return_time = Column(DateTime, nullable=True)

    # Leave schedule
    journey_date = Column(DateTime, nullable=True)
    return_date = Column(DateTime, nullable=True)

    reason = Column(String(500), nullable=False)
    address = Column(String(200), nullable=False)
    attendance_percent = Column(Float, nullable=False)
    last_semester_score = Column(Float, nullable=False)

    # Approver snapshot taken at submission, never re-resolved
    counsellor_email = Column(String(255), nullable=False)
    warden_email = Column(String(255), nullable=False)
    hod_email = Column(String(255), nullable=True)

    # Workflow state
    status = Column(String(20), nullable=False, default="pending", index=True)
    current_level = Column(String(30), nullable=False, default="counsellor")
    version = Column(Integer, nullable=False, default=1)

    # Rejection tracking
    rejected_by = Column(Uuid(as_uuid=True), ForeignKey("identities.id", ondelete="SET NULL"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(String(200), nullable=True)

    # Timestamps
    submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    submitter = relationship("Identity", foreign_keys=[submitter_id])
    rejecter = relationship("Identity", foreign_keys=[rejected_by])
    approvals = relationship(
        "ApprovalRecord",
        back_populates="request",
        collection_class=attribute_keyed_dict("level"),
        cascade="all, delete-orphan",
    )
    history = relationship("RequestHistory", back_populates="request", order_by="RequestHistory.created_at")

    @property
    def schedule(self) -> Dict[str, Optional[datetime]]:
        if self.request_type == "outpass":
            return {"initial_time": self.initial_time, "expected_return_time": self.expected_return_time}
        return {"journey_date": self.journey_date, "return_date": self.return_date}

    @property
    def approver_emails(self) -> Dict[str, Optional[str]]:
        emails = {"counsellor": self.counsellor_email, "warden": self.warden_email}
        if self.request_type == "leave":
            emails["hod"] = self.hod_email
        return emails

    @property
    def duration_days(self) -> Optional[int]:
        """Length of a leave in whole days, rounded up."""
        if self.request_type != "leave" or not self.journey_date or not self.return_date:
            return None
        return math.ceil(abs((self.return_date - self.journey_date).total_seconds()) / 86400)

    @property
    def duration_hours(self) -> Optional[int]:
        """Length of an outpass in whole hours, rounded up."""
        if self.request_type != "outpass" or not self.initial_time or not self.expected_return_time:
            return None
        return math.ceil(abs((self.expected_return_time - self.initial_time).total_seconds()) / 3600)

    def snapshot(self) -> Dict[str, Any]:
        """Workflow-relevant state, for before/after comparisons."""
        return {
            "status": self.status,
            "current_level": self.current_level,
            "version": self.version,
            "rejected_by": self.rejected_by,
            "rejection_reason": self.rejection_reason,
            "approvals": {
                level: (record.approved, record.approver_id, record.comment)
                for level, record in sorted(self.approvals.items())
            },
        }

    def __repr__(self) -> str:
        return f"<LeaveRequest {self.id} {self.request_type} [{self.status}@{self.current_level}]>"


class ApprovalRecord(Base):
    """Approval sub-record for one level of a request's chain."""
    __tablename__ = "approval_records"
    __table_args__ = (
        UniqueConstraint("request_id", "level", name="uq_approval_records_request_level"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(Uuid(as_uuid=True), ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    level = Column(String(30), nullable=False)
    approved = Column(Boolean, default=False, nullable=False)
    approver_id = Column(Uuid(as_uuid=True), ForeignKey("identities.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    comment = Column(String(200), nullable=True)

    request = relationship("LeaveRequest", back_populates="approvals")
    approver = relationship("Identity")

    def __repr__(self) -> str:
        return f"<ApprovalRecord {self.level} approved={self.approved}>"


class RequestHistory(Base):
    """
    Records every workflow transition of a request.

    Provides a complete audit trail of the approval chain.
    """
    __tablename__ = "request_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    request_id = Column(Uuid(as_uuid=True), ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False, index=True)

    # Transition details
    decision = Column(String(20), nullable=False)  # submit, approve, reject, cancel
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    from_level = Column(String(30), nullable=True)
    to_level = Column(String(30), nullable=False)

    # Actor
    actor_id = Column(Uuid(as_uuid=True), ForeignKey("identities.id", ondelete="SET NULL"), nullable=True)
    comment = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    request = relationship("LeaveRequest", back_populates="history")
    actor = relationship("Identity")

    def __repr__(self) -> str:
        return f"<RequestHistory {self.from_level} -> {self.to_level} ({self.decision})>"
