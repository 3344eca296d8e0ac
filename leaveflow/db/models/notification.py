"""Notification delivery log."""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Integer, Uuid
from sqlalchemy.orm import relationship

from leaveflow.db.base import Base


class NotificationChannel(str, Enum):
    """Available notification channels."""
    EMAIL = "email"
    SMS = "sms"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationLog(Base):
    """
    Log of attempted notifications for audit and retries.
    """
    __tablename__ = "notification_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Notification details
    channel = Column(String(20), nullable=False)  # email, sms
    template = Column(String(50), nullable=False)  # e.g. forward:leave
    recipient = Column(String(255), nullable=False)  # Email address or mobile number

    # Related entities
    identity_id = Column(Uuid(as_uuid=True), ForeignKey("identities.id", ondelete="SET NULL"), nullable=True)
    request_id = Column(Uuid(as_uuid=True), ForeignKey("leave_requests.id", ondelete="SET NULL"), nullable=True, index=True)

    # Payload
    subject = Column(String(512), nullable=True)
    body = Column(Text, nullable=True)

    # Status
    status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value, index=True)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    sent_at = Column(DateTime, nullable=True)

    identity = relationship("Identity")
    request = relationship("LeaveRequest")

    def __repr__(self) -> str:
        return f"<NotificationLog {self.template} to {self.recipient} [{self.status}]>"
