"""Database models for LeaveFlow."""

from leaveflow.db.models.identity import Identity
from leaveflow.db.models.request import LeaveRequest, ApprovalRecord, RequestHistory
from leaveflow.db.models.notification import (
    NotificationLog,
    NotificationChannel,
    DeliveryStatus,
)

__all__ = [
    "Identity",
    "LeaveRequest",
    "ApprovalRecord",
    "RequestHistory",
    "NotificationLog",
    "NotificationChannel",
    "DeliveryStatus",
]
