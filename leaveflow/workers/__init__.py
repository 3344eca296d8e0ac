"""Celery workers for LeaveFlow."""

from leaveflow.workers.notification_tasks import (
    celery_app,
    dispatch_effect,
    retry_failed_notifications,
    enqueue_effect,
    deliver_effect,
)

__all__ = [
    "celery_app",
    "dispatch_effect",
    "retry_failed_notifications",
    "enqueue_effect",
    "deliver_effect",
]
