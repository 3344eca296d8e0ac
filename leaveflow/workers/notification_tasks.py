"""Celery tasks for notification delivery.

Provides async task processing for:
- Notifying the effect of a committed transition
- Periodic retry of failed deliveries
"""

import asyncio
import logging
from typing import List, Optional
from uuid import UUID

from celery import Celery, shared_task
from celery.signals import after_setup_logger

from leaveflow.core.config import get_settings
from leaveflow.core.logger import configure_from_settings
from leaveflow.core.workflow.states import ApprovalLevel, EffectKind, TransitionEffect
from leaveflow.db.session import SessionLocal
from leaveflow.services.notifications import NotificationService, send_notification_sync

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Celery
celery_app = Celery(
    'leaveflow',
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_routes={
        'leaveflow.workers.notification_tasks.dispatch_effect': {'queue': 'notifications'},
        'leaveflow.workers.notification_tasks.retry_failed_notifications': {'queue': 'notifications'},
    },
    task_default_queue='default',
    beat_schedule={
        'retry-failed-notifications': {
            'task': 'leaveflow.workers.notification_tasks.retry_failed_notifications',
            'schedule': 15 * 60,
        },
    },
)


@after_setup_logger.connect
def _configure_logging(**kwargs):
    configure_from_settings(settings)


def deliver_effect(request_id: str, effect_kind: str, level: Optional[str] = None) -> List[str]:
    """Deliver one effect in a fresh database session."""
    effect = TransitionEffect(EffectKind(effect_kind), ApprovalLevel(level) if level else None)
    db = SessionLocal()
    try:
        return send_notification_sync(db, UUID(request_id), effect)
    finally:
        db.close()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def dispatch_effect(self, request_id: str, effect_kind: str, level: Optional[str] = None) -> List[str]:
    """
    Async task to notify the effect of a committed transition.

    Args:
        request_id: Request ID
        effect_kind: EffectKind value
        level: Target level for FORWARD effects

    Returns:
        List of notification log IDs
    """
    try:
        notification_ids = deliver_effect(request_id, effect_kind, level)
        logger.info("Dispatched %s for request %s: %d notifications", effect_kind, request_id, len(notification_ids))
        return notification_ids
    except Exception as e:
        logger.exception("Notification dispatch failed for request %s", request_id)
        raise self.retry(exc=e)


@shared_task
def retry_failed_notifications(max_attempts: int = 3) -> int:
    """Re-send failed deliveries that still have attempts left."""
    db = SessionLocal()
    try:
        return asyncio.run(NotificationService(db).retry_failed(max_attempts=max_attempts))
    finally:
        db.close()


def enqueue_effect(request_id: UUID, effect: TransitionEffect) -> None:
    """Workflow notifier that hands the effect to the notifications queue."""
    dispatch_effect.delay(
        str(request_id),
        effect.kind.value,
        effect.level.value if effect.level else None,
    )
