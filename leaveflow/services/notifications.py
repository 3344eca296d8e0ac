"""Notification dispatch for request transitions.

Handles:
- Mapping a transition effect to a template and a recipient set
- Email delivery over SMTP
- SMS delivery through an HTTP gateway
- Retry of failed deliveries
"""

import asyncio
import logging
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, NamedTuple, Optional
from uuid import UUID

import aiosmtplib
import httpx
from jinja2 import Template
from sqlalchemy import and_
from sqlalchemy.orm import Session

from leaveflow.core.config import Settings, get_settings
from leaveflow.core.workflow.states import INITIAL_LEVEL, ApprovalLevel, EffectKind, RequestType, TransitionEffect
from leaveflow.db.models import (
    DeliveryStatus,
    Identity,
    LeaveRequest,
    NotificationChannel,
    NotificationLog,
)
from leaveflow.services.directory import IdentityDirectory

logger = logging.getLogger(__name__)


_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: {{ color }};">{{ heading }}</h2>
  <p>Dear {{ recipient_name }},</p>
  {body}
  <br>
  <p>Best regards,<br>{{ signature }}</p>
</div>
"""

_BODIES = {
    EffectKind.SUBMITTED: {
        "subject": "Application Submitted - {label}",
        "heading": "Application Submitted Successfully",
        "color": "#2c3e50",
        "signature": "College Administration",
        "html": """
  <p>Your {{ request_type }} application has been submitted successfully and is now under review.</p>
  <p>You will receive updates on the status of your application via email.</p>
  <p>Thank you for using our Leave Management System.</p>""",
        "sms": (
            "Your {{ request_type }} application has been submitted successfully and is under review. "
            "You will receive updates via email."
        ),
    },
    EffectKind.FORWARD: {
        "subject": "New Application Pending - {label}",
        "heading": "New Application Pending Review",
        "color": "#3498db",
        "signature": "Leave Management System",
        "html": """
  <p>A new {{ request_type }} application has been submitted by {{ student_name }} and requires your review.</p>
  <p>Please log in to the <a href="{{ portal_url }}">admin portal</a> to review and take action on this application.</p>""",
        "sms": (
            "New {{ request_type }} application submitted by {{ student_name }} requires your review. "
            "Please log in to the admin portal."
        ),
    },
    EffectKind.APPROVERS_NAMED: {
        "subject": "New Application Submitted - {label}",
        "heading": "New Application Submitted",
        "color": "#3498db",
        "signature": "Leave Management System",
        "html": """
  <p>{{ student_name }} has submitted a {{ request_type }} application naming you as an approver.</p>
  <p>It will appear in the <a href="{{ portal_url }}">admin portal</a> for your review once the earlier levels have approved it.</p>""",
        "sms": (
            "New {{ request_type }} application submitted by {{ student_name }} names you as an approver. "
            "It will reach you after the earlier levels approve."
        ),
    },
    EffectKind.FINAL_APPROVAL: {
        "subject": "Application Approved - {label}",
        "heading": "Application Approved",
        "color": "#27ae60",
        "signature": "College Administration",
        "html": """
  <p>Your {{ request_type }} application has been approved by {{ actor_name }}.</p>
  {% if comment %}<p><strong>Comments:</strong> {{ comment }}</p>{% endif %}
  <p>Please check your application status in the portal for further details.</p>""",
        "sms": (
            "Your {{ request_type }} application has been approved by {{ actor_name }}. "
            "Please check your email for details."
        ),
    },
    EffectKind.FINAL_REJECTION: {
        "subject": "Application Rejected - {label}",
        "heading": "Application Rejected",
        "color": "#e74c3c",
        "signature": "College Administration",
        "html": """
  <p>Your {{ request_type }} application has been rejected by {{ actor_name }}.</p>
  {% if comment %}<p><strong>Reason:</strong> {{ comment }}</p>{% endif %}
  <p>You may submit a new application if needed.</p>""",
        "sms": (
            "Your {{ request_type }} application has been rejected by {{ actor_name }}. "
            "Please check your email for details."
        ),
    },
}


def template_key(kind: EffectKind, request_type: RequestType) -> str:
    return f"{EffectKind(kind).value}:{RequestType(request_type).value}"


# Templates per (effect kind, request type)
NOTIFICATION_TEMPLATES: Dict[str, Dict[str, str]] = {
    template_key(kind, request_type): {
        "subject": parts["subject"].format(label=request_type.value.upper()),
        "html": _LAYOUT.replace("{body}", parts["html"]),
        "sms": parts["sms"],
        "heading": parts["heading"],
        "color": parts["color"],
        "signature": parts["signature"],
    }
    for kind, parts in _BODIES.items()
    for request_type in RequestType
}


class NotificationPlan(NamedTuple):
    """Who gets told what about a committed transition."""
    template_key: Optional[str]
    recipients: List[Identity]
    context: Dict[str, Any]

    @property
    def is_empty(self) -> bool:
        return self.template_key is None or not self.recipients


EMPTY_PLAN = NotificationPlan(None, [], {})


class NotificationDispatcher:
    """Maps transition effects to templates and recipients."""

    def __init__(self, directory: IdentityDirectory, settings: Optional[Settings] = None):
        self.directory = directory
        self.settings = settings or get_settings()

    def plan(self, request: LeaveRequest, effect: TransitionEffect) -> NotificationPlan:
        """
        Build the notification plan for an effect.

        FORWARD goes to every active holder of the new level and
        APPROVERS_NAMED to the approvers the submitter named for the later
        levels. The other effects go to the submitter only.
        """
        if effect.kind is EffectKind.NONE:
            return EMPTY_PLAN

        if effect.kind is EffectKind.FORWARD:
            if effect.level is None or effect.level is ApprovalLevel.COMPLETED:
                return EMPTY_PLAN
            recipients = self.directory.find_active_by_role(effect.level.value)
        elif effect.kind is EffectKind.APPROVERS_NAMED:
            recipients = self._named_approvers(request)
        else:
            submitter = self.directory.get(request.submitter_id)
            recipients = [submitter] if submitter is not None else []

        if not recipients:
            logger.warning("No recipients for %s on request %s", effect.kind.value, request.id)

        return NotificationPlan(
            template_key=template_key(effect.kind, request.request_type),
            recipients=recipients,
            context=self._build_context(request, effect),
        )

    # Snapshot columns for the named approvers, in chain order
    _NAMED_COLUMNS = (
        (ApprovalLevel.COUNSELLOR, "counsellor_email"),
        (ApprovalLevel.HOD, "hod_email"),
        (ApprovalLevel.WARDEN, "warden_email"),
    )

    def _named_approvers(self, request: LeaveRequest) -> List[Identity]:
        """
        Resolve the approver emails captured at submission.

        The first level is skipped since FORWARD already reaches every
        active holder of it.
        """
        recipients: List[Identity] = []
        for level, column in self._NAMED_COLUMNS:
            email = getattr(request, column)
            if level is INITIAL_LEVEL or not email:
                continue
            approver = self.directory.resolve_approver_by_email(level.value, email)
            if approver is None:
                logger.warning("Named %s %s no longer resolves for request %s", level.value, email, request.id)
                continue
            if approver not in recipients:
                recipients.append(approver)
        return recipients

    def _build_context(self, request: LeaveRequest, effect: TransitionEffect) -> Dict[str, Any]:
        submitter = self.directory.get(request.submitter_id)
        context = {
            "request_id": str(request.id),
            "request_type": request.request_type,
            "student_name": submitter.name if submitter else "A student",
            "portal_url": f"{self.settings.frontend_url}/applications/{request.id}",
            "actor_name": None,
            "comment": None,
        }

        if effect.kind is EffectKind.FINAL_REJECTION:
            rejecter = self.directory.get(request.rejected_by) if request.rejected_by else None
            context["actor_name"] = self._display_name(rejecter, request.current_level)
            context["comment"] = request.rejection_reason
        elif effect.kind is EffectKind.FINAL_APPROVAL:
            record = request.approvals.get(ApprovalLevel.WARDEN.value)
            approver = self.directory.get(record.approver_id) if record and record.approver_id else None
            context["actor_name"] = self._display_name(approver, ApprovalLevel.WARDEN.value)
            context["comment"] = record.comment if record else None

        return context

    @staticmethod
    def _display_name(identity: Optional[Identity], level: str) -> str:
        if identity is not None:
            return identity.name
        return level.replace("_", " ").title()


class NotificationService:
    """
    Service for delivering notification plans via email and SMS.
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        directory: Optional[IdentityDirectory] = None,
    ):
        """
        Initialize notification service.

        Args:
            db: Database session
            settings: Application settings
            directory: Identity lookups (defaults to one on ``db``)
        """
        self.db = db
        self.settings = settings or get_settings()
        self.directory = directory or IdentityDirectory(db)
        self.dispatcher = NotificationDispatcher(self.directory, self.settings)

    async def notify(self, request: LeaveRequest, effect: TransitionEffect) -> List[str]:
        """Plan and deliver the notifications for one effect."""
        return await self.deliver(self.dispatcher.plan(request, effect), request)

    async def deliver(self, plan: NotificationPlan, request: LeaveRequest) -> List[str]:
        """
        Deliver a plan to every recipient on every channel they have.

        Returns:
            List of notification log IDs
        """
        if plan.is_empty:
            return []

        template = NOTIFICATION_TEMPLATES[plan.template_key]
        notification_ids = []

        for recipient in plan.recipients:
            context = dict(
                plan.context,
                recipient_name=recipient.name,
                heading=template["heading"],
                color=template["color"],
                signature=template["signature"],
            )

            if recipient.email:
                notification_ids.append(await self._send_email(
                    to_email=recipient.email,
                    template_key=plan.template_key,
                    subject=template["subject"],
                    body=Template(template["html"], autoescape=True).render(**context),
                    identity_id=recipient.id,
                    request_id=request.id,
                ))

            if recipient.mobile:
                notification_ids.append(await self._send_sms(
                    to_number=recipient.mobile,
                    template_key=plan.template_key,
                    body=Template(template["sms"]).render(**context),
                    identity_id=recipient.id,
                    request_id=request.id,
                ))

        return notification_ids

    async def retry_failed(self, max_attempts: int = 3, limit: int = 100) -> int:
        """
        Re-send failed deliveries that have attempts left.

        Returns:
            Number of deliveries that succeeded on retry
        """
        failed = self.db.query(NotificationLog).filter(
            and_(
                NotificationLog.status == DeliveryStatus.FAILED.value,
                NotificationLog.attempts < max_attempts,
            )
        ).order_by(NotificationLog.created_at.asc()).limit(limit).all()

        recovered = 0
        for log in failed:
            if await self._attempt(log):
                recovered += 1
        self.db.commit()

        if failed:
            logger.info("Retried %d failed notifications, %d delivered", len(failed), recovered)
        return recovered

    async def _send_email(
        self,
        to_email: str,
        template_key: str,
        subject: str,
        body: str,
        identity_id: Optional[UUID] = None,
        request_id: Optional[UUID] = None,
    ) -> str:
        """Send an email notification."""
        log = NotificationLog(
            channel=NotificationChannel.EMAIL.value,
            template=template_key,
            recipient=to_email,
            identity_id=identity_id,
            request_id=request_id,
            subject=subject,
            body=body,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
        )
        self.db.add(log)
        self.db.flush()

        await self._attempt(log)
        self.db.commit()
        return str(log.id)

    async def _send_sms(
        self,
        to_number: str,
        template_key: str,
        body: str,
        identity_id: Optional[UUID] = None,
        request_id: Optional[UUID] = None,
    ) -> str:
        """Send an SMS notification."""
        log = NotificationLog(
            channel=NotificationChannel.SMS.value,
            template=template_key,
            recipient=to_number,
            identity_id=identity_id,
            request_id=request_id,
            body=body,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
        )
        self.db.add(log)
        self.db.flush()

        await self._attempt(log)
        self.db.commit()
        return str(log.id)

    async def _attempt(self, log: NotificationLog) -> bool:
        """Try one delivery of a log row and record the result."""
        log.attempts = (log.attempts or 0) + 1
        try:
            if log.channel == NotificationChannel.SMS.value:
                await self._deliver_sms(log.recipient, log.body)
            else:
                await self._deliver_email(log.recipient, log.subject, log.body)
        except Exception as e:
            logger.exception("Failed to send %s notification to %s", log.channel, log.recipient)
            log.status = DeliveryStatus.FAILED.value
            log.error_message = str(e)
            return False

        log.status = DeliveryStatus.SENT.value
        log.sent_at = datetime.utcnow()
        log.error_message = None
        return True

    async def _deliver_email(self, to_email: str, subject: str, html: str) -> None:
        """Actually deliver the email via SMTP."""
        if not self.settings.smtp_host:
            logger.warning("SMTP not configured, skipping email delivery")
            return

        msg = MIMEMultipart("alternative")
        msg["From"] = f"{self.settings.smtp_from_name} <{self.settings.smtp_from_email}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(html, "html"))

        await aiosmtplib.send(
            msg,
            hostname=self.settings.smtp_host,
            port=self.settings.smtp_port,
            username=self.settings.smtp_user,
            password=self.settings.smtp_password,
            start_tls=self.settings.smtp_use_tls,
        )

    async def _deliver_sms(self, to_number: str, message: str) -> None:
        """Actually deliver the SMS through the gateway."""
        if not self.settings.sms_gateway_url:
            logger.warning("SMS gateway not configured, skipping SMS delivery")
            return

        headers = {"Content-Type": "application/json"}
        if self.settings.sms_gateway_token:
            headers["Authorization"] = f"Bearer {self.settings.sms_gateway_token}"

        payload = {"to": to_number, "from": self.settings.sms_sender, "message": message}
        async with httpx.AsyncClient(timeout=self.settings.sms_timeout) as client:
            response = await client.post(self.settings.sms_gateway_url, json=payload, headers=headers)
            response.raise_for_status()


# Helper function for sync code
def send_notification_sync(
    db: Session,
    request_id: UUID,
    effect: TransitionEffect,
    settings: Optional[Settings] = None,
) -> List[str]:
    """Synchronous wrapper for notifying one effect of a committed transition."""
    request = db.get(LeaveRequest, request_id)
    if request is None:
        logger.warning("Request %s vanished before %s notification", request_id, effect.kind.value)
        return []

    service = NotificationService(db, settings)
    return asyncio.run(service.notify(request, effect))
