"""Workflow service for leave and outpass requests.

Provides the high-level API over the request state machine: validation,
authorization, compare-and-swap persistence and post-commit notification.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import and_, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leaveflow.core.rbac import Action, AuthorizationGate, Role
from leaveflow.db.models import ApprovalRecord, LeaveRequest, RequestHistory
from leaveflow.services.directory import IdentityDirectory

from .exceptions import Forbidden, InvalidTransition, NotFound, ValidationError, WorkflowError
from .machine import RequestStateMachine, TransitionOutcome
from .states import (
    INITIAL_LEVEL,
    INITIAL_STATUS,
    ApprovalLevel,
    Decision,
    EffectKind,
    RequestStatus,
    RequestType,
    TransitionEffect,
    approving_levels,
)
from .validation import parse_submission

logger = logging.getLogger(__name__)

Notifier = Callable[[UUID, TransitionEffect], None]

# Approver email snapshot: (role, field on ApproverEmails, column on LeaveRequest)
_APPROVER_FIELDS = (
    (Role.COUNSELLOR, "counsellor", "counsellor_email"),
    (Role.WARDEN, "warden", "warden_email"),
    (Role.HOD, "hod", "hod_email"),
)


class WorkflowService:
    """
    High-level service for the request workflow.

    Handles:
    - Submitting requests (one pending request per submitter)
    - Approving, rejecting and cancelling with optimistic locking
    - Listing requests for approvers and submitters
    - Dashboard statistics
    """

    def __init__(
        self,
        db: Session,
        *,
        directory: Optional[IdentityDirectory] = None,
        gate: Optional[AuthorizationGate] = None,
        notifier: Optional[Notifier] = None,
    ):
        """
        Initialize the workflow service.

        Args:
            db: Database session; the service commits its own transitions
            directory: Identity lookups (defaults to one on ``db``)
            gate: Authorization gate
            notifier: Called with (request_id, effect) after each commit
        """
        self.db = db
        self.directory = directory or IdentityDirectory(db)
        self.gate = gate or AuthorizationGate()
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit_request(
        self,
        submitter_id: UUID,
        request_type: str,
        schedule: Mapping[str, Any],
        reason: str,
        address: str,
        attendance: float,
        score: float,
        approver_emails: Mapping[str, Any],
    ) -> LeaveRequest:
        """
        Create a new pending request at the counsellor level.

        Raises:
            Forbidden: If the submitter is not an active student
            ValidationError: If fields are invalid, an approver email does not
                resolve, or the submitter already has a pending request
        """
        submitter = self.directory.get(submitter_id)
        self.gate.ensure_can_act(
            submitter, None, Action.SUBMIT,
            has_pending=self.has_pending_request(submitter_id),
        )

        submission = parse_submission(
            request_type, schedule, reason, address, attendance, score, approver_emails,
        )
        levels = approving_levels(submission.request_type)

        request = LeaveRequest(
            submitter_id=submitter_id,
            request_type=submission.request_type.value,
            reason=submission.reason,
            address=submission.address,
            attendance_percent=submission.attendance_percent,
            last_semester_score=submission.last_semester_score,
            status=INITIAL_STATUS.value,
            current_level=INITIAL_LEVEL.value,
            version=1,
        )
        for field, value in submission.schedule.model_dump().items():
            setattr(request, field, value)

        for role, field, column in _APPROVER_FIELDS:
            if ApprovalLevel(role.value) not in levels:
                continue
            email = getattr(submission.approver_emails, field)
            if self.directory.resolve_approver_by_email(role.value, email) is None:
                raise ValidationError(
                    f"Invalid {role.value.replace('_', ' ')} email. Please check and try again.",
                    errors=[{"field": f"approver_emails.{field}", "message": "unknown approver"}],
                )
            setattr(request, column, email)

        for level in levels:
            request.approvals[level.value] = ApprovalRecord(level=level.value, approved=False)

        request.history.append(RequestHistory(
            decision="submit",
            from_status=None,
            to_status=INITIAL_STATUS.value,
            from_level=None,
            to_level=INITIAL_LEVEL.value,
            actor_id=submitter_id,
        ))

        self.db.add(request)
        try:
            self.db.commit()
        except IntegrityError as e:
            # Lost the race against another submission by the same student
            self.db.rollback()
            raise ValidationError(
                "You already have a pending application. Please wait for it to be processed.",
                errors=[{"field": "submitter", "message": "pending request exists"}],
            ) from e

        logger.info("Request %s (%s) submitted by %s", request.id, request.request_type, submitter_id)

        self._notify(request.id, [
            TransitionEffect(EffectKind.SUBMITTED),
            TransitionEffect(EffectKind.FORWARD, INITIAL_LEVEL),
            TransitionEffect(EffectKind.APPROVERS_NAMED),
        ])
        return request

    def decide(
        self,
        request_id: UUID,
        actor_id: UUID,
        actor_role: str,
        decision: str,
        comment: Optional[str] = None,
    ) -> LeaveRequest:
        """
        Approve or reject a request at the actor's level.

        Args:
            request_id: ID of the request
            actor_id: ID of the approver
            actor_role: Role the approver acts as
            decision: ``approve`` or ``reject``
            comment: Optional comment, or the rejection reason (required)

        Raises:
            NotFound: If the request does not exist
            Forbidden: If the actor may not act at the current level
            InvalidTransition: If the request is terminal or was decided concurrently
            ValidationError: If the decision or reason is malformed
        """
        try:
            decision = Decision(decision)
        except ValueError:
            decision = None
        if decision not in (Decision.APPROVE, Decision.REJECT):
            raise ValidationError(
                "Decision must be approve or reject",
                errors=[{"field": "decision", "message": "invalid choice"}],
            )

        request = self._load(request_id)
        expected_version = request.version
        try:
            actor = self.directory.get(actor_id)
            if actor is not None and actor.role != actor_role:
                raise Forbidden(f"Identity does not hold the {actor_role} role")

            action = Action.APPROVE if decision is Decision.APPROVE else Action.REJECT
            self.gate.ensure_can_act(actor, request, action)

            outcome = self._machine_for(request).transition(
                decision,
                acting_role=ApprovalLevel(actor_role),
                actor_id=actor_id,
                comment=comment,
            )
        except WorkflowError:
            # Release the row lock taken by _load
            self.db.rollback()
            raise
        self._apply(request, outcome, expected_version)

        logger.info(
            "Request %s %s by %s: %s@%s -> %s@%s",
            request_id, decision.value, actor_id,
            outcome.from_status.value, outcome.from_level.value,
            outcome.to_status.value, outcome.to_level.value,
        )

        self._notify(request_id, [outcome.effect])
        return self._load(request_id, for_update=False)

    def cancel(self, request_id: UUID, submitter_id: UUID) -> LeaveRequest:
        """
        Cancel a pending request on behalf of its submitter.

        Raises:
            NotFound: If the request does not exist
            Forbidden: If the caller is not the submitter
            InvalidTransition: If the request is no longer pending
        """
        request = self._load(request_id)
        expected_version = request.version
        try:
            self.gate.ensure_can_act(self.directory.get(submitter_id), request, Action.CANCEL)
            outcome = self._machine_for(request).transition(Decision.CANCEL, actor_id=submitter_id)
        except WorkflowError:
            self.db.rollback()
            raise
        self._apply(request, outcome, expected_version)

        logger.info("Request %s cancelled by %s", request_id, submitter_id)

        self._notify(request_id, [outcome.effect])
        return self._load(request_id, for_update=False)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> LeaveRequest:
        """Get a request by ID, raising NotFound if it does not exist."""
        return self._load(request_id, for_update=False)

    def get_visible_request(self, request_id: UUID, viewer_id: UUID) -> LeaveRequest:
        """Get a request the viewer is allowed to see."""
        request = self._load(request_id, for_update=False)
        self.gate.ensure_can_act(self.directory.get(viewer_id), request, Action.VIEW)
        return request

    def get_history(self, request_id: UUID) -> List[RequestHistory]:
        """Get the transition history of a request, oldest first."""
        self._load(request_id, for_update=False)
        return self.db.query(RequestHistory).filter(
            RequestHistory.request_id == request_id
        ).order_by(RequestHistory.created_at.asc()).all()

    def has_pending_request(self, submitter_id: UUID) -> bool:
        return self.db.query(LeaveRequest.id).filter(
            and_(
                LeaveRequest.submitter_id == submitter_id,
                LeaveRequest.status == RequestStatus.PENDING.value,
            )
        ).first() is not None

    def get_requests_for_role(
        self,
        role: str,
        *,
        request_type: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[LeaveRequest]:
        """Pending requests currently waiting on ``role``, oldest first."""
        query = self._role_query(role, request_type)
        query = query.order_by(LeaveRequest.submitted_at.asc())
        return query.offset(offset).limit(limit).all()

    def count_requests_for_role(self, role: str, *, request_type: Optional[str] = None) -> int:
        return self._role_query(role, request_type).count()

    def get_requests_for_submitter(
        self,
        submitter_id: UUID,
        *,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[LeaveRequest]:
        """Requests owned by a submitter, newest first."""
        query = self._submitter_query(submitter_id, status)
        query = query.order_by(LeaveRequest.submitted_at.desc())
        return query.offset(offset).limit(limit).all()

    def count_requests_for_submitter(self, submitter_id: UUID, *, status: Optional[str] = None) -> int:
        return self._submitter_query(submitter_id, status).count()

    def get_statistics(self, role: str, *, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Dashboard counts for an approver.

        Wardens see every request; other roles only the ones at their level.
        """
        now = now or datetime.utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        # Weeks start on Sunday
        start_of_week = start_of_day - timedelta(days=(start_of_day.weekday() + 1) % 7)
        start_of_month = start_of_day.replace(day=1)

        scope = []
        if role != Role.WARDEN.value:
            scope.append(LeaveRequest.current_level == role)

        def count(*criteria) -> int:
            return self.db.query(func.count(LeaveRequest.id)).filter(*scope, *criteria).scalar() or 0

        return {
            "pending": count(LeaveRequest.status == RequestStatus.PENDING.value),
            "today": count(LeaveRequest.submitted_at >= start_of_day),
            "this_week": count(LeaveRequest.submitted_at >= start_of_week),
            "this_month": count(LeaveRequest.submitted_at >= start_of_month),
            "leave": count(LeaveRequest.request_type == RequestType.LEAVE.value),
            "outpass": count(LeaveRequest.request_type == RequestType.OUTPASS.value),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _role_query(self, role: str, request_type: Optional[str]):
        query = self.db.query(LeaveRequest).filter(
            and_(
                LeaveRequest.status == RequestStatus.PENDING.value,
                LeaveRequest.current_level == role,
            )
        )
        if request_type:
            query = query.filter(LeaveRequest.request_type == request_type)
        return query

    def _submitter_query(self, submitter_id: UUID, status: Optional[str]):
        query = self.db.query(LeaveRequest).filter(LeaveRequest.submitter_id == submitter_id)
        if status:
            query = query.filter(LeaveRequest.status == status)
        return query

    def _load(self, request_id: UUID, *, for_update: bool = True) -> LeaveRequest:
        query = self.db.query(LeaveRequest).filter(LeaveRequest.id == request_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        request = query.first()
        if request is None:
            raise NotFound(f"Application {request_id} not found")
        return request

    def _machine_for(self, request: LeaveRequest) -> RequestStateMachine:
        return RequestStateMachine(
            request_id=request.id,
            request_type=RequestType(request.request_type),
            status=RequestStatus(request.status),
            current_level=ApprovalLevel(request.current_level),
            approvals={level: record.approved for level, record in request.approvals.items()},
        )

    def _apply(self, request: LeaveRequest, outcome: TransitionOutcome, expected_version: int) -> None:
        """
        Persist an outcome with a compare-and-swap on status, level and version.

        Raises:
            InvalidTransition: If the row changed since it was read
        """
        values: Dict[str, Any] = {
            "status": outcome.to_status.value,
            "current_level": outcome.to_level.value,
            "version": expected_version + 1,
            "updated_at": outcome.acted_at,
        }
        if outcome.decision is Decision.REJECT:
            values.update(
                rejected_by=outcome.actor_id,
                rejected_at=outcome.acted_at,
                rejection_reason=outcome.comment,
            )

        result = self.db.execute(
            update(LeaveRequest)
            .where(
                and_(
                    LeaveRequest.id == request.id,
                    LeaveRequest.status == outcome.from_status.value,
                    LeaveRequest.current_level == outcome.from_level.value,
                    LeaveRequest.version == expected_version,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.warning("Stale %s on request %s", outcome.decision.value, request.id)
            raise InvalidTransition(
                "Application was updated by someone else; reload it and try again",
                status=outcome.from_status.value,
                level=outcome.from_level.value,
            )

        if outcome.approved_level is not None:
            record = request.approvals.get(outcome.approved_level.value)
            if record is None:
                record = ApprovalRecord(request_id=request.id, level=outcome.approved_level.value)
                self.db.add(record)
            record.approved = True
            record.approver_id = outcome.actor_id
            record.approved_at = outcome.acted_at
            record.comment = outcome.comment

        self.db.add(RequestHistory(
            request_id=request.id,
            decision=outcome.decision.value,
            from_status=outcome.from_status.value,
            to_status=outcome.to_status.value,
            from_level=outcome.from_level.value,
            to_level=outcome.to_level.value,
            actor_id=outcome.actor_id,
            comment=outcome.comment,
            created_at=outcome.acted_at,
        ))
        self.db.commit()
        self.db.expire(request)

    def _notify(self, request_id: UUID, effects: Iterable[TransitionEffect]) -> None:
        """Hand effects to the notifier; failures never undo the committed transition."""
        if self.notifier is None:
            return
        for effect in effects:
            if effect.kind is EffectKind.NONE:
                continue
            try:
                self.notifier(request_id, effect)
            except Exception:
                logger.exception("Failed to dispatch %s notification for request %s", effect.kind.value, request_id)
