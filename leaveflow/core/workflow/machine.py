"""Request workflow state machine.

Computes the next status/level of a request from its current state, the acting
role and the decision. It never touches the database: the caller persists the
returned outcome.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional
from uuid import UUID

from .exceptions import InvalidTransition
from .states import (
    ApprovalLevel,
    Decision,
    EffectKind,
    NO_EFFECT,
    RequestStatus,
    RequestType,
    TransitionEffect,
    approving_levels,
    is_terminal,
    next_level,
)
from .validation import validate_comment, validate_rejection_reason

logger = logging.getLogger(__name__)


class TransitionOutcome(NamedTuple):
    """Result of a single transition, ready to be persisted."""
    request_id: UUID
    decision: Decision
    from_status: RequestStatus
    to_status: RequestStatus
    from_level: ApprovalLevel
    to_level: ApprovalLevel
    actor_id: Optional[UUID]
    acted_at: datetime
    comment: Optional[str]
    effect: TransitionEffect

    @property
    def approved_level(self) -> Optional[ApprovalLevel]:
        """Level whose approval record is set by this outcome."""
        return self.from_level if self.decision is Decision.APPROVE else None


class RequestStateMachine:
    """
    State machine for a single leave/outpass request.

    Handles:
    - Advancing through the per-type chain on approval
    - Freezing the level on rejection and cancellation
    - Refusing any transition once the request is terminal
    - Callback hooks for side effects
    """

    def __init__(
        self,
        request_id: UUID,
        request_type: RequestType,
        status: RequestStatus,
        current_level: ApprovalLevel,
        *,
        approvals: Optional[Mapping[ApprovalLevel, bool]] = None,
    ):
        """
        Initialize the state machine.

        Args:
            request_id: ID of the request
            request_type: Leave or outpass, selects the chain
            status: Current status
            current_level: Level currently responsible for the request
            approvals: Approved flag per level of the chain
        """
        self.request_id = request_id
        self.request_type = RequestType(request_type)
        self._status = RequestStatus(status)
        self._level = ApprovalLevel(current_level)
        self._approvals: Dict[ApprovalLevel, bool] = {
            level: False for level in approving_levels(self.request_type)
        }
        for level, approved in (approvals or {}).items():
            self._approvals[ApprovalLevel(level)] = bool(approved)
        self._history: List[Dict[str, Any]] = []
        self._callbacks: Dict[Decision, List[Callable[[TransitionOutcome], None]]] = {}

    @property
    def status(self) -> RequestStatus:
        return self._status

    @property
    def current_level(self) -> ApprovalLevel:
        return self._level

    @property
    def approvals(self) -> Dict[ApprovalLevel, bool]:
        return dict(self._approvals)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self._status)

    def levels_visited(self) -> List[ApprovalLevel]:
        """Levels the request has been at so far, in order."""
        visited = [entry["from_level"] for entry in self._history if entry["from_level"] != entry["to_level"]]
        return [ApprovalLevel(level) for level in visited] + [self._level]

    def transition(
        self,
        decision: Decision,
        *,
        acting_role: Optional[ApprovalLevel] = None,
        actor_id: Optional[UUID] = None,
        comment: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Perform a transition.

        Args:
            decision: Approve, reject or cancel
            acting_role: Role of the approver (ignored for cancel)
            actor_id: ID of the acting identity
            comment: Approval comment or rejection reason

        Returns:
            The outcome describing the new state and its notification effect

        Raises:
            InvalidTransition: If the request is terminal or not at acting_role
            ValidationError: If the comment/reason is malformed
        """
        decision = Decision(decision)

        if self.is_terminal:
            raise InvalidTransition(
                f"Cannot {decision.value} a request that is {self._status.value}",
                status=self._status.value,
                level=self._level.value,
            )

        if decision is Decision.CANCEL:
            outcome = self._cancel(actor_id)
        else:
            if acting_role is None or ApprovalLevel(acting_role) is not self._level:
                raise InvalidTransition(
                    f"Request is at {self._level.value} level, not "
                    f"{acting_role.value if acting_role else 'unknown'}",
                    status=self._status.value,
                    level=self._level.value,
                )
            if decision is Decision.APPROVE:
                outcome = self._approve(actor_id, validate_comment(comment))
            else:
                outcome = self._reject(actor_id, validate_rejection_reason(comment))

        self._status = outcome.to_status
        self._level = outcome.to_level
        if outcome.approved_level is not None:
            self._approvals[outcome.approved_level] = True

        self._history.append({
            "id": uuid.uuid4(),
            "request_id": self.request_id,
            "decision": outcome.decision.value,
            "from_status": outcome.from_status.value,
            "to_status": outcome.to_status.value,
            "from_level": outcome.from_level.value,
            "to_level": outcome.to_level.value,
            "actor_id": actor_id,
            "comment": outcome.comment,
            "timestamp": outcome.acted_at,
        })

        self._execute_callbacks(outcome)
        return outcome

    def register_callback(
        self,
        decision: Decision,
        callback: Callable[[TransitionOutcome], None],
    ) -> None:
        """Register a callback to be executed after a transition."""
        self._callbacks.setdefault(Decision(decision), []).append(callback)

    def get_history(self) -> List[Dict[str, Any]]:
        """Get the transitions performed by this machine."""
        return self._history.copy()

    def _approve(self, actor_id: Optional[UUID], comment: Optional[str]) -> TransitionOutcome:
        target = next_level(self.request_type, self._level)
        if target is None:
            raise InvalidTransition(
                f"{self._level.value} is not part of the {self.request_type.value} chain",
                status=self._status.value,
                level=self._level.value,
            )

        if target is ApprovalLevel.COMPLETED:
            to_status = RequestStatus.APPROVED
            effect = TransitionEffect(EffectKind.FINAL_APPROVAL)
        else:
            to_status = RequestStatus.PENDING
            effect = TransitionEffect(EffectKind.FORWARD, target)

        return self._outcome(Decision.APPROVE, to_status, target, actor_id, comment, effect)

    def _reject(self, actor_id: Optional[UUID], reason: str) -> TransitionOutcome:
        return self._outcome(
            Decision.REJECT,
            RequestStatus.REJECTED,
            self._level,
            actor_id,
            reason,
            TransitionEffect(EffectKind.FINAL_REJECTION),
        )

    def _cancel(self, actor_id: Optional[UUID]) -> TransitionOutcome:
        return self._outcome(Decision.CANCEL, RequestStatus.CANCELLED, self._level, actor_id, None, NO_EFFECT)

    def _outcome(
        self,
        decision: Decision,
        to_status: RequestStatus,
        to_level: ApprovalLevel,
        actor_id: Optional[UUID],
        comment: Optional[str],
        effect: TransitionEffect,
    ) -> TransitionOutcome:
        return TransitionOutcome(
            request_id=self.request_id,
            decision=decision,
            from_status=self._status,
            to_status=to_status,
            from_level=self._level,
            to_level=to_level,
            actor_id=actor_id,
            acted_at=datetime.utcnow(),
            comment=comment,
            effect=effect,
        )

    def _execute_callbacks(self, outcome: TransitionOutcome) -> None:
        for callback in self._callbacks.get(outcome.decision, []):
            try:
                callback(outcome)
            except Exception:
                # A failing hook never undoes the transition
                logger.exception("Callback error for %s on request %s", outcome.decision.value, self.request_id)
