"""Authorization checks for LeaveFlow.

The gate decides whether an identity may act on a request in its current
state. It only reads; it never changes a request.
"""

import logging
from functools import wraps
from typing import Callable, Union

from fastapi import HTTPException, status

from leaveflow.core.workflow.exceptions import Forbidden, InvalidTransition, ValidationError, WorkflowError
from leaveflow.core.workflow.states import RequestStatus, in_chain
from .roles import Action, Role, level_for_role, role_capabilities

logger = logging.getLogger(__name__)


class AuthorizationGate:
    """Checks if an actor may perform an action on a request."""

    def can_act(self, actor, request, action: Union[str, Action], *, has_pending: bool = False) -> bool:
        """Boolean form of :meth:`ensure_can_act`."""
        try:
            self.ensure_can_act(actor, request, action, has_pending=has_pending)
        except WorkflowError:
            return False
        return True

    def ensure_can_act(self, actor, request, action: Union[str, Action], *, has_pending: bool = False) -> None:
        """
        Raise unless ``actor`` may perform ``action`` on ``request``.

        Args:
            actor: Identity with ``id``, ``role`` and ``is_active``
            request: LeaveRequest (None for submit)
            action: Action to check
            has_pending: Whether the actor already owns a pending request (submit only)

        Raises:
            Forbidden: Wrong role, wrong level or not the owner
            InvalidTransition: Request already decided
            ValidationError: Submitter already has a pending request
        """
        action = Action(action)

        if actor is None or not actor.is_active:
            raise Forbidden("Account is missing or deactivated")

        if action not in role_capabilities(actor.role):
            raise Forbidden(f"Role {actor.role} may not {action.value} requests")

        if action is Action.SUBMIT:
            self._check_submit(has_pending)
        elif action is Action.VIEW:
            self._check_view(actor, request)
        elif action is Action.CANCEL:
            self._check_cancel(actor, request)
        else:
            self._check_decide(actor, request, action)

    def _check_submit(self, has_pending: bool) -> None:
        if has_pending:
            raise ValidationError(
                "You already have a pending application. Please wait for it to be processed.",
                errors=[{"field": "submitter", "message": "pending request exists"}],
            )

    def _check_view(self, actor, request) -> None:
        if actor.role == Role.STUDENT.value and request.submitter_id != actor.id:
            raise Forbidden("Access denied")

    def _check_cancel(self, actor, request) -> None:
        if request.submitter_id != actor.id:
            raise Forbidden("Only the submitter can cancel a request")
        if request.status != RequestStatus.PENDING.value:
            raise InvalidTransition(
                "Application cannot be cancelled at this stage",
                status=request.status,
                level=request.current_level,
            )

    def _check_decide(self, actor, request, action: Action) -> None:
        if request.status != RequestStatus.PENDING.value:
            raise InvalidTransition(
                f"Request is already {request.status}",
                status=request.status,
                level=request.current_level,
            )

        level = level_for_role(actor.role)
        if level is None or not in_chain(request.request_type, level):
            raise Forbidden(f"{actor.role} does not take part in {request.request_type} approvals")

        if level.value == request.current_level:
            return

        record = request.approvals.get(level.value)
        if record is not None and record.approved:
            # Someone holding this role already moved the request on
            raise InvalidTransition(
                f"Request has already been decided at {level.value} level",
                status=request.status,
                level=request.current_level,
            )

        logger.warning(
            "%s tried to %s request %s at %s level",
            actor.role, action.value, request.id, request.current_level,
        )
        raise Forbidden(f"Application is not at {actor.role} level")


def require_role(*roles: Union[str, Role]):
    """
    Decorator factory for FastAPI endpoints restricted to some roles.

    Usage:
        @router.post("/requests/{request_id}/approve")
        @require_role(Role.COUNSELLOR, Role.HOD, Role.JOINT_DIRECTOR, Role.WARDEN)
        async def approve(current_identity: Identity = Depends(get_current_identity)):
            ...
    """
    allowed = {Role(r).value for r in roles}

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            current_identity = kwargs.get("current_identity")
            if not current_identity:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required"
                )

            if current_identity.role not in allowed:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"User type {current_identity.role} is not authorized to access this route"
                )

            return await func(*args, **kwargs)

        return wrapper
    return decorator


def require_approver(func: Callable):
    """Shorthand for :func:`require_role` with every approver role."""
    return require_role(Role.COUNSELLOR, Role.HOD, Role.JOINT_DIRECTOR, Role.WARDEN)(func)
