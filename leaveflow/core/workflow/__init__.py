"""Request workflow module for LeaveFlow.

Implements the multi-level approval state machine for leave and outpass
requests. The persistence-aware service lives in
``leaveflow.core.workflow.service``.
"""

from .states import (
    RequestType,
    RequestStatus,
    ApprovalLevel,
    Decision,
    EffectKind,
    TransitionEffect,
    CHAINS,
    TERMINAL_STATUSES,
)
from .exceptions import WorkflowError, ValidationError, Forbidden, InvalidTransition, NotFound
from .machine import RequestStateMachine, TransitionOutcome

__all__ = [
    "RequestType",
    "RequestStatus",
    "ApprovalLevel",
    "Decision",
    "EffectKind",
    "TransitionEffect",
    "CHAINS",
    "TERMINAL_STATUSES",
    "WorkflowError",
    "ValidationError",
    "Forbidden",
    "InvalidTransition",
    "NotFound",
    "RequestStateMachine",
    "TransitionOutcome",
]
