"""Role definitions for LeaveFlow.

Defines the five identity roles and what each may do with a request:
1. Student - Submits, views and cancels their own requests
2. Counsellor - First level of every chain
3. HOD - Second level of the leave chain
4. Joint Director - Third level of the leave chain
5. Warden - Last level of every chain
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional

from leaveflow.core.workflow.states import ApprovalLevel


class Role(str, Enum):
    """Roles an identity can hold."""

    STUDENT = "student"
    COUNSELLOR = "counsellor"
    HOD = "hod"
    JOINT_DIRECTOR = "joint_director"
    WARDEN = "warden"


class Action(str, Enum):
    """Actions that can be performed on a request."""

    SUBMIT = "submit"
    VIEW = "view"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


APPROVER_ROLES: FrozenSet[Role] = frozenset({
    Role.COUNSELLOR,
    Role.HOD,
    Role.JOINT_DIRECTOR,
    Role.WARDEN,
})

STUDENT_ACTIONS: FrozenSet[Action] = frozenset({Action.SUBMIT, Action.VIEW, Action.CANCEL})

APPROVER_ACTIONS: FrozenSet[Action] = frozenset({Action.VIEW, Action.APPROVE, Action.REJECT})

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Action]] = {
    Role.STUDENT: STUDENT_ACTIONS,
    **{role: APPROVER_ACTIONS for role in APPROVER_ROLES},
}


def is_approver(role: str) -> bool:
    """Check if a role string names an approving role."""
    try:
        return Role(role) in APPROVER_ROLES
    except ValueError:
        return False


def role_capabilities(role: str) -> FrozenSet[Action]:
    """Actions a role is allowed to attempt at all."""
    try:
        return ROLE_CAPABILITIES[Role(role)]
    except ValueError:
        return frozenset()


def level_for_role(role: str) -> Optional[ApprovalLevel]:
    """Approval level owned by an approver role, None for students."""
    if not is_approver(role):
        return None
    return ApprovalLevel(Role(role).value)
