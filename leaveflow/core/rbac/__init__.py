"""Role-based access control for LeaveFlow.

Defines the roles, their capabilities and the authorization gate consulted
before every workflow transition.
"""

from .roles import Role, Action, APPROVER_ROLES, ROLE_CAPABILITIES, is_approver, level_for_role
from .checker import AuthorizationGate, require_role, require_approver

__all__ = [
    "Role",
    "Action",
    "APPROVER_ROLES",
    "ROLE_CAPABILITIES",
    "is_approver",
    "level_for_role",
    "AuthorizationGate",
    "require_role",
    "require_approver",
]
