"""Request workflow states, levels and approval chains.

Chain Diagram:

    Outpass:
    ┌────────────┐    ┌────────┐    ┌───────────┐
    │ COUNSELLOR │───►│ WARDEN │───►│ COMPLETED │
    └────────────┘    └────────┘    └───────────┘

    Leave:
    ┌────────────┐    ┌─────┐    ┌────────────────┐    ┌────────┐    ┌───────────┐
    │ COUNSELLOR │───►│ HOD │───►│ JOINT_DIRECTOR │───►│ WARDEN │───►│ COMPLETED │
    └────────────┘    └─────┘    └────────────────┘    └────────┘    └───────────┘

Every level may reject instead of approving, which ends the request with the
level frozen where the rejection happened. The submitter may cancel at any
level while the request is still pending.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Set, Tuple


class RequestType(str, Enum):
    """Kinds of request a student can submit."""

    LEAVE = "leave"
    OUTPASS = "outpass"


class RequestStatus(str, Enum):
    """Lifecycle status of a request."""

    PENDING = "pending"          # Waiting on the role at current_level

    # Terminal states
    APPROVED = "approved"        # Approved by every level of the chain
    REJECTED = "rejected"        # Rejected by the role at current_level
    CANCELLED = "cancelled"      # Withdrawn by the submitter


class ApprovalLevel(str, Enum):
    """Role currently responsible for deciding a pending request."""

    COUNSELLOR = "counsellor"
    HOD = "hod"
    JOINT_DIRECTOR = "joint_director"
    WARDEN = "warden"
    COMPLETED = "completed"


class Decision(str, Enum):
    """Actions that move a request through its chain."""

    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"


class EffectKind(str, Enum):
    """Notification side effect produced by a transition."""

    SUBMITTED = "submitted"              # Confirmation to the submitter
    FORWARD = "forward"                  # All active holders of the new level
    APPROVERS_NAMED = "approvers_named"  # Later-level approvers named on the submission
    FINAL_APPROVAL = "final_approval"    # Submitter
    FINAL_REJECTION = "final_rejection"  # Submitter
    NONE = "none"


class TransitionEffect(NamedTuple):
    """What has to be notified after a transition is committed."""
    kind: EffectKind
    level: Optional[ApprovalLevel] = None

    @property
    def notifies_submitter(self) -> bool:
        return self.kind in (
            EffectKind.SUBMITTED,
            EffectKind.FINAL_APPROVAL,
            EffectKind.FINAL_REJECTION,
        )


NO_EFFECT = TransitionEffect(EffectKind.NONE)


# Fixed approval chains, in order. COMPLETED is the sentinel after the last role.
CHAINS: Dict[RequestType, Tuple[ApprovalLevel, ...]] = {
    RequestType.OUTPASS: (
        ApprovalLevel.COUNSELLOR,
        ApprovalLevel.WARDEN,
        ApprovalLevel.COMPLETED,
    ),
    RequestType.LEAVE: (
        ApprovalLevel.COUNSELLOR,
        ApprovalLevel.HOD,
        ApprovalLevel.JOINT_DIRECTOR,
        ApprovalLevel.WARDEN,
        ApprovalLevel.COMPLETED,
    ),
}

INITIAL_STATUS = RequestStatus.PENDING
INITIAL_LEVEL = ApprovalLevel.COUNSELLOR

TERMINAL_STATUSES: Set[RequestStatus] = {
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
}


def chain_for(request_type: RequestType) -> Tuple[ApprovalLevel, ...]:
    """Full chain for a request type, including the COMPLETED sentinel."""
    return CHAINS[RequestType(request_type)]


def approving_levels(request_type: RequestType) -> Tuple[ApprovalLevel, ...]:
    """Levels that hold an approval record for the request type."""
    return tuple(level for level in chain_for(request_type) if level is not ApprovalLevel.COMPLETED)


def in_chain(request_type: RequestType, level: ApprovalLevel) -> bool:
    """Check if a role takes part in the chain of a request type."""
    return level in approving_levels(request_type)


def next_level(request_type: RequestType, level: ApprovalLevel) -> Optional[ApprovalLevel]:
    """Get the level that follows ``level`` in the chain, or None if there is none."""
    chain = chain_for(request_type)
    try:
        index = chain.index(ApprovalLevel(level))
    except ValueError:
        return None
    if index + 1 >= len(chain):
        return None
    return chain[index + 1]


def is_terminal(status: RequestStatus) -> bool:
    """Check if a status is terminal (no further transitions)."""
    return RequestStatus(status) in TERMINAL_STATUSES
