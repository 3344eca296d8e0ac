"""Identity directory backed by the identities table.

Resolves the approver emails a student types in and finds every active holder
of a role for role-scoped notifications.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from leaveflow.db.models import Identity


class IdentityDirectory:
    """Read-only lookups of students and approvers."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, identity_id: UUID) -> Optional[Identity]:
        """Get an identity by ID."""
        return self.db.get(Identity, identity_id)

    def resolve_approver_by_email(self, role: str, email: str) -> Optional[Identity]:
        """Find the active identity holding ``role`` with the given email."""
        if not email:
            return None
        return self.db.query(Identity).filter(
            and_(
                func.lower(Identity.email) == email.strip().lower(),
                Identity.role == role,
                Identity.is_active.is_(True),
            )
        ).first()

    def find_active_by_role(self, role: str) -> List[Identity]:
        """All active identities holding ``role``."""
        return self.db.query(Identity).filter(
            and_(
                Identity.role == role,
                Identity.is_active.is_(True),
            )
        ).order_by(Identity.email.asc()).all()

    def is_active(self, identity: Optional[Identity]) -> bool:
        return bool(identity is not None and identity.is_active)
