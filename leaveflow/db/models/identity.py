import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Uuid

from leaveflow.db.base import Base


class Identity(Base):
    """
    A student or approver known to the identity directory.

    Registration and profile management live outside the workflow; the
    workflow only reads these rows.
    """
    __tablename__ = "identities"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(50), nullable=False)
    mobile = Column(String(20), nullable=True)
    role = Column(String(50), nullable=False, index=True)  # student, counsellor, hod, joint_director, warden
    department = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<Identity {self.email} [{self.role}]>"
