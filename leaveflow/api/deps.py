from typing import Generator

from fastapi import BackgroundTasks, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from leaveflow.core.config import get_settings
from leaveflow.core.security import decode_token
from leaveflow.core.workflow.service import WorkflowService
from leaveflow.db.models import Identity
from leaveflow.db.session import SessionLocal
from leaveflow.services.directory import IdentityDirectory
from leaveflow.workers.notification_tasks import deliver_effect, enqueue_effect

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_identity(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> Identity:
    """Get the current identity from the bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if token:
        identity_id = decode_token(token)
        if identity_id:
            identity = db.get(Identity, identity_id)
            if identity and identity.is_active:
                return identity

    raise credentials_exception


def get_workflow_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
) -> WorkflowService:
    """Workflow service whose notifications run after the response is sent."""
    if get_settings().notifications_async:
        notifier = enqueue_effect
    else:
        def notifier(request_id, effect):
            background_tasks.add_task(
                deliver_effect,
                str(request_id),
                effect.kind.value,
                effect.level.value if effect.level else None,
            )

    return WorkflowService(db, directory=IdentityDirectory(db), notifier=notifier)
