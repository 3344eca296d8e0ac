"""Pytest configuration and shared fixtures."""

import os

os.environ.setdefault("LEAVEFLOW_DATABASE_URL", "sqlite://")
os.environ.setdefault("LEAVEFLOW_NOTIFICATIONS_ASYNC", "false")
os.environ.setdefault("LEAVEFLOW_SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from leaveflow.core.security import create_access_token
from leaveflow.core.workflow.service import WorkflowService
from leaveflow.db.base import Base
import leaveflow.db.models  # noqa: F401
from leaveflow.services.directory import IdentityDirectory

from tests.factories import create_approver, create_student


class RecordingNotifier:
    """Workflow notifier that keeps every effect it is handed."""

    def __init__(self):
        self.calls = []

    def __call__(self, request_id, effect):
        self.calls.append((request_id, effect))

    @property
    def effects(self):
        return [effect for _, effect in self.calls]


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine so several sessions can share the data."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'leaveflow.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(db_session, notifier):
    return WorkflowService(db_session, directory=IdentityDirectory(db_session), notifier=notifier)


@pytest.fixture
def people(db_session):
    """One student and one active holder of every approver role."""
    people = {
        "student": create_student(db_session, name="Asha Patil", mobile="+919800000001"),
        "counsellor": create_approver(db_session, "counsellor", name="Ravi Counsellor"),
        "hod": create_approver(db_session, "hod", name="Meera HOD"),
        "joint_director": create_approver(db_session, "joint_director", name="Vikram JD"),
        "warden": create_approver(db_session, "warden", name="Sunita Warden"),
    }
    db_session.commit()
    return people


@pytest.fixture
def auth_headers():
    def _headers(identity):
        token = create_access_token(identity.id, identity.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def client(db_session, notifier):
    from leaveflow.api.deps import get_db, get_workflow_service
    from leaveflow.api.main import app

    def override_get_db():
        yield db_session

    def override_get_workflow_service():
        return WorkflowService(db_session, notifier=notifier)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_workflow_service] = override_get_workflow_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
