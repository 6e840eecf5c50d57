import pytest
import os
from datetime import date

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RESERVATION_MAX_ATTEMPTS"] = "25"
os.environ["RESERVATION_RETRY_WAIT_MAX"] = "0.05"

from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from leave_ledger.database import build_engine, get_db, init_db
from leave_ledger.dependencies import get_authorizer, get_notification_sink
from leave_ledger.main import app
from leave_ledger.services.collaborators import AuditNotificationSink, RequestAttachmentStore
from leave_ledger.services.leave_service import LeaveApprovalOrchestrator
from leave_ledger.services.ledger import BalanceLedger
from leave_ledger.services.workflow import ApprovalWorkflowService

EMPLOYEE_ID = 1
COLLEAGUE_ID = 2
MANAGER_ID = 10
DIRECTOR_ID = 11
OUTSIDER_ID = 99

LEAVE_START = date(2026, 3, 2)


class FakeAuthorizer:
    """Approver allow-list; nobody approves their own leave."""

    def __init__(self, approvers):
        self.approvers = set(approvers)
        self.calls = []

    def can_approve(self, approver_id, employee_id):
        self.calls.append((approver_id, employee_id))
        return approver_id in self.approvers and approver_id != employee_id


class RecordingSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.events = []

    def notify(self, event_type, payload):
        if self.fail:
            raise RuntimeError("notification backend down")
        self.events.append((event_type, payload))

    def types(self):
        return [event_type for event_type, _ in self.events]


@pytest.fixture(scope="function")
def engine(tmp_path):
    """A file-backed SQLite database per test so threads get real, separate connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()

@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()

@pytest.fixture(scope="function")
def authorizer():
    return FakeAuthorizer({MANAGER_ID, DIRECTOR_ID})

@pytest.fixture(scope="function")
def notifier():
    return RecordingSink()

@pytest.fixture(scope="function")
def ledger(db_session):
    return BalanceLedger(db_session)

@pytest.fixture(scope="function")
def workflows(db_session, authorizer, notifier):
    return ApprovalWorkflowService(db_session, authorizer, notifier)

@pytest.fixture(scope="function")
def orchestrator(db_session, authorizer, notifier):
    return LeaveApprovalOrchestrator(db_session, authorizer, RequestAttachmentStore(db_session), notifier)

@pytest.fixture(scope="function")
def make_orchestrator(session_factory, authorizer):
    """Factory for per-thread orchestrators with their own sessions."""
    sessions = []

    def _make(notifier=None):
        session = session_factory()
        sessions.append(session)
        return LeaveApprovalOrchestrator(session, authorizer, RequestAttachmentStore(session), notifier)

    yield _make
    for session in sessions:
        session.close()

@pytest.fixture(scope="function")
def client(session_factory, authorizer):
    """Get a TestClient that uses the test database via dependency override."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_authorizer] = lambda: authorizer
    app.dependency_overrides[get_notification_sink] = lambda: AuditNotificationSink(session_factory)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()

@pytest.fixture(scope="function")
def as_user():
    """Helper fixture building the forwarded-identity header."""
    def _as_user(user_id):
        return {"X-User-ID": str(user_id)}
    return _as_user
