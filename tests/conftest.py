"""Pytest configuration and shared fixtures."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from civic_requests.database import Base
from civic_requests.models.domain import ServiceRequest
from civic_requests.models.audit import AuditEvent
from civic_requests.models.enums import Action, RequestStatus, Role
from civic_requests.services.request_store import RequestStore
from civic_requests.services.workflow import Actor, WorkflowEngine


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # In-memory SQLite for fast tests
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def session_factory(tmp_path):
    """
    Sessions backed by one SQLite file, so two sessions can race on the same row
    the way two HTTP handlers would.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)

    sessions = []

    def make_session():
        session = sessionmaker(bind=engine)()
        sessions.append(session)
        return session

    yield make_session

    for session in sessions:
        session.close()
    engine.dispose()


@pytest.fixture
def sample_request(db_session):
    """A freshly submitted pothole report at version 0."""
    return RequestStore(db_session).create(
        title="Pothole on Main Street",
        creator_id="citizen_1",
        description="Deep pothole in the right lane near no. 42",
        category="pothole",
        location_text="Main Street 42"
    )


@pytest.fixture
def engine(db_session):
    return WorkflowEngine(db_session)


@pytest.fixture
def citizen():
    return Actor("citizen_1", Role.CITIZEN)


@pytest.fixture
def clerk():
    return Actor("clerk_1", Role.CLERK, department_id="roads")


@pytest.fixture
def field_agent():
    return Actor("agent_1", Role.FIELD_AGENT, department_id="roads")


@pytest.fixture
def supervisor():
    return Actor("supervisor_1", Role.SUPERVISOR, department_id="roads")


@pytest.fixture
def admin():
    return Actor("admin_1", Role.ADMIN)


# Shortest legal path from SUBMITTED to each status
PATHS = {
    RequestStatus.SUBMITTED: [],
    RequestStatus.TRIAGED: [Action.TRIAGE],
    RequestStatus.IN_PROGRESS: [Action.TRIAGE, Action.START],
    RequestStatus.WAITING_ON_CITIZEN: [Action.REQUEST_MORE_INFO],
    RequestStatus.RESOLVED: [Action.TRIAGE, Action.START, Action.RESOLVE],
    RequestStatus.CLOSED: [Action.TRIAGE, Action.START, Action.RESOLVE, Action.CLOSE],
    RequestStatus.REJECTED: [Action.REJECT],
}


@pytest.fixture
def advance(engine, supervisor):
    """Drive a request to ``status`` along its shortest path; returns the refreshed request."""
    def _advance(request, status):
        for action in PATHS[status]:
            request = engine.apply(
                request.id, action, supervisor, request.version, reason="Moving along"
            )
        return request
    return _advance
