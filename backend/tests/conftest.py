"""
Test configuration and fixtures.
DATABASE_URL is pointed at SQLite before eduhub is imported so the module-level
engine never needs a Postgres driver. Importing eduhub.main is deferred to the
client fixture so service-level tests stay light.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from eduhub.db import Base, get_db
from eduhub.models import User, Role, School, Topic
from eduhub.auth import get_password_hash, create_access_token
from eduhub.services.ai_responder import SimulatedResponder
from eduhub.services.doubt_service import DoubtService
from eduhub.services.message_relay import MessageRelay

# Test database URL (in-memory SQLite)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

# Create test engine
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

SCHOOL_NAME = "Greenwood High"
PASSWORD_HASH = get_password_hash("password123")


class RecordingTransport:
    """Room transport double: remembers every emitted event."""

    def __init__(self):
        self.events = []

    def emit(self, room, message):
        self.events.append((room, message))

    def types(self, room=None):
        return [event["type"] for r, event in self.events if room is None or r == room]

    def for_room(self, room):
        return [event for r, event in self.events if r == room]

    def clear(self):
        self.events.clear()


class ManualTask:
    def __init__(self, delay_seconds, callback, name=""):
        self.delay_seconds = delay_seconds
        self.callback = callback
        self.name = name
        self.ran = False
        self._cancelled = False

    def cancel(self):
        if self.ran or self._cancelled:
            return False
        self._cancelled = True
        return True

    @property
    def cancelled(self):
        return self._cancelled


class ManualScheduler:
    """Scheduler double: tasks only run when the test calls run_pending()."""

    def __init__(self):
        self.tasks = []

    def schedule(self, delay_seconds, callback, name=""):
        task = ManualTask(delay_seconds, callback, name)
        self.tasks.append(task)
        return task

    def pending(self):
        return [t for t in self.tasks if not t.ran and not t.cancelled]

    def run_pending(self):
        ran = 0
        for task in self.pending():
            task.ran = True
            task.callback()
            ran += 1
        return ran

    def shutdown(self):
        return sum(1 for task in self.tasks if task.cancel())


def _make_user(db_session, email, name, role, **profile):
    user = User(
        email=email,
        name=name,
        password_hash=PASSWORD_HASH,
        role=role,
        is_active=True,
        **profile
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def auth_headers_for(user):
    token = create_access_token({"sub": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def school(db_session):
    school = School(school_name=SCHOOL_NAME)
    db_session.add(school)
    db_session.commit()
    db_session.refresh(school)
    return school


@pytest.fixture
def student(db_session, school):
    return _make_user(db_session, "student@test.com", "Student Test", Role.STUDENT, school=SCHOOL_NAME, grade=9)


@pytest.fixture
def other_student(db_session, school):
    return _make_user(db_session, "other.student@test.com", "Other Student", Role.STUDENT, school=SCHOOL_NAME, grade=9)


@pytest.fixture
def trainer(db_session):
    return _make_user(
        db_session, "trainer@test.com", "Trainer Test", Role.TRAINER,
        subject="Mathematics", assigned_schools=[SCHOOL_NAME], assigned_grades=[8, 9, 10],
    )


@pytest.fixture
def other_trainer(db_session):
    return _make_user(
        db_session, "other.trainer@test.com", "Other Trainer", Role.TRAINER,
        subject="Physics", assigned_schools=["Riverside Academy"], assigned_grades=[9],
    )


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "admin@test.com", "Admin Test", Role.ADMIN)


@pytest.fixture
def topic(db_session):
    topic = Topic(grade=9, name="Algebra", topic_name="Linear equations")
    db_session.add(topic)
    db_session.commit()
    db_session.refresh(topic)
    return topic


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def relay(transport):
    return MessageRelay(transport)


@pytest.fixture
def responder(relay, scheduler):
    return SimulatedResponder(
        relay,
        scheduler,
        session_factory=TestingSessionLocal,
        initial_delay=0,
        followup_delay=0,
    )


@pytest.fixture
def service(db_session, relay, responder):
    return DoubtService(db_session, relay=relay, responder=responder)


@pytest.fixture(scope="function")
def client(db_session, relay, responder):
    """Create a test client with database session and realtime overrides."""
    from fastapi.testclient import TestClient
    from eduhub.main import app
    from eduhub.rate_limit import limiter

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    saved_state = {
        key: getattr(app.state, key) for key in ("relay", "responder", "session_factory")
    }
    app.dependency_overrides[get_db] = override_get_db
    app.state.relay = relay
    app.state.responder = responder
    app.state.session_factory = TestingSessionLocal
    limiter.enabled = False
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        limiter.enabled = True
        for key, value in saved_state.items():
            setattr(app.state, key, value)
        app.dependency_overrides.clear()


@pytest.fixture
def student_headers(student):
    return auth_headers_for(student)


@pytest.fixture
def other_student_headers(other_student):
    return auth_headers_for(other_student)


@pytest.fixture
def trainer_headers(trainer):
    return auth_headers_for(trainer)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers_for(admin_user)
