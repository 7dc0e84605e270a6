import os
import shutil
import tempfile
from types import SimpleNamespace
from unittest.mock import Mock

# Point the app at a throwaway SQLite file before any event_admission import reads settings.
# A file (not :memory:) gives every thread its own connection, like a real server.
_DB_DIR = tempfile.mkdtemp(prefix="event_admission_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from event_admission.database.db import Base, SessionLocal, engine  # noqa: E402
from event_admission.main import app  # noqa: E402
from event_admission.models import Event, EventStatus  # noqa: E402

TestingSessionLocal = SessionLocal


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Set up and tear down the database for the test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    shutil.rmtree(_DB_DIR, ignore_errors=True)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session():
    db: Session = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_redis():
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture(autouse=True)
def redis_client(fake_redis, monkeypatch: pytest.MonkeyPatch):
    """Route every Redis use (locks, caches, fan-out) to one fake server."""
    for target in (
        "event_admission.services.registration_store.get_redis_client",
        "event_admission.services.facade.get_redis_client",
        "event_admission.tasks.get_redis_client",
    ):
        monkeypatch.setattr(target, lambda: fake_redis)
    return fake_redis


@pytest.fixture(autouse=True)
def notifications(monkeypatch: pytest.MonkeyPatch):
    """Capture Celery enqueues instead of talking to a broker."""
    realtime = Mock()
    realtime.name = "event_admission.tasks.deliver_realtime"
    email = Mock()
    email.name = "event_admission.tasks.send_email"
    monkeypatch.setattr("event_admission.services.notifications.deliver_realtime", realtime)
    monkeypatch.setattr("event_admission.services.notifications.send_email", email)
    return SimpleNamespace(realtime=realtime.delay, email=email.delay)


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_event(db_session: Session):
    def _make_event(
        capacity: int | None = 10,
        status: str = EventStatus.SCHEDULED.value,
        owner_id: int = 1000,
        title: str = "Test Event",
    ) -> Event:
        event = Event(title=title, capacity=capacity, status=status, owner_id=owner_id)
        db_session.add(event)
        db_session.commit()
        return event

    return _make_event


def realtime_types(notifications) -> list[str]:
    """Message types sent to the real-time channel, in dispatch order."""
    return [call.args[1] for call in notifications.realtime.call_args_list]


def email_templates(notifications) -> list[tuple[str, int]]:
    return [(call.args[0], call.args[1]) for call in notifications.email.call_args_list]
