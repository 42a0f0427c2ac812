from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from hospital_queue.database import get_db, init_db, make_engine
from hospital_queue.locks import LaneLocks
from hospital_queue.main import app
from hospital_queue.modules.checkins.services import CheckInService
from hospital_queue.modules.queue.services import PriorityPolicy, QueueOrchestrator
from hospital_queue.modules.triage.services import TriageService


class FakeClock:
    def __init__(self, start=datetime(2026, 3, 2, 8, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, minutes=0, seconds=0):
        self.now += timedelta(minutes=minutes, seconds=seconds)
        return self.now


# --- 1. DATABASE FIXTURES (fresh SQLite file per test) ---

@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'queue_test.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# --- 2. SERVICE FIXTURES ---

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def locks():
    return LaneLocks(timeout=5)


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def orchestrator(db, clock, locks, notifications):
    return QueueOrchestrator(
        db, locks=locks, clock=clock, policy=PriorityPolicy(), notify=notifications.append
    )


@pytest.fixture
def checkins(db, orchestrator):
    return CheckInService(db, queue=orchestrator)


@pytest.fixture
def triage(db, clock):
    return TriageService(db, clock=clock)


@pytest.fixture
def queue_patient(checkins):
    """Check a patient in and put them straight into a department lane."""
    def _queue(patient_id, department="OPD", priority=None):
        checkin, entry = checkins.create(patient_id, department=department, priority=priority)
        return entry
    return _queue


# --- 3. API CLIENT ---

@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
