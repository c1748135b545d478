from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from gameon.database import get_session
from gameon.main import app
from gameon.models.room_audit_log import RoomAuditLog  # noqa: F401
from gameon.models.room_slot import RoomSlot  # noqa: F401
from gameon.models.tournament import Tournament
from gameon.models.tournament_participant import TournamentParticipant
from gameon.services.room_broadcast import InProcessBroadcastChannel
from gameon.services.room_slot_service import RoomSlotService, get_room_slot_service

TEST_DATABASE_URL = "sqlite:///:memory:"

# Fixed "now" for the simulated clock
NOW = datetime(2026, 3, 1, 12, 0, 0)

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. sqlite:///:memory: with StaticPool so ALL sessions (request, scheduler)
#    share the same database
# 2. check_same_thread=False required for TestClient/threaded access
# 3. Tables are dropped and recreated per test
# 4. App dependencies overridden to use test_engine and the test service
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


class FakeClock:
    """Simulated clock; call it for the current time, ``advance`` to move it."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeTimer:
    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    @property
    def active(self) -> bool:
        return self.started and not self.cancelled

    def fire(self):
        self.callback(*self.args)


class FakeTimerFactory:
    """Records every timer the scheduler arms; tests fire them by hand."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback, args):
        timer = FakeTimer(delay, callback, args)
        self.timers.append(timer)
        return timer

    def active(self):
        return [t for t in self.timers if t.active]


class RecordingBroadcastChannel(InProcessBroadcastChannel):
    """In-process channel that also keeps every published event."""

    def __init__(self):
        super().__init__()
        self.events = []

    def publish(self, tournament_id, event):
        self.events.append(event)
        return super().publish(tournament_id, event)

    def names(self):
        return [e["event"] for e in self.events]


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Fresh tables for every test"""
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="timers")
def timers_fixture():
    return FakeTimerFactory()


@pytest.fixture(name="broadcaster")
def broadcaster_fixture():
    return RecordingBroadcastChannel()


@pytest.fixture(name="room_service")
def room_service_fixture(session: Session, clock, timers, broadcaster):
    service = RoomSlotService(
        session_factory=lambda: Session(test_engine),
        broadcaster=broadcaster,
        clock=clock,
        timer_factory=timers,
        scheduler_enabled=True,
    )
    yield service
    service.shutdown()


@pytest.fixture(name="client")
def client_fixture(session: Session, room_service: RoomSlotService):
    """Provide a test client wired to the test engine and the test room service

    The client is not entered as a context manager, so the app's startup hook
    (production engine, real timers) never runs.
    """
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_room_slot_service] = lambda: room_service

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture(name="make_tournament")
def make_tournament_fixture(session: Session):
    """Factory: squad tournament of 8 players (2 teams x 4) starting 2 hours from NOW."""

    def _make(**overrides) -> Tournament:
        data = {
            "title": "BGMI Sunday Scrims",
            "tournament_type": "squad",
            "status": "upcoming",
            "start_date": NOW + timedelta(hours=2),
            "max_participants": 8,
        }
        data.update(overrides)
        tournament = Tournament(**data)
        session.add(tournament)
        session.commit()
        session.refresh(tournament)
        return tournament

    return _make


@pytest.fixture(name="add_participants")
def add_participants_fixture(session: Session):
    """Factory: register members directly (no seating), in join order."""

    def _add(tournament: Tournament, *user_ids: str) -> None:
        for user_id in user_ids:
            session.add(
                TournamentParticipant(
                    tournament_id=tournament.id,
                    user_id=user_id,
                    display_name=f"{user_id.upper()}_IGN",
                )
            )
        tournament.current_participants += len(user_ids)
        session.add(tournament)
        session.commit()

    return _add
