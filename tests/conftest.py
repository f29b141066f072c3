"""
Shared pytest fixtures.

Provides an in-memory store, a controllable clock and fake spreadsheet and
calendar collaborators that record every call.
"""

from datetime import datetime, timedelta
from itertools import count
from typing import Optional
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ptsync.config import SyncSettings
from ptsync.database import init_db
from ptsync.schemas import CALENDAR_METADATA_KEYS, RemoteCalendarEvent
from ptsync.services.google_auth import StaticTokenProvider
from ptsync.services.sync_orchestrator import SyncOrchestrator

SPREADSHEET_ID = "sheet-1"
CALENDAR_ID = "cal-1"
TIMEZONE = "America/New_York"


class FakeClock:
    """Naive UTC clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeSheets:
    """In-memory spreadsheet collaborator"""

    def __init__(self):
        self.patients = []
        self.day_notes = []
        self.calls = []
        self.fail_with: Optional[Exception] = None
        self.failures: dict[str, Exception] = {}

    def _record(self, *call):
        self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with
        if call[0] in self.failures:
            raise self.failures[call[0]]

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def fetch_patients(self, spreadsheet_id):
        self._record("fetch_patients", spreadsheet_id)
        return list(self.patients)

    async def upsert_patient(self, spreadsheet_id, patient):
        self._record("upsert_patient", patient.id)

    async def delete_patients_by_ids(self, spreadsheet_id, ids):
        ids = list(ids)
        self._record("delete_patients_by_ids", ids)
        return len(ids)

    async def fetch_day_notes(self, spreadsheet_id):
        self._record("fetch_day_notes", spreadsheet_id)
        return list(self.day_notes)

    async def upsert_day_note(self, spreadsheet_id, note):
        self._record("upsert_day_note", note.id)

    async def delete_day_notes_by_ids(self, spreadsheet_id, ids):
        ids = list(ids)
        self._record("delete_day_notes_by_ids", ids)
        return len(ids)


def event_from_body(event_id: str, body: dict) -> RemoteCalendarEvent:
    tz = ZoneInfo(body["start"]["timeZone"])
    return RemoteCalendarEvent(
        google_event_id=event_id,
        summary=body.get("summary", ""),
        location=body.get("location"),
        description=body.get("description"),
        start=datetime.fromisoformat(body["start"]["dateTime"]).replace(tzinfo=tz),
        end=datetime.fromisoformat(body["end"]["dateTime"]).replace(tzinfo=tz),
        private_metadata=body["extendedProperties"]["private"],
    )


class FakeCalendar:
    """In-memory calendar collaborator; created events show up in later listings"""

    def __init__(self):
        self.events: dict[str, RemoteCalendarEvent] = {}
        self.bodies: dict[str, dict] = {}
        self.calls = []
        self.fail_with: Optional[Exception] = None
        self.requested_ids: list[Optional[str]] = []
        self._ids = count(1)

    def _record(self, *call):
        self.calls.append(call)
        if self.fail_with is not None:
            raise self.fail_with

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def list_events(self, calendar_id, time_min, time_max):
        self._record("list_events", calendar_id)
        return list(self.events.values())

    async def create_event(self, calendar_id, body, event_id=None):
        self.requested_ids.append(event_id)
        self._record("create_event", body["extendedProperties"]["private"][CALENDAR_METADATA_KEYS["appointment_id"]])
        created_id = f"evt-{next(self._ids)}"
        self.bodies[created_id] = body
        self.events[created_id] = event_from_body(created_id, body)
        return created_id

    async def update_event(self, calendar_id, event_id, body):
        self._record("update_event", event_id)
        self.bodies[event_id] = body
        self.events[event_id] = event_from_body(event_id, body)

    async def delete_event(self, calendar_id, event_id):
        self._record("delete_event", event_id)
        self.events.pop(event_id, None)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    init_db(engine)
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


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 10, 15, 0, 0))


@pytest.fixture
def settings():
    return SyncSettings(
        spreadsheet_id=SPREADSHEET_ID,
        calendar_id=CALENDAR_ID,
        timezone=TIMEZONE,
        max_batch_size=5,
        batch_delay_seconds=60,
        interval_seconds=3600,
    )


@pytest.fixture
def fake_sheets():
    return FakeSheets()


@pytest.fixture
def fake_calendar():
    return FakeCalendar()


@pytest.fixture
def auth():
    return StaticTokenProvider("test-token")


@pytest_asyncio.fixture
async def orchestrator(session_factory, auth, fake_sheets, fake_calendar, settings, clock):
    orchestrator = SyncOrchestrator(
        session_factory, auth, fake_sheets, fake_calendar, settings, clock=clock
    )
    yield orchestrator
    await orchestrator.stop()
