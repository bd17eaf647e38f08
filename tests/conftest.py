import os

os.environ.setdefault("SCHED_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHED_AUTH_MODE", "dev")
os.environ.setdefault("SCHED_ENABLE_JOBS", "false")
os.environ.setdefault("SCHED_ENABLE_CALENDAR", "false")

import json
from datetime import datetime, timezone

import anyio
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from interview_scheduling.core.intervals import TimeInterval
from interview_scheduling.models import Application, Base, CalendarUser
from interview_scheduling.schemas.scheduling_link import SchedulingLinkCreate
from interview_scheduling.services.calendar_port import (
    CalendarPort,
    CalendarProvider,
    CalendarProviderError,
    CalendarRegistry,
    EventRef,
)
from interview_scheduling.services.scheduling_links import SchedulingLinkService

# Sunday before the booking window used throughout the tests.
NOW = datetime(2025, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeCalendar(CalendarPort):
    """In-memory provider keyed by the `account` value in each user's credentials."""

    provider = CalendarProvider.GOOGLE

    def __init__(self) -> None:
        self.busy: dict[str, list[TimeInterval]] = {}
        self.failing: set[str] = set()
        self.slow: set[str] = set()
        self.fail_writes = False
        self.events: dict[str, dict] = {}
        self.created: list[tuple[str, str]] = []
        self.updated: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.busy_calls = 0
        self._seq = 0

    def add_busy(self, account: str, start: datetime, end: datetime) -> None:
        self.busy.setdefault(account, []).append(TimeInterval(start, end))

    async def fetch_busy(self, credentials, start, end):
        account = credentials["account"]
        self.busy_calls += 1
        if account in self.slow:
            await anyio.sleep(10)
        if account in self.failing:
            raise CalendarProviderError("fake", f"{account} unavailable")
        window = TimeInterval(start, end)
        return [block for block in self.busy.get(account, []) if block.overlaps(window)]

    async def create_event(self, credentials, details):
        if self.fail_writes:
            raise CalendarProviderError("fake", "write failed")
        self._seq += 1
        event_id = f"evt-{self._seq}"
        self.events[event_id] = {"account": credentials["account"], "start": details.start, "end": details.end}
        self.created.append((credentials["account"], event_id))
        link = "https://meet.example/abc" if details.include_video_conference else None
        return EventRef(event_id=event_id, meeting_link=link)

    async def update_event(self, credentials, event_id, details):
        if self.fail_writes:
            raise CalendarProviderError("fake", "write failed")
        self.events[event_id] = {"account": credentials["account"], "start": details.start, "end": details.end}
        self.updated.append((credentials["account"], event_id))
        return EventRef(event_id=event_id, status="updated")

    async def delete_event(self, credentials, event_id):
        if self.fail_writes:
            raise CalendarProviderError("fake", "write failed")
        self.events.pop(event_id, None)
        self.deleted.append((credentials["account"], event_id))


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture()
async def async_engine(tmp_path):
    # A file database so that separate sessions use separate connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(async_engine):
    return async_sessionmaker(bind=async_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture()
def fake_calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture()
def registry(fake_calendar) -> CalendarRegistry:
    return CalendarRegistry({CalendarProvider.GOOGLE: fake_calendar, CalendarProvider.MICROSOFT: fake_calendar})


@pytest.fixture()
def clock():
    return lambda: NOW


@pytest.fixture()
def make_user(db_session):
    async def _make_user(
        user_id: str,
        *,
        tz: str = "UTC",
        working_hours: list[dict] | None = None,
        connected: bool = True,
        provider: str = "google",
    ) -> CalendarUser:
        user = CalendarUser(
            user_id=user_id,
            email=f"{user_id}@example.com",
            full_name=user_id.title(),
            timezone=tz,
            working_hours_json=json.dumps(working_hours) if working_hours is not None else None,
            calendar_provider=provider if connected else None,
            calendar_credentials_json=json.dumps({"account": user_id}) if connected else None,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture()
async def application(db_session) -> Application:
    row = Application(
        candidate_first_name="Ada",
        candidate_last_name="Lovelace",
        candidate_email="ada@example.com",
        job_title="Backend Engineer",
    )
    db_session.add(row)
    await db_session.commit()
    return row


@pytest.fixture()
async def interviewers(make_user):
    return [await make_user("alice"), await make_user("bob")]


@pytest.fixture()
def link_payload(application, interviewers):
    def _build(**overrides) -> SchedulingLinkCreate:
        data = {
            "application_id": application.application_id,
            "interviewer_ids": [user.user_id for user in interviewers],
            "duration_minutes": 60,
            "location_type": "video",
            "start_date": utc(2025, 3, 3),
            "end_date": utc(2025, 3, 7),
        }
        data.update(overrides)
        return SchedulingLinkCreate(**data)

    return _build


@pytest.fixture()
def link_service(db_session, registry, clock) -> SchedulingLinkService:
    return SchedulingLinkService(db_session, registry, clock=clock)
