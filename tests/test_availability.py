import time
from datetime import datetime, timezone

import pytest

from interview_scheduling.core.exceptions import NotFound, SchedulingValidationError, UpstreamUnavailable
from interview_scheduling.core.intervals import TimeInterval
from interview_scheduling.services.availability import AvailabilityService
from interview_scheduling.services.calendar_port import CalendarProvider, CalendarRegistry
from interview_scheduling.services.google_calendar import GoogleCalendarAdapter


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture()
def service(db_session, registry):
    return AvailabilityService(db_session, registry, timeout_seconds=0.5)


async def test_user_availability_is_clipped_to_local_working_hours(service, make_user):
    await make_user("nina", tz="America/New_York")
    result = await service.user_availability("nina", utc(2025, 3, 3), utc(2025, 3, 4))
    assert result.timezone == "America/New_York"
    assert result.free == [TimeInterval(utc(2025, 3, 3, 14), utc(2025, 3, 3, 22))]


async def test_common_availability_intersects_and_drops_short_gaps(service, interviewers, fake_calendar):
    fake_calendar.add_busy("alice", utc(2025, 3, 3, 10), utc(2025, 3, 3, 11))
    fake_calendar.add_busy("bob", utc(2025, 3, 3, 11, 30), utc(2025, 3, 3, 13))

    common = await service.common_availability(["alice", "bob"], utc(2025, 3, 3), utc(2025, 3, 4), 60)
    # 11:00-11:30 is too short for a one hour interview.
    assert common == [
        TimeInterval(utc(2025, 3, 3, 9), utc(2025, 3, 3, 10)),
        TimeInterval(utc(2025, 3, 3, 13), utc(2025, 3, 3, 17)),
    ]


async def test_custom_working_hours_are_respected(service, make_user):
    await make_user(
        "omar",
        working_hours=[
            {"day_of_week": 1, "start_time": "08:00", "end_time": "12:00"},
            {"day_of_week": 1, "start_time": "13:00", "end_time": "15:00"},
        ],
    )
    result = await service.user_availability("omar", utc(2025, 3, 3), utc(2025, 3, 5))
    assert result.free == [
        TimeInterval(utc(2025, 3, 3, 8), utc(2025, 3, 3, 12)),
        TimeInterval(utc(2025, 3, 3, 13), utc(2025, 3, 3, 15)),
    ]


async def test_failing_provider_fails_the_whole_request(service, interviewers, fake_calendar):
    fake_calendar.failing.add("bob")
    with pytest.raises(UpstreamUnavailable):
        await service.common_availability(["alice", "bob"], utc(2025, 3, 3), utc(2025, 3, 4), 60)


async def test_slow_provider_times_out(db_session, registry, interviewers, fake_calendar):
    fake_calendar.slow.add("bob")
    service = AvailabilityService(db_session, registry, timeout_seconds=0.05)
    with pytest.raises(UpstreamUnavailable):
        await service.common_availability(["alice", "bob"], utc(2025, 3, 3), utc(2025, 3, 4), 60)


class _BlockingGoogleAdapter(GoogleCalendarAdapter):
    async def fetch_busy(self, credentials, start, end):
        return await self._run(time.sleep, 2)


async def test_blocking_provider_call_is_abandoned_at_the_timeout(db_session, make_user):
    await make_user("alice")
    await make_user("bob", provider="microsoft")
    blocking = _BlockingGoogleAdapter()
    registry = CalendarRegistry({CalendarProvider.GOOGLE: blocking, CalendarProvider.MICROSOFT: blocking})
    service = AvailabilityService(db_session, registry, timeout_seconds=0.5)

    started = time.perf_counter()
    with pytest.raises(UpstreamUnavailable):
        await service.common_availability(["alice", "bob"], utc(2025, 3, 3), utc(2025, 3, 4), 60)
    assert time.perf_counter() - started < 1.5


async def test_unknown_user_is_not_found(service, interviewers):
    with pytest.raises(NotFound):
        await service.common_availability(["alice", "ghost"], utc(2025, 3, 3), utc(2025, 3, 4), 60)


async def test_user_without_calendar(service, make_user, interviewers):
    await make_user("carol", connected=False)
    with pytest.raises(SchedulingValidationError):
        await service.common_availability(["alice", "carol"], utc(2025, 3, 3), utc(2025, 3, 4), 60)

    conflicts = await service.conflicts_for_users(["alice", "carol"], utc(2025, 3, 3, 9), utc(2025, 3, 3, 10))
    assert [(item.user_id, item.has_conflict) for item in conflicts] == [("alice", False), ("carol", False)]


async def test_invalid_range_and_duration(service, interviewers):
    with pytest.raises(SchedulingValidationError):
        await service.common_availability(["alice"], utc(2025, 3, 4), utc(2025, 3, 3), 60)
    with pytest.raises(SchedulingValidationError):
        await service.common_availability(["alice"], utc(2025, 3, 3), utc(2025, 3, 4), 0)
    with pytest.raises(SchedulingValidationError):
        await service.common_availability([], utc(2025, 3, 3), utc(2025, 3, 4), 60)


async def test_conflict_check_is_an_or_over_users(service, interviewers, fake_calendar):
    fake_calendar.add_busy("bob", utc(2025, 3, 3, 10), utc(2025, 3, 3, 11))

    assert await service.has_conflict_any_of(["alice", "bob"], utc(2025, 3, 3, 10, 30), utc(2025, 3, 3, 11, 30))
    # Touching the busy block is not a conflict.
    assert not await service.has_conflict_any_of(["alice", "bob"], utc(2025, 3, 3, 11), utc(2025, 3, 3, 12))

    conflicts = await service.conflicts_for_users(["alice", "bob"], utc(2025, 3, 3, 10), utc(2025, 3, 3, 11))
    assert [(item.user_id, item.has_conflict) for item in conflicts] == [("alice", False), ("bob", True)]


async def test_conflict_check_ignores_blocks_inside_ignored_window(service, interviewers, fake_calendar):
    current = TimeInterval(utc(2025, 3, 3, 10), utc(2025, 3, 3, 11))
    fake_calendar.add_busy("alice", current.start, current.end)

    assert await service.has_conflict_any_of(["alice"], utc(2025, 3, 3, 10, 30), utc(2025, 3, 3, 11, 30))
    assert not await service.has_conflict_any_of(
        ["alice"], utc(2025, 3, 3, 10, 30), utc(2025, 3, 3, 11, 30), ignore=current
    )


async def test_generate_slots_uses_half_hour_stride_and_target_timezone(service, interviewers, fake_calendar):
    fake_calendar.add_busy("alice", utc(2025, 3, 3, 9), utc(2025, 3, 3, 15))
    slots = await service.generate_slots(
        ["alice", "bob"], utc(2025, 3, 3), utc(2025, 3, 4), 60, "America/New_York"
    )
    assert [slot.start for slot in slots] == [
        utc(2025, 3, 3, 15),
        utc(2025, 3, 3, 15, 30),
        utc(2025, 3, 3, 16),
    ]
    assert slots[0].display_start == "Mar 03, 2025 10:00 AM EST"
    assert slots[0].timezone == "America/New_York"


async def test_generate_slots_rejects_unknown_timezone(service, interviewers):
    with pytest.raises(SchedulingValidationError):
        await service.generate_slots(["alice"], utc(2025, 3, 3), utc(2025, 3, 4), 60, "Nowhere/City")
