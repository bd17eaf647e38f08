import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from interview_scheduling.core.exceptions import (
    AlreadyUsed,
    BookingConflict,
    ConflictDetected,
    Expired,
    Forbidden,
    NotFound,
    OutOfRange,
    SchedulingValidationError,
    UpstreamUnavailable,
)
from interview_scheduling.models import Interview, InterviewCalendarEvent, SchedulingLink
from interview_scheduling.models.interview import STATUS_CANCELLED, STATUS_SCHEDULED
from interview_scheduling.services.scheduling_links import SchedulingLinkService


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


async def count_interviews(session) -> int:
    return (await session.execute(select(func.count()).select_from(Interview))).scalar_one()


async def test_create_link_issues_long_random_token(link_service, link_payload):
    first = await link_service.create_link("recruiter-1", link_payload())
    second = await link_service.create_link("recruiter-1", link_payload())
    assert len(first.token) == 64
    assert first.token != second.token
    assert first.used is False
    assert first.interviewer_ids == ["alice", "bob"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"start_date": datetime(2025, 3, 7, tzinfo=timezone.utc), "end_date": datetime(2025, 3, 3, tzinfo=timezone.utc)},
        {"start_date": datetime(2025, 3, 1, tzinfo=timezone.utc)},
    ],
)
async def test_create_link_rejects_bad_ranges(link_service, link_payload, overrides):
    with pytest.raises(SchedulingValidationError):
        await link_service.create_link("recruiter-1", link_payload(**overrides))


async def test_create_link_requires_known_application_and_interviewers(link_service, link_payload):
    with pytest.raises(NotFound):
        await link_service.create_link("recruiter-1", link_payload(application_id=999))
    with pytest.raises(NotFound):
        await link_service.create_link("recruiter-1", link_payload(interviewer_ids=["alice", "ghost"]))


async def test_slots_exclude_shared_busy_time_and_weekend(link_service, link_payload, fake_calendar):
    for account in ("alice", "bob"):
        fake_calendar.add_busy(account, utc(2025, 3, 4, 14), utc(2025, 3, 4, 15))
    link = await link_service.create_link("recruiter-1", link_payload())

    slots = await link_service.get_slots(link.token)

    busy = (utc(2025, 3, 4, 14), utc(2025, 3, 4, 15))
    assert slots
    assert all(not (slot.start < busy[1] and busy[0] < slot.end) for slot in slots)
    assert all(slot.start.date().isoformat() not in ("2025-03-01", "2025-03-02") for slot in slots)
    assert all(slot.end <= utc(2025, 3, 7) for slot in slots)
    assert slots[0].start == utc(2025, 3, 3, 9)
    assert slots[0].display_start == "Mar 03, 2025 9:00 AM UTC"
    # Mon 8 + Tue 7 + Wed 8 + Thu 8 one hour slots.
    assert len(slots) == 31


async def test_slots_step_by_duration_plus_buffer(link_service, link_payload):
    link = await link_service.create_link(
        "recruiter-1", link_payload(buffer_minutes=30, end_date=utc(2025, 3, 4))
    )
    slots = await link_service.get_slots(link.token, "UTC")
    assert [slot.start.hour * 60 + slot.start.minute for slot in slots] == [540, 630, 720, 810, 900]


async def test_slots_fail_when_a_calendar_is_down(link_service, link_payload, fake_calendar):
    link = await link_service.create_link("recruiter-1", link_payload())
    fake_calendar.failing.add("alice")
    with pytest.raises(UpstreamUnavailable):
        await link_service.get_slots(link.token)


async def test_slots_in_the_past_are_omitted(db_session, registry, link_payload):
    creator = SchedulingLinkService(db_session, registry, clock=lambda: utc(2025, 3, 2, 12))
    link = await creator.create_link("recruiter-1", link_payload())
    later = SchedulingLinkService(db_session, registry, clock=lambda: utc(2025, 3, 6, 12, 30))
    slots = await later.get_slots(link.token)
    assert [slot.start for slot in slots] == [utc(2025, 3, 6, 13), utc(2025, 3, 6, 14), utc(2025, 3, 6, 15), utc(2025, 3, 6, 16)]


async def test_book_creates_interview_and_flips_link(link_service, link_payload, db_session, fake_calendar):
    link = await link_service.create_link("recruiter-1", link_payload())
    booking = await link_service.book(link.token, utc(2025, 3, 4, 10))

    assert booking.interview.status == STATUS_SCHEDULED
    assert booking.interview.scheduled_at == datetime(2025, 3, 4, 10)
    assert booking.link.used is True
    assert booking.link.interview_id == booking.interview.interview_id
    assert booking.reschedule_token and booking.reschedule_token != link.token

    # One event per interviewer, with the generated meeting link kept on the interview.
    assert [account for account, _ in fake_calendar.created] == ["alice", "bob"]
    assert booking.interview.meeting_link == "https://meet.example/abc"
    rows = (await db_session.execute(select(InterviewCalendarEvent))).scalars().all()
    assert {row.user_id for row in rows} == {"alice", "bob"}


async def test_book_outside_range_is_out_of_range(link_service, link_payload, db_session):
    link = await link_service.create_link("recruiter-1", link_payload())
    with pytest.raises(OutOfRange):
        await link_service.book(link.token, utc(2025, 3, 10, 10))
    assert await count_interviews(db_session) == 0


async def test_book_in_the_past_is_out_of_range(db_session, registry, link_payload):
    creator = SchedulingLinkService(db_session, registry, clock=lambda: utc(2025, 3, 2, 12))
    link = await creator.create_link("recruiter-1", link_payload())
    later = SchedulingLinkService(db_session, registry, clock=lambda: utc(2025, 3, 5, 12))
    with pytest.raises(OutOfRange):
        await later.book(link.token, utc(2025, 3, 4, 10))


async def test_book_rechecks_calendars(link_service, link_payload, db_session, fake_calendar):
    link = await link_service.create_link("recruiter-1", link_payload())
    fake_calendar.add_busy("bob", utc(2025, 3, 4, 10, 30), utc(2025, 3, 4, 11))
    with pytest.raises(ConflictDetected):
        await link_service.book(link.token, utc(2025, 3, 4, 10))
    assert await count_interviews(db_session) == 0


async def test_unknown_and_expired_tokens(link_service, link_payload):
    with pytest.raises(NotFound):
        await link_service.get_active_link("missing")
    link = await link_service.create_link("recruiter-1", link_payload(expires_at=utc(2025, 3, 1)))
    with pytest.raises(Expired):
        await link_service.get_link_info(link.token)
    with pytest.raises(Expired):
        await link_service.book(link.token, utc(2025, 3, 4, 10))


async def test_second_sequential_booking_is_rejected(link_service, link_payload, db_session):
    link = await link_service.create_link("recruiter-1", link_payload())
    await link_service.book(link.token, utc(2025, 3, 4, 10))
    with pytest.raises(AlreadyUsed):
        await link_service.book(link.token, utc(2025, 3, 4, 13))
    with pytest.raises(AlreadyUsed):
        await link_service.get_link_info(link.token)
    assert await count_interviews(db_session) == 1


async def test_stale_reader_loses_at_the_conditional_update(session_factory, registry, clock, link_service, link_payload):
    link = await link_service.create_link("recruiter-1", link_payload())

    async with session_factory() as winner_session, session_factory() as loser_session:
        loser = SchedulingLinkService(loser_session, registry, clock=clock)
        # The loser has already seen the link as unused.
        stale = await loser.get_active_link(link.token)
        assert stale.used is False

        winner = SchedulingLinkService(winner_session, registry, clock=clock)
        await winner.book(link.token, utc(2025, 3, 4, 10))

        with pytest.raises(BookingConflict):
            await loser.book(link.token, utc(2025, 3, 4, 13))

    async with session_factory() as check:
        assert await count_interviews(check) == 1
        stored = await check.get(SchedulingLink, link.scheduling_link_id)
        assert stored.used is True


async def test_concurrent_bookings_admit_exactly_one(session_factory, registry, clock, link_service, link_payload):
    link = await link_service.create_link("recruiter-1", link_payload())

    async def attempt(start: datetime) -> str:
        async with session_factory() as session:
            service = SchedulingLinkService(session, registry, clock=clock)
            try:
                await service.book(link.token, start)
            except AlreadyUsed:
                return "rejected"
            return "booked"

    results = await asyncio.gather(attempt(utc(2025, 3, 4, 10)), attempt(utc(2025, 3, 4, 13)))
    assert sorted(results) == ["booked", "rejected"]

    async with session_factory() as check:
        assert await count_interviews(check) == 1
        stored = await check.get(SchedulingLink, link.scheduling_link_id)
        interview = await check.get(Interview, stored.interview_id)
        assert interview is not None


async def test_cancel_releases_link_for_a_new_booking(link_service, link_payload, db_session, fake_calendar):
    link = await link_service.create_link("recruiter-1", link_payload())
    booking = await link_service.book(link.token, utc(2025, 3, 4, 10))

    cancelled = await link_service.cancel(booking.reschedule_token)
    assert cancelled.status == STATUS_CANCELLED
    stored = await db_session.get(SchedulingLink, link.scheduling_link_id)
    assert stored.used is False
    assert stored.interview_id is None
    assert sorted(fake_calendar.deleted) == sorted(fake_calendar.created)
    remaining = (await db_session.execute(select(func.count()).select_from(InterviewCalendarEvent))).scalar_one()
    assert remaining == 0

    again = await link_service.book(link.token, utc(2025, 3, 5, 11))
    assert again.interview.interview_id != booking.interview.interview_id
    assert again.reschedule_token == booking.reschedule_token

    with pytest.raises(AlreadyUsed):
        await link_service.book(link.token, utc(2025, 3, 5, 14))


async def test_cancel_twice_is_rejected(link_service, link_payload):
    link = await link_service.create_link("recruiter-1", link_payload())
    booking = await link_service.book(link.token, utc(2025, 3, 4, 10))
    await link_service.cancel(booking.reschedule_token)
    with pytest.raises(NotFound):
        await link_service.cancel(booking.reschedule_token)


async def test_reschedule_moves_interview_and_updates_events(link_service, link_payload, fake_calendar):
    link = await link_service.create_link("recruiter-1", link_payload())
    booking = await link_service.book(link.token, utc(2025, 3, 4, 10))
    # Providers now report the interview itself as busy.
    for account in ("alice", "bob"):
        fake_calendar.add_busy(account, utc(2025, 3, 4, 10), utc(2025, 3, 4, 11))

    moved = await link_service.reschedule(booking.reschedule_token, utc(2025, 3, 4, 10, 30))
    assert moved.scheduled_at == datetime(2025, 3, 4, 10, 30)
    assert moved.interview_id == booking.interview.interview_id
    assert sorted(account for account, _ in fake_calendar.updated) == ["alice", "bob"]

    fake_calendar.add_busy("bob", utc(2025, 3, 5, 9), utc(2025, 3, 5, 12))
    with pytest.raises(ConflictDetected):
        await link_service.reschedule(booking.reschedule_token, utc(2025, 3, 5, 10))
    with pytest.raises(OutOfRange):
        await link_service.reschedule(booking.reschedule_token, utc(2025, 3, 8, 10))


async def test_reschedule_slots_include_the_current_booking_window(link_service, link_payload, fake_calendar):
    link = await link_service.create_link("recruiter-1", link_payload(end_date=utc(2025, 3, 5)))
    booking = await link_service.book(link.token, utc(2025, 3, 4, 10))
    for account in ("alice", "bob"):
        fake_calendar.add_busy(account, utc(2025, 3, 4, 10), utc(2025, 3, 4, 11))

    with pytest.raises(AlreadyUsed):
        await link_service.get_slots(link.token)
    slots = await link_service.get_reschedule_slots(booking.reschedule_token, "UTC")
    assert utc(2025, 3, 4, 10) in [slot.start for slot in slots]


async def test_reschedule_forbidden_when_disabled(link_service, link_payload):
    link = await link_service.create_link("recruiter-1", link_payload(allow_reschedule=False))
    booking = await link_service.book(link.token, utc(2025, 3, 4, 10))
    assert booking.reschedule_token

    # The token is issued either way; the flag only gates its use.
    assert await link_service.generate_reschedule_token(link.scheduling_link_id) == booking.reschedule_token

    for start in (utc(2025, 3, 4, 11), utc(2025, 3, 5, 9), utc(2025, 3, 10, 9)):
        with pytest.raises(Forbidden):
            await link_service.reschedule(booking.reschedule_token, start)
    with pytest.raises(Forbidden):
        await link_service.cancel(booking.reschedule_token)
    with pytest.raises(Forbidden):
        await link_service.get_reschedule_info(booking.reschedule_token)


async def test_reschedule_token_is_idempotent(link_service, link_payload):
    link = await link_service.create_link("recruiter-1", link_payload())
    with pytest.raises(SchedulingValidationError):
        await link_service.generate_reschedule_token(link.scheduling_link_id)
    booking = await link_service.book(link.token, utc(2025, 3, 4, 10))
    again = await link_service.generate_reschedule_token(link.scheduling_link_id)
    assert again == booking.reschedule_token
    with pytest.raises(Forbidden):
        await link_service.generate_reschedule_token(link.scheduling_link_id, requester_id="someone-else")


async def test_past_interview_cannot_be_changed(db_session, registry, link_payload):
    service = SchedulingLinkService(db_session, registry, clock=lambda: utc(2025, 3, 2, 12))
    link = await service.create_link("recruiter-1", link_payload())
    booking = await service.book(link.token, utc(2025, 3, 4, 10))

    later = SchedulingLinkService(db_session, registry, clock=lambda: utc(2025, 3, 4, 10) + timedelta(minutes=1))
    with pytest.raises(OutOfRange):
        await later.cancel(booking.reschedule_token)
    with pytest.raises(OutOfRange):
        await later.reschedule(booking.reschedule_token, utc(2025, 3, 5, 10))


async def test_expired_link_blocks_reschedule(db_session, registry, link_payload):
    service = SchedulingLinkService(db_session, registry, clock=lambda: utc(2025, 3, 2, 12))
    link = await service.create_link("recruiter-1", link_payload(expires_at=utc(2025, 3, 3)))
    booking = await service.book(link.token, utc(2025, 3, 4, 10))

    later = SchedulingLinkService(db_session, registry, clock=lambda: utc(2025, 3, 3, 12))
    with pytest.raises(Expired):
        await later.get_reschedule_link(booking.reschedule_token)


async def test_delete_link_rules(link_service, link_payload, db_session):
    link = await link_service.create_link("recruiter-1", link_payload())
    with pytest.raises(Forbidden):
        await link_service.delete_link(link.scheduling_link_id, "recruiter-2")
    with pytest.raises(NotFound):
        await link_service.delete_link(999, "recruiter-1")

    used = await link_service.create_link("recruiter-1", link_payload())
    await link_service.book(used.token, utc(2025, 3, 4, 10))
    with pytest.raises(AlreadyUsed):
        await link_service.delete_link(used.scheduling_link_id, "recruiter-1")

    await link_service.delete_link(link.scheduling_link_id, "recruiter-1")
    remaining = await link_service.list_links_for_application(link.application_id)
    assert [item.scheduling_link_id for item in remaining] == [used.scheduling_link_id]


async def test_calendar_write_failure_does_not_undo_booking(link_service, link_payload, db_session, fake_calendar):
    from interview_scheduling.models import OperationRetry

    fake_calendar.fail_writes = True
    link = await link_service.create_link("recruiter-1", link_payload())
    booking = await link_service.book(link.token, utc(2025, 3, 4, 10))

    assert booking.link.used is True
    queued = (await db_session.execute(select(OperationRetry))).scalars().all()
    assert sorted(op.user_id for op in queued) == ["alice", "bob"]
    assert all(op.interview_id == booking.interview.interview_id for op in queued)
