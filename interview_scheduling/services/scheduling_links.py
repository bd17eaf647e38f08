"""
Scheduling link lifecycle: create, browse slots, book, reschedule, cancel.

Booking is guarded only by a conditional UPDATE on the link row
(`WHERE used = false`). The interview insert and the flip share one
transaction, so when two requests race for one token exactly one commits
and the other rolls back with BookingConflict.
"""
from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from interview_scheduling.core.datetime_utils import ensure_utc, from_utc_naive, to_utc_naive, utc_now
from interview_scheduling.core.exceptions import (
    AlreadyUsed,
    BookingConflict,
    ConflictDetected,
    Expired,
    Forbidden,
    NotFound,
    OutOfRange,
    SchedulingValidationError,
)
from interview_scheduling.core.intervals import TimeInterval, discretize
from interview_scheduling.core.link_state import (
    BOOK,
    CANCEL,
    EXPIRED,
    ISSUE_RESCHEDULE_TOKEN,
    LIST_SLOTS,
    RESCHEDULE,
    VIEW,
    can_perform,
    derive_state,
    is_consistent,
    is_expired,
)
from interview_scheduling.core.timezones import get_zone
from interview_scheduling.models.application import Application
from interview_scheduling.models.interview import STATUS_CANCELLED, STATUS_SCHEDULED, Interview
from interview_scheduling.models.scheduling_link import SchedulingLink
from interview_scheduling.schemas.scheduling_link import SchedulingLinkCreate
from interview_scheduling.services.availability import AvailabilityService, Slot, present_slots, slot_window
from interview_scheduling.services.calendar_port import CalendarRegistry
from interview_scheduling.services.calendar_sync import CalendarSync
from interview_scheduling.services.calendar_users import load_users
from interview_scheduling.services.operation_queue import OP_CALENDAR_CREATE_EVENT, OP_CALENDAR_UPDATE_EVENT

logger = logging.getLogger("sched.scheduling_links")

TOKEN_BYTES = 32


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


@dataclass
class Booking:
    interview: Interview
    link: SchedulingLink
    reschedule_token: str


class SchedulingLinkService:
    def __init__(
        self,
        session: AsyncSession,
        registry: CalendarRegistry,
        *,
        clock: Callable[[], datetime] = utc_now,
        availability: AvailabilityService | None = None,
        calendar_sync: CalendarSync | None = None,
    ) -> None:
        self.session = session
        self.clock = clock
        self.availability = availability or AvailabilityService(session, registry)
        self.calendar_sync = calendar_sync or CalendarSync(session, registry)

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    # Management

    async def create_link(self, requester_id: str, payload: SchedulingLinkCreate) -> SchedulingLink:
        now = self._now()
        start = ensure_utc(payload.start_date)
        end = ensure_utc(payload.end_date)

        if not payload.interviewer_ids:
            raise SchedulingValidationError("At least one interviewer is required")
        if payload.duration_minutes <= 0:
            raise SchedulingValidationError("Duration must be positive")
        if payload.buffer_minutes < 0:
            raise SchedulingValidationError("Buffer cannot be negative")
        if start >= end:
            raise SchedulingValidationError("Start date must be before end date")
        if start < now:
            raise SchedulingValidationError("Start date cannot be in the past")

        application = await self.session.get(Application, payload.application_id)
        if not application:
            raise NotFound("Application not found")
        await load_users(self.session, payload.interviewer_ids)

        created_at = to_utc_naive(now)
        link = SchedulingLink(
            token=generate_token(),
            application_id=payload.application_id,
            interview_stage_id=payload.interview_stage_id,
            interviewer_ids_json=json.dumps(list(payload.interviewer_ids)),
            duration_minutes=payload.duration_minutes,
            buffer_minutes=payload.buffer_minutes,
            location_type=payload.location_type,
            meeting_link=payload.meeting_link,
            start_date=to_utc_naive(start),
            end_date=to_utc_naive(end),
            expires_at=to_utc_naive(payload.expires_at) if payload.expires_at else None,
            used=False,
            allow_reschedule=payload.allow_reschedule,
            created_by=requester_id,
            created_at=created_at,
            updated_at=created_at,
        )
        self.session.add(link)
        await self.session.commit()
        logger.info(
            "scheduling_link_created",
            extra={"scheduling_link_id": link.scheduling_link_id, "application_id": link.application_id},
        )
        return link

    async def list_links_for_application(self, application_id: int) -> list[SchedulingLink]:
        rows = (
            await self.session.execute(
                select(SchedulingLink)
                .where(SchedulingLink.application_id == application_id)
                .order_by(SchedulingLink.created_at.desc(), SchedulingLink.scheduling_link_id.desc())
            )
        ).scalars().all()
        return list(rows)

    async def delete_link(self, link_id: int, requester_id: str) -> None:
        link = await self.session.get(SchedulingLink, link_id)
        if not link:
            raise NotFound("Scheduling link not found")
        if link.created_by != requester_id:
            raise Forbidden("You can only delete links you created")
        if link.used:
            raise AlreadyUsed("Cannot delete a used scheduling link")

        result = await self.session.execute(
            delete(SchedulingLink)
            .where(SchedulingLink.scheduling_link_id == link_id, SchedulingLink.used.is_(False))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise AlreadyUsed("Cannot delete a used scheduling link")
        await self.session.commit()
        logger.info("scheduling_link_deleted", extra={"scheduling_link_id": link_id})

    # Public booking

    async def _link_by_token(self, token: str) -> SchedulingLink:
        link = (
            await self.session.execute(select(SchedulingLink).where(SchedulingLink.token == token))
        ).scalars().first()
        if not link:
            raise NotFound("Scheduling link not found")
        return link

    async def get_active_link(self, token: str, action: str = BOOK) -> SchedulingLink:
        link = await self._link_by_token(token)
        state = derive_state(used=link.used, expires_at=from_utc_naive(link.expires_at), now=self._now())
        if state == EXPIRED:
            raise Expired("Scheduling link has expired")
        if not can_perform(state, action):
            raise AlreadyUsed("Scheduling link has already been used")
        return link

    async def get_link_info(self, token: str) -> tuple[SchedulingLink, Application]:
        link = await self.get_active_link(token, VIEW)
        application = await self.session.get(Application, link.application_id)
        if not application:
            raise NotFound("Application not found")
        return link, application

    async def _slots_for_link(
        self, link: SchedulingLink, tz: str, ignore: TimeInterval | None = None
    ) -> list[Slot]:
        now = self._now()
        common = await self.availability.common_availability(
            link.interviewer_ids,
            from_utc_naive(link.start_date),
            from_utc_naive(link.end_date),
            link.duration_minutes,
            ignore=ignore,
        )
        stride = link.duration_minutes + link.buffer_minutes
        upcoming = [slot for slot in discretize(common, link.duration_minutes, stride) if slot.start >= now]
        return present_slots(upcoming, tz)

    async def get_slots(self, token: str, target_timezone: str | None = None) -> list[Slot]:
        tz = get_zone(target_timezone or "UTC").key
        link = await self.get_active_link(token, LIST_SLOTS)
        return await self._slots_for_link(link, tz)

    def _check_window(self, link: SchedulingLink, when: datetime, *, past_message: str) -> None:
        start = from_utc_naive(link.start_date)
        end = from_utc_naive(link.end_date)
        if when < start or when > end:
            raise OutOfRange(
                "Selected time is outside the allowed date range",
                details={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )
        if when < self._now():
            raise OutOfRange(past_message)

    async def book(self, token: str, chosen_start: datetime) -> Booking:
        chosen_start = ensure_utc(chosen_start)
        link = await self.get_active_link(token)
        self._check_window(link, chosen_start, past_message="Cannot schedule interview in the past")

        window = slot_window(chosen_start, link.duration_minutes)
        if await self.availability.has_conflict_any_of(link.interviewer_ids, window.start, window.end):
            raise ConflictDetected("Selected time slot is no longer available")

        link_id = link.scheduling_link_id
        now = to_utc_naive(self._now())
        interview = Interview(
            application_id=link.application_id,
            interview_stage_id=link.interview_stage_id,
            scheduled_at=to_utc_naive(chosen_start),
            duration_minutes=link.duration_minutes,
            status=STATUS_SCHEDULED,
            location_type=link.location_type,
            meeting_link=link.meeting_link,
            created_at=now,
            updated_at=now,
        )
        self.session.add(interview)
        await self.session.flush()

        result = await self.session.execute(
            update(SchedulingLink)
            .where(SchedulingLink.scheduling_link_id == link_id, SchedulingLink.used.is_(False))
            .values(used=True, interview_id=interview.interview_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            logger.warning("booking_conflict", extra={"scheduling_link_id": link_id})
            raise BookingConflict("Scheduling link has already been used")
        await self.session.commit()
        await self.session.refresh(link)
        logger.info(
            "interview_booked",
            extra={"scheduling_link_id": link_id, "interview_id": interview.interview_id},
        )

        reschedule_token = await self.generate_reschedule_token(link_id)

        application = await self.session.get(Application, link.application_id)
        await self.calendar_sync.push_interview(interview, link, application, operation_type=OP_CALENDAR_CREATE_EVENT)
        return Booking(interview=interview, link=link, reschedule_token=reschedule_token)

    # Reschedule / cancel

    async def generate_reschedule_token(self, link_id: int, requester_id: str | None = None) -> str:
        link = await self.session.get(SchedulingLink, link_id)
        if not link:
            raise NotFound("Scheduling link not found")
        if requester_id is not None and link.created_by != requester_id:
            raise Forbidden("You can only manage links you created")
        state = derive_state(used=link.used, expires_at=from_utc_naive(link.expires_at), now=self._now())
        if state == EXPIRED:
            raise Expired("Scheduling link has expired")
        if not can_perform(state, ISSUE_RESCHEDULE_TOKEN) or not is_consistent(link.used, link.interview_id):
            raise SchedulingValidationError("No interview has been booked with this link")
        if link.reschedule_token:
            return link.reschedule_token

        await self.session.execute(
            update(SchedulingLink)
            .where(SchedulingLink.scheduling_link_id == link_id, SchedulingLink.reschedule_token.is_(None))
            .values(reschedule_token=generate_token(), updated_at=to_utc_naive(self._now()))
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        # Another request may have issued the token first; either way read back the stored one.
        await self.session.refresh(link)
        return link.reschedule_token

    async def get_reschedule_link(
        self, reschedule_token: str, action: str = RESCHEDULE
    ) -> tuple[SchedulingLink, Interview]:
        link = (
            await self.session.execute(
                select(SchedulingLink).where(SchedulingLink.reschedule_token == reschedule_token)
            )
        ).scalars().first()
        if not link:
            raise NotFound("Reschedule link not found")

        now = self._now()
        if is_expired(from_utc_naive(link.expires_at), now):
            raise Expired("Reschedule link has expired")
        if not link.allow_reschedule:
            raise Forbidden("Rescheduling is not allowed for this interview")
        state = derive_state(used=link.used, expires_at=from_utc_naive(link.expires_at), now=now)
        if (
            not can_perform(state, action)
            or link.interview_id is None
            or not is_consistent(link.used, link.interview_id)
        ):
            raise NotFound("No interview is booked with this link")

        interview = await self.session.get(Interview, link.interview_id)
        if not interview:
            raise NotFound("Interview not found")
        if from_utc_naive(interview.scheduled_at) < now:
            raise OutOfRange("Interview has already taken place")
        return link, interview

    async def get_reschedule_info(self, reschedule_token: str) -> tuple[SchedulingLink, Interview, Application]:
        link, interview = await self.get_reschedule_link(reschedule_token)
        application = await self.session.get(Application, link.application_id)
        if not application:
            raise NotFound("Application not found")
        return link, interview, application

    async def get_reschedule_slots(self, reschedule_token: str, target_timezone: str | None = None) -> list[Slot]:
        tz = get_zone(target_timezone or "UTC").key
        link, interview = await self.get_reschedule_link(reschedule_token)
        current = slot_window(from_utc_naive(interview.scheduled_at), interview.duration_minutes)
        return await self._slots_for_link(link, tz, ignore=current)

    async def reschedule(self, reschedule_token: str, new_start: datetime) -> Interview:
        new_start = ensure_utc(new_start)
        link, interview = await self.get_reschedule_link(reschedule_token)
        self._check_window(link, new_start, past_message="Cannot reschedule to a past time")

        current = slot_window(from_utc_naive(interview.scheduled_at), interview.duration_minutes)
        window = slot_window(new_start, interview.duration_minutes)
        if await self.availability.has_conflict_any_of(link.interviewer_ids, window.start, window.end, ignore=current):
            raise ConflictDetected("Selected time slot is not available")

        interview_id = interview.interview_id
        previous = interview.scheduled_at
        result = await self.session.execute(
            update(Interview)
            .where(Interview.interview_id == interview_id, Interview.status == STATUS_SCHEDULED)
            .values(scheduled_at=to_utc_naive(new_start), updated_at=to_utc_naive(self._now()))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise BookingConflict("Interview is no longer scheduled")
        await self.session.commit()
        await self.session.refresh(interview)
        logger.info(
            "interview_rescheduled",
            extra={"interview_id": interview_id, "previous": previous.isoformat(), "scheduled_at": new_start.isoformat()},
        )

        application = await self.session.get(Application, link.application_id)
        await self.calendar_sync.push_interview(interview, link, application, operation_type=OP_CALENDAR_UPDATE_EVENT)
        return interview

    async def cancel(self, reschedule_token: str) -> Interview:
        link, interview = await self.get_reschedule_link(reschedule_token, CANCEL)
        link_id = link.scheduling_link_id
        interview_id = interview.interview_id
        now = to_utc_naive(self._now())

        cancelled = await self.session.execute(
            update(Interview)
            .where(Interview.interview_id == interview_id, Interview.status == STATUS_SCHEDULED)
            .values(status=STATUS_CANCELLED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        released = await self.session.execute(
            update(SchedulingLink)
            .where(
                SchedulingLink.scheduling_link_id == link_id,
                SchedulingLink.interview_id == interview_id,
                SchedulingLink.used.is_(True),
            )
            .values(used=False, interview_id=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if cancelled.rowcount != 1 or released.rowcount != 1:
            await self.session.rollback()
            raise BookingConflict("Interview has already been cancelled")
        await self.session.commit()
        await self.session.refresh(interview)
        await self.session.refresh(link)
        logger.info("interview_cancelled", extra={"interview_id": interview_id, "scheduling_link_id": link_id})

        await self.calendar_sync.remove_interview_events(interview_id)
        return interview
